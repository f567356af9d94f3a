"""Normalized cross-correlation between a logo template and an image patch.

Both patches are reduced to luminance before scoring, so the score measures
how well the brightness pattern of the patch follows the template. It is
invariant to brightness offsets and contrast scaling of either patch.
"""

import numpy as np

from .utils import ImageArray, to_luminance

# Below this the patch is considered flat and the score is defined as 0
MIN_DENOMINATOR = 1e-6


def correlation_score(template_lum: np.ndarray, image_lum: np.ndarray, x: int, y: int) -> float:
    """Score a luminance template against the equally sized region at (x, y).

    Args:
        template_lum: h×w luminance of the template
        image_lum: H×W luminance of the target image
        x: Left edge of the region in ``image_lum``
        y: Top edge of the region in ``image_lum``

    Returns:
        NCC score in [-1, 1], or 0.0 when either patch has no variance
    """
    h, w = template_lum.shape
    patch = image_lum[y:y + h, x:x + w]
    if patch.shape != template_lum.shape:
        raise ValueError(
            f"Region at ({x},{y}) of size {w}×{h} does not fit image of shape {image_lum.shape}"
        )

    # First pass: means
    d_tpl = template_lum - template_lum.mean()
    d_img = patch - patch.mean()

    # Second pass: covariance and variances
    num = float(np.sum(d_tpl * d_img))
    den = float(np.sqrt(np.sum(d_tpl * d_tpl) * np.sum(d_img * d_img)))
    if den < MIN_DENOMINATOR:
        return 0.0

    # Rounding can push a perfect match a hair past 1
    return max(-1.0, min(1.0, num / den))


def ncc(template: ImageArray, image: ImageArray, x: int, y: int) -> float:
    """Score an RGB(A) template against the region of an RGB(A) image at (x, y)."""
    h, w = template.shape[:2]
    region = image[y:y + h, x:x + w]
    return correlation_score(to_luminance(template), to_luminance(region), 0, 0)
