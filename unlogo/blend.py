"""Alpha compositing and its inverse for a constant-colour logo.

The watermark is a white logo blended over the picture:

    watermarked = alpha * F + (1 - alpha) * original

With alpha known per pixel from calibration and F fixed, the original is
recovered exactly (up to 8-bit rounding) by

    original = (watermarked - alpha * F) / (1 - alpha)
"""

import numpy as np

from .utils import AlphaMap, ImageArray, clamp_box_to_image, setup_logger

logger = setup_logger(__name__)

LOGO_VALUE = 255.0      # foreground colour F, per RGB channel
MAX_ALPHA = 0.99        # keeps 1 - alpha >= 0.01


def _region_views(image: ImageArray, alpha_map: AlphaMap, x: int, y: int):
    """Slice the image region and matching alpha sub-map, clipped to the image."""
    h, w = alpha_map.shape
    cx, cy, cw, ch = clamp_box_to_image((x, y, w, h), image.shape[:2])
    if cw == 0 or ch == 0:
        return None, None
    region = image[cy:cy + ch, cx:cx + cw, :3]
    alpha = alpha_map[cy - y:cy - y + ch, cx - x:cx - x + cw]
    return region, alpha


def reverse_alpha_blend(image: ImageArray, alpha_map: AlphaMap, x: int, y: int) -> ImageArray:
    """Undo the logo blend over the region whose top-left corner is (x, y).

    Every pixel of the region is rewritten in place; where alpha is 0 the
    value comes back unchanged. Only the RGB channels change; an alpha
    channel is left as it is. Parts of the region outside the image are
    ignored.

    Args:
        image: H×W×3 or H×W×4 uint8 buffer
        alpha_map: h×w opacity map in [0, 1]
        x: Left edge of the logo
        y: Top edge of the logo

    Returns:
        The same ``image`` object
    """
    region, alpha = _region_views(image, alpha_map, x, y)
    if region is None:
        logger.warning(f"Logo region at ({x},{y}) lies outside the image")
        return image

    capped = np.minimum(alpha, MAX_ALPHA)[..., np.newaxis].astype(np.float64)

    observed = region.astype(np.float64)
    restored = (observed - capped * LOGO_VALUE) / (1.0 - capped)
    region[...] = np.clip(np.rint(restored), 0, 255).astype(np.uint8)

    logger.debug(f"Reversed blend on {alpha.size} pixels at ({x},{y})")
    return image


def composite_watermark(image: ImageArray, alpha_map: AlphaMap, x: int, y: int) -> ImageArray:
    """Blend the white logo onto the region at (x, y), in place.

    Returns:
        The same ``image`` object
    """
    region, alpha = _region_views(image, alpha_map, x, y)
    if region is None:
        return image

    a = alpha[..., np.newaxis].astype(np.float64)
    blended = a * LOGO_VALUE + (1.0 - a) * region.astype(np.float64)
    region[...] = np.clip(np.rint(blended), 0, 255).astype(np.uint8)
    return image
