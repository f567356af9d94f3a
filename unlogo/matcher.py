"""Template matching around the expected watermark position.

The logo is always stamped near the bottom-right corner, so instead of
scanning the whole image we only score offsets in a box around the nominal
anchor. A coarse pass (default step 2) finds the best candidate above a
threshold and a fine pass (step 1) tightens it to the best integer offset.
"""

from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Tuple

import cv2
import numpy as np

from .correlation import MIN_DENOMINATOR, correlation_score
from .geometry import Point
from .utils import ImageArray, setup_logger, to_luminance

logger = setup_logger(__name__)

DEFAULT_STEP = 2
DEFAULT_THRESHOLD = 0.7
DEFAULT_REFINE_RADIUS = 4

# float32 matching error is ~1e-6; offsets this close to the best are rescored
RESCORE_TOLERANCE = 1e-4


@dataclass(frozen=True)
class MatchConfig:
    """Search parameters.

    Attributes:
        search_radius: Pixels scanned on each side of the anchor. ``None``
            means one watermark width, resolved per size class.
        step: Pixel stride of the coarse scan
        threshold: Minimum NCC score for a coarse candidate to count
        refine_radius: Pixels scanned on each side of the coarse match
    """
    search_radius: Optional[int] = None
    step: int = DEFAULT_STEP
    threshold: float = DEFAULT_THRESHOLD
    refine_radius: int = DEFAULT_REFINE_RADIUS

    def __post_init__(self):
        if self.search_radius is not None and self.search_radius < 0:
            raise ValueError("search_radius must be non-negative")
        if self.step < 1:
            raise ValueError("step must be at least 1")
        if not -1.0 <= self.threshold <= 1.0:
            raise ValueError("threshold must be between -1 and 1")
        if self.refine_radius < 0:
            raise ValueError("refine_radius must be non-negative")

    def radius_for(self, template_size: int) -> int:
        return template_size if self.search_radius is None else self.search_radius


@dataclass(frozen=True)
class Match:
    """A candidate top-left position and its NCC score."""
    x: int
    y: int
    score: float


class ScoreSurface(NamedTuple):
    """Scores for a grid of offsets. ``scores[i, j]`` is the score at (xs[j], ys[i])."""
    scores: np.ndarray
    xs: np.ndarray
    ys: np.ndarray


def search_bounds(
    image_shape: Tuple[int, int],
    template_shape: Tuple[int, int],
    center: Point,
    radius: int,
) -> Optional[Tuple[int, int, int, int]]:
    """Inclusive offset bounds (x0, y0, x1, y1) for a search around ``center``.

    The box is clamped so every offset keeps the template inside the image.
    Returns None when no offset is valid.
    """
    img_h, img_w = image_shape
    tpl_h, tpl_w = template_shape

    x0 = max(0, center.x - radius)
    y0 = max(0, center.y - radius)
    x1 = min(img_w - tpl_w, center.x + radius)
    y1 = min(img_h - tpl_h, center.y + radius)

    if x0 > x1 or y0 > y1:
        return None
    return x0, y0, x1, y1


def _box_sums(table: np.ndarray, h: int, w: int) -> np.ndarray:
    """Sum of every h×w box, from an integral table, indexed by top-left corner."""
    return table[h:, w:] - table[:-h, w:] - table[h:, :-w] + table[:-h, :-w]


def _flat_offsets(window_lum: np.ndarray, template_lum: np.ndarray) -> np.ndarray:
    """Mask of offsets whose NCC denominator is below ``MIN_DENOMINATOR``.

    A patch that is exactly constant is caught by its min/max spread, since
    float rounding in the integral sums leaves it a small positive variance.
    """
    tpl_h, tpl_w = template_lum.shape
    n = tpl_h * tpl_w

    d_tpl = template_lum - template_lum.mean()
    tpl_energy = float(np.sum(d_tpl * d_tpl))

    sums, sq_sums = cv2.integral2(window_lum, sdepth=cv2.CV_64F, sqdepth=cv2.CV_64F)
    box = _box_sums(sums, tpl_h, tpl_w)
    patch_energy = np.maximum(_box_sums(sq_sums, tpl_h, tpl_w) - box * box / n, 0.0)
    den = np.sqrt(tpl_energy * patch_energy)

    kernel = np.ones((tpl_h, tpl_w), dtype=np.uint8)
    lum32 = window_lum.astype(np.float32)
    spread = cv2.dilate(lum32, kernel, anchor=(0, 0)) - cv2.erode(lum32, kernel, anchor=(0, 0))
    spread = spread[:box.shape[0], :box.shape[1]]

    return (den < MIN_DENOMINATOR) | (spread == 0)


def score_surface(
    image: ImageArray,
    template: ImageArray,
    center: Point,
    radius: int,
    step: int = 1,
) -> Optional[ScoreSurface]:
    """Score every ``step``-th offset within ``radius`` of ``center``.

    Only the part of the image the window can touch is converted to
    luminance. The whole window is scored in one ``cv2.matchTemplate`` call
    (``TM_CCOEFF_NORMED`` is the same luminance NCC, in float32). Flat
    patches score exactly 0, and offsets within ``RESCORE_TOLERANCE`` of the
    best are rescored in float64 so ties and threshold checks compare the
    same values ``correlation_score`` gives.

    Returns:
        ScoreSurface in row-major scan order, or None if the window is empty
    """
    tpl_h, tpl_w = template.shape[:2]
    bounds = search_bounds(image.shape[:2], (tpl_h, tpl_w), center, radius)
    if bounds is None:
        return None
    x0, y0, x1, y1 = bounds

    window_lum = to_luminance(image[y0:y1 + tpl_h, x0:x1 + tpl_w])
    template_lum = to_luminance(template)

    scores = cv2.matchTemplate(
        window_lum.astype(np.float32), template_lum.astype(np.float32), cv2.TM_CCOEFF_NORMED
    ).astype(np.float64)
    flat = _flat_offsets(window_lum, template_lum)
    scores[flat] = 0.0
    np.clip(scores, -1.0, 1.0, out=scores)

    scores = scores[::step, ::step]
    flat = flat[::step, ::step]
    xs = np.arange(x0, x1 + 1, step)
    ys = np.arange(y0, y1 + 1, step)

    near_best = (scores >= scores.max() - RESCORE_TOLERANCE) & ~flat
    for i, j in zip(*np.nonzero(near_best)):
        scores[i, j] = correlation_score(template_lum, window_lum, int(xs[j] - x0), int(ys[i] - y0))

    return ScoreSurface(scores, xs, ys)


def find_watermark(
    image: ImageArray,
    template: ImageArray,
    anchor: Point,
    config: MatchConfig = MatchConfig(),
) -> List[Match]:
    """Search for the template in a box around the expected anchor.

    Args:
        image: Target image (RGB or RGBA)
        template: Reference logo (RGB or RGBA)
        anchor: Expected top-left corner of the logo
        config: Search parameters

    Returns:
        A list holding the single best match scoring at least
        ``config.threshold``, or an empty list. Ties keep the first offset
        in row-major order.
    """
    tpl_size = template.shape[1]
    radius = config.radius_for(tpl_size)

    surface = score_surface(image, template, anchor, radius, config.step)
    if surface is None:
        logger.debug(f"No valid offsets for {tpl_size}px template around {tuple(anchor)}")
        return []

    # argmax returns the first maximum in row-major order
    best = int(np.argmax(surface.scores))
    i, j = np.unravel_index(best, surface.scores.shape)
    score = float(surface.scores[i, j])
    x, y = int(surface.xs[j]), int(surface.ys[i])

    logger.debug(
        f"Scanned {surface.scores.size} offsets for {tpl_size}px template, "
        f"best {score:.3f} at ({x},{y})"
    )

    if score < config.threshold:
        return []
    return [Match(x, y, score)]


def refine_match(
    image: ImageArray,
    template: ImageArray,
    coarse: Match,
    radius: int = DEFAULT_REFINE_RADIUS,
) -> Match:
    """Rescan every offset within ``radius`` of a coarse match.

    No threshold applies: the highest-scoring offset wins even if it scores
    below the coarse threshold.
    """
    surface = score_surface(image, template, Point(coarse.x, coarse.y), radius, step=1)
    if surface is None or not np.any(surface.scores > -1.0):
        return Match(coarse.x, coarse.y, -1.0)

    best = int(np.argmax(surface.scores))
    i, j = np.unravel_index(best, surface.scores.shape)
    refined = Match(int(surface.xs[j]), int(surface.ys[i]), float(surface.scores[i, j]))

    logger.debug(
        f"Refined ({coarse.x},{coarse.y}) {coarse.score:.3f} -> "
        f"({refined.x},{refined.y}) {refined.score:.3f}"
    )
    return refined
