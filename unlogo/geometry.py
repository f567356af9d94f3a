"""Watermark size classes and their nominal placement.

The logo is stamped in the bottom-right corner at one of two calibrated
sizes. Which size is used depends only on the image resolution: images
larger than 1024 pixels in both dimensions get the large logo.
"""

from enum import Enum
from typing import NamedTuple, Tuple

from .utils import Box

# Both dimensions must strictly exceed this for the large logo
LARGE_IMAGE_THRESHOLD = 1024


class SizeClass(Enum):
    """Calibrated watermark sizes. The value is the logo edge length in pixels."""
    SMALL = 48
    LARGE = 96

    @property
    def size(self) -> int:
        return self.value

    @property
    def margin(self) -> int:
        """Distance from the right and bottom image edges to the logo."""
        return _MARGINS[self]

    @property
    def other(self) -> "SizeClass":
        return SizeClass.LARGE if self is SizeClass.SMALL else SizeClass.SMALL


_MARGINS = {
    SizeClass.SMALL: 32,
    SizeClass.LARGE: 64,
}

MIN_IMAGE_SIZE = min(s.size for s in SizeClass)


class Point(NamedTuple):
    x: int
    y: int


def select_size_class(width: int, height: int) -> SizeClass:
    """Pick the size class the watermark is expected to use for an image.

    Args:
        width: Image width in pixels
        height: Image height in pixels

    Returns:
        SizeClass.LARGE if both dimensions exceed 1024, else SizeClass.SMALL
    """
    if width > LARGE_IMAGE_THRESHOLD and height > LARGE_IMAGE_THRESHOLD:
        return SizeClass.LARGE
    return SizeClass.SMALL


def anchor_position(width: int, height: int, size_class: SizeClass) -> Point:
    """Compute the nominal top-left corner of the watermark.

    The result can be negative for images smaller than
    ``size_class.margin + size_class.size``; callers clamp where needed.
    """
    return Point(
        width - size_class.margin - size_class.size,
        height - size_class.margin - size_class.size,
    )


def clamp_position(point: Point, image_shape: Tuple[int, int], size: int) -> Point:
    """Shift a top-left corner so a ``size``×``size`` box fits in the image.

    Args:
        point: Proposed top-left corner
        image_shape: Image shape as (height, width)
        size: Box edge length

    Returns:
        The closest position whose box lies entirely inside the image
    """
    img_h, img_w = image_shape
    x = max(0, min(point.x, img_w - size))
    y = max(0, min(point.y, img_h - size))
    return Point(x, y)


def watermark_box(width: int, height: int, size_class: SizeClass) -> Box:
    """Nominal watermark box as (x, y, width, height)."""
    anchor = anchor_position(width, height, size_class)
    return (anchor.x, anchor.y, size_class.size, size_class.size)
