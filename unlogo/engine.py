"""Watermark engine: detection, calibration lookup and blend reversal.

The engine owns the calibration references and the alpha-map cache. A
removal call works only on the buffer it is given and returns the detection
report alongside the cleaned image, so one engine can serve many images
concurrently.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, NamedTuple, Optional

from .blend import reverse_alpha_blend
from .calibration import AlphaMapCache, CalibrationError, load_references
from .geometry import (
    MIN_IMAGE_SIZE, SizeClass, anchor_position, clamp_position, select_size_class
)
from .matcher import MatchConfig, find_watermark, refine_match
from .utils import AlphaMap, ImageArray, ImagePath, setup_logger, validate_image

logger = setup_logger(__name__)


class ImageTooSmallError(ValueError):
    """The image cannot hold even the smallest watermark."""


class DetectionMethod(str, Enum):
    TEMPLATE = "template"  # located by template matching
    FIXED = "fixed"        # nominal anchor used without a confident match


@dataclass(frozen=True)
class Detection:
    """A located watermark box and the score that located it."""
    x: int
    y: int
    width: int
    height: int
    score: float


@dataclass(frozen=True)
class DetectionReport:
    """Where the watermark was placed for removal and how it was found."""
    positions: List[Detection]
    size_class: SizeClass
    method: DetectionMethod

    @property
    def position(self) -> Detection:
        return self.positions[0]

    @property
    def score(self) -> float:
        return self.position.score

    def to_dict(self) -> Dict[str, Any]:
        primary = self.position
        return {
            "size_class": self.size_class.name.lower(),
            "size": self.size_class.size,
            "method": self.method.value,
            "score": round(primary.score, 4),
            "position": {
                "x": primary.x,
                "y": primary.y,
                "width": primary.width,
                "height": primary.height,
            },
            "match_count": len(self.positions),
        }


class RemovalResult(NamedTuple):
    image: ImageArray
    report: DetectionReport


class WatermarkEngine:
    """Locates and removes the corner logo from images.

    Args:
        references: RGBA calibration reference per size class
        config: Template matching parameters
    """

    def __init__(
        self,
        references: Mapping[SizeClass, ImageArray],
        config: Optional[MatchConfig] = None,
    ):
        missing = [s.name for s in SizeClass if s not in references]
        if missing:
            raise CalibrationError(f"Missing calibration references: {', '.join(missing)}")
        for size_class, reference in references.items():
            expected = (size_class.size, size_class.size)
            if reference.ndim != 3 or reference.shape[:2] != expected:
                raise CalibrationError(
                    f"{size_class.size}px reference has shape {reference.shape}, "
                    f"expected {expected[0]}×{expected[1]}"
                )

        self.references = dict(references)
        self.config = config or MatchConfig()
        self._alpha_maps = AlphaMapCache(self.references)

    @classmethod
    def from_assets(
        cls,
        assets_dir: Optional[ImagePath] = None,
        config: Optional[MatchConfig] = None,
    ) -> "WatermarkEngine":
        """Build an engine from the reference PNGs on disk.

        Raises:
            CalibrationError: If either reference cannot be loaded
        """
        return cls(load_references(assets_dir), config)

    def get_alpha_map(self, size_class: SizeClass) -> AlphaMap:
        """Alpha map for a size class, derived on first use and then cached."""
        return self._alpha_maps.get(size_class)

    def detect(self, image: ImageArray) -> DetectionReport:
        """Locate the watermark without modifying the image.

        Tries the size class implied by the image dimensions first, then the
        other one. When neither matches, the nominal anchor of the first is
        reported with score 0.

        Raises:
            ValueError: If the buffer is not 8-bit RGB(A)
            ImageTooSmallError: If either dimension is below 48 pixels
        """
        validate_image(image)
        height, width = image.shape[:2]
        if width < MIN_IMAGE_SIZE or height < MIN_IMAGE_SIZE:
            raise ImageTooSmallError(
                f"Image {width}×{height} is smaller than the {MIN_IMAGE_SIZE}px watermark"
            )

        primary = select_size_class(width, height)

        for size_class in (primary, primary.other):
            template = self.references[size_class]
            anchor = anchor_position(width, height, size_class)
            matches = find_watermark(image, template, anchor, self.config)
            if not matches:
                logger.debug(f"No {size_class.size}px match near {tuple(anchor)}")
                continue

            refined = refine_match(image, template, matches[0], self.config.refine_radius)
            detection = Detection(refined.x, refined.y, size_class.size, size_class.size, refined.score)
            return DetectionReport([detection], size_class, DetectionMethod.TEMPLATE)

        fallback = clamp_position(anchor_position(width, height, primary), (height, width), primary.size)
        detection = Detection(fallback.x, fallback.y, primary.size, primary.size, 0.0)
        return DetectionReport([detection], primary, DetectionMethod.FIXED)

    def remove_watermark(self, image: ImageArray) -> RemovalResult:
        """Detect the watermark and reverse its blend, modifying ``image`` in place.

        Never fails for lack of a confident match; the report's ``method``
        and ``score`` say how the position was chosen.

        Returns:
            RemovalResult(image, report), where ``image`` is the input buffer
        """
        report = self.detect(image)
        alpha_map = self.get_alpha_map(report.size_class)

        for pos in report.positions:
            reverse_alpha_blend(image, alpha_map, pos.x, pos.y)

        pos = report.position
        logger.info(
            f"Removed {report.size_class.size}px watermark at ({pos.x},{pos.y}) "
            f"via {report.method.value} (score {pos.score:.3f})"
        )
        return RemovalResult(image, report)
