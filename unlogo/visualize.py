"""Debug output: detection overlays and NCC score heat maps."""

from pathlib import Path

import cv2
import numpy as np
from matplotlib.figure import Figure

from .engine import DetectionMethod, DetectionReport
from .geometry import anchor_position
from .matcher import MatchConfig, score_surface
from .utils import ImageArray, ImagePath, save_image, setup_logger

logger = setup_logger(__name__)

TEMPLATE_COLOR = (0, 255, 0, 255)  # RGBA
FIXED_COLOR = (255, 160, 0, 255)


def draw_detection(image: ImageArray, report: DetectionReport, thickness: int = 2) -> ImageArray:
    """Return a copy of ``image`` with the detected box and score drawn on it."""
    canvas = np.ascontiguousarray(image).copy()
    color = TEMPLATE_COLOR if report.method == DetectionMethod.TEMPLATE else FIXED_COLOR
    color = color[:canvas.shape[2]]

    for pos in report.positions:
        cv2.rectangle(
            canvas,
            (pos.x, pos.y),
            (pos.x + pos.width - 1, pos.y + pos.height - 1),
            color,
            thickness,
        )
        label = f"{report.method.value} {pos.score:.2f}"
        cv2.putText(
            canvas,
            label,
            (max(0, pos.x), max(12, pos.y - 6)),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.4,
            color,
            1,
        )
    return canvas


def save_detection_overlay(image: ImageArray, report: DetectionReport, output_path: ImagePath) -> None:
    """Write the detection overlay for ``image`` to ``output_path``."""
    save_image(draw_detection(image, report), output_path)
    logger.debug(f"Saved detection overlay to: {Path(output_path).name}")


def save_score_map(
    image: ImageArray,
    template: ImageArray,
    report: DetectionReport,
    output_path: ImagePath,
    config: MatchConfig = MatchConfig(),
) -> bool:
    """Plot the coarse NCC score surface around the nominal anchor.

    Args:
        image: Image as it was before removal
        template: Reference for ``report.size_class``
        report: Detection report for ``image``
        output_path: Where to write the PNG
        config: Search parameters used for detection

    Returns:
        False when the search window is empty and nothing was written
    """
    height, width = image.shape[:2]
    size_class = report.size_class
    anchor = anchor_position(width, height, size_class)
    surface = score_surface(image, template, anchor, config.radius_for(size_class.size), config.step)
    if surface is None:
        logger.warning("Empty search window, no score map written")
        return False

    fig = Figure(figsize=(6, 5))
    ax = fig.subplots()
    extent = (surface.xs[0], surface.xs[-1], surface.ys[-1], surface.ys[0])
    im = ax.imshow(surface.scores, cmap="viridis", vmin=-1.0, vmax=1.0, extent=extent)
    fig.colorbar(im, ax=ax, label="NCC score")
    if min(surface.scores.shape) > 1:
        ax.contour(
            surface.xs, surface.ys, surface.scores,
            levels=[config.threshold], colors="white", linewidths=0.8,
        )
    ax.plot(anchor.x, anchor.y, "w+", markersize=10, label="anchor")
    pos = report.position
    ax.plot(pos.x, pos.y, "rx", markersize=10, label=report.method.value)
    ax.set_title(f"{size_class.size}px template, best {float(surface.scores.max()):.3f}")
    ax.set_xlabel("x")
    ax.set_ylabel("y")
    ax.legend(loc="lower left", fontsize=8)
    # A bare Figure renders with Agg and leaves the pyplot backend alone
    fig.savefig(str(output_path), dpi=100, bbox_inches="tight")

    logger.debug(f"Saved score map to: {Path(output_path).name}")
    return True
