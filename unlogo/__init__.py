"""Unlogo: reverse-blend removal of the corner logo on AI-generated images.

This package locates a known semi-transparent logo by normalized
cross-correlation around its nominal corner position and recovers the
pixels beneath it by inverting the alpha-compositing formula.
"""

__version__ = "0.1.0"
__author__ = "Unlogo Team"

# Main pipeline components
from .geometry import SizeClass, Point, select_size_class, anchor_position
from .correlation import correlation_score, ncc
from .matcher import MatchConfig, Match, find_watermark, refine_match, score_surface
from .calibration import (
    AlphaMapCache,
    CalibrationError,
    alpha_from_reference,
    alpha_from_background_pair,
    fetch_reference_assets,
    load_references,
)
from .blend import reverse_alpha_blend, composite_watermark
from .engine import (
    WatermarkEngine,
    DetectionReport,
    Detection,
    DetectionMethod,
    RemovalResult,
    ImageTooSmallError,
)
from .utils import load_image, save_image, setup_logger

# CLI entry point
from .cli import main

__all__ = [
    "SizeClass",
    "Point",
    "select_size_class",
    "anchor_position",
    "correlation_score",
    "ncc",
    "MatchConfig",
    "Match",
    "find_watermark",
    "refine_match",
    "score_surface",
    "AlphaMapCache",
    "CalibrationError",
    "alpha_from_reference",
    "alpha_from_background_pair",
    "fetch_reference_assets",
    "load_references",
    "reverse_alpha_blend",
    "composite_watermark",
    "WatermarkEngine",
    "DetectionReport",
    "Detection",
    "DetectionMethod",
    "RemovalResult",
    "ImageTooSmallError",
    "load_image",
    "save_image",
    "setup_logger",
    "main",
]
