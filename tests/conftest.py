"""Common test fixtures."""

import numpy as np
import pytest
from PIL import Image

from unlogo.blend import composite_watermark
from unlogo.calibration import alpha_from_reference, reference_filename
from unlogo.engine import WatermarkEngine
from unlogo.geometry import SizeClass


def sparkle_alpha(size: int, peak: float = 0.5) -> np.ndarray:
    """Opacity of a four-pointed sparkle filling a size×size square."""
    coords = (np.arange(size) - (size - 1) / 2) / (size / 2)
    u = np.abs(coords)[np.newaxis, :]
    v = np.abs(coords)[:, np.newaxis]
    inside = 1.0 - (np.sqrt(u) + np.sqrt(v))
    return (peak * np.clip(inside * 4.0, 0.0, 1.0)).astype(np.float32)


def sparkle_reference(size: int) -> np.ndarray:
    """The sparkle rendered white-on-black as an RGBA calibration reference."""
    level = np.rint(sparkle_alpha(size) * 255).astype(np.uint8)
    reference = np.empty((size, size, 4), dtype=np.uint8)
    reference[..., :3] = level[..., np.newaxis]
    reference[..., 3] = 255
    return reference


def make_background(width: int, height: int, value: int = 40, noise: float = 3.0, seed: int = 0) -> np.ndarray:
    """Flat RGBA background with a little seeded Gaussian noise."""
    rng = np.random.default_rng(seed)
    rgb = value + rng.normal(0.0, noise, size=(height, width, 3)) if noise else np.full((height, width, 3), value)
    image = np.empty((height, width, 4), dtype=np.uint8)
    image[..., :3] = np.clip(np.rint(rgb), 0, 255).astype(np.uint8)
    image[..., 3] = 255
    return image


@pytest.fixture(scope="session")
def references():
    """Synthetic calibration references for both size classes."""
    return {size_class: sparkle_reference(size_class.size) for size_class in SizeClass}


@pytest.fixture
def assets_dir(tmp_path, references):
    """Directory holding the synthetic references as PNG files."""
    directory = tmp_path / "assets"
    directory.mkdir()
    for size_class, reference in references.items():
        Image.fromarray(reference, "RGBA").save(directory / reference_filename(size_class))
    return directory


@pytest.fixture
def engine(references):
    return WatermarkEngine(references)


@pytest.fixture
def watermarked(references):
    """Factory for backgrounds with the reference logo blended at (x, y)."""
    def _make(width, height, size_class, x, y, **background):
        image = make_background(width, height, **background)
        original = image.copy()
        alpha = alpha_from_reference(references[size_class])
        composite_watermark(image, alpha, x, y)
        return image, original
    return _make
