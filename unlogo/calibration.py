"""Calibration references and the alpha maps derived from them.

Each size class has one reference image: the white logo composited over a
pure black background. Because the background is black, the compositing
formula reduces to ``observed = alpha * 255`` and the per-pixel opacity can
be read straight off the reference. The references double as templates for
matching.

Alpha maps are derived lazily and cached for the lifetime of the cache
object. Population is guarded by a lock so concurrent first requests for the
same size class compute the map once.
"""

import os
import threading
import urllib.request
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional

import numpy as np
from PIL import Image, UnidentifiedImageError

from .geometry import SizeClass
from .utils import AlphaMap, ImageArray, ImagePath, setup_logger

logger = setup_logger(__name__)

ASSETS_ENV_VAR = "UNLOGO_ASSETS_DIR"
PACKAGE_ASSETS_DIR = Path(__file__).parent / "assets"
USER_ASSETS_DIR = Path.home() / ".unlogo" / "assets"

REFERENCE_URLS = {
    SizeClass.SMALL: "https://raw.githubusercontent.com/journey-ad/gemini-watermark-remover/main/src/assets/bg_48.png",
    SizeClass.LARGE: "https://raw.githubusercontent.com/journey-ad/gemini-watermark-remover/main/src/assets/bg_96.png",
}


class CalibrationError(RuntimeError):
    """A calibration reference is missing, unreadable or malformed."""


def reference_filename(size_class: SizeClass) -> str:
    return f"bg_{size_class.size}.png"


def resolve_assets_dir(assets_dir: Optional[ImagePath] = None) -> Path:
    """Find the directory holding the calibration references.

    Lookup order: the explicit argument, the ``UNLOGO_ASSETS_DIR``
    environment variable, the packaged assets, then ``~/.unlogo/assets``.
    The first candidate containing both references wins. An explicit
    argument is returned as-is so loading reports what is wrong with it.
    """
    if assets_dir is not None:
        return Path(assets_dir)

    candidates = []
    env_dir = os.environ.get(ASSETS_ENV_VAR)
    if env_dir:
        candidates.append(Path(env_dir))
    candidates.extend([PACKAGE_ASSETS_DIR, USER_ASSETS_DIR])

    for candidate in candidates:
        if all((candidate / reference_filename(s)).is_file() for s in SizeClass):
            logger.debug(f"Using calibration assets from {candidate}")
            return candidate

    # Nothing complete found; report against the first candidate
    return candidates[0]


def fetch_reference_assets(dest_dir: Optional[ImagePath] = None, overwrite: bool = False) -> Path:
    """Download the calibration references into ``dest_dir``.

    Args:
        dest_dir: Target directory (default ``~/.unlogo/assets``)
        overwrite: Download even when the file already exists

    Returns:
        The directory the references were written to

    Raises:
        CalibrationError: If a download fails
    """
    dest = Path(dest_dir) if dest_dir is not None else USER_ASSETS_DIR
    dest.mkdir(parents=True, exist_ok=True)

    for size_class, url in REFERENCE_URLS.items():
        path = dest / reference_filename(size_class)
        if path.exists() and not overwrite:
            continue
        logger.info(f"Downloading {size_class.size}px calibration reference...")
        try:
            urllib.request.urlretrieve(url, path)
        except OSError as e:
            raise CalibrationError(f"Failed to download {url}: {e}") from e
        logger.info(f"Calibration reference saved to: {path}")

    return dest


def load_reference(path: ImagePath, size_class: SizeClass) -> ImageArray:
    """Decode one calibration reference into an RGBA buffer.

    Raises:
        CalibrationError: If the file is missing, cannot be decoded, or is
            not exactly ``size``×``size`` pixels
    """
    path = Path(path)
    try:
        with Image.open(path) as img:
            img.load()
            rgba = np.array(img.convert("RGBA"), dtype=np.uint8)
    except FileNotFoundError as e:
        raise CalibrationError(f"Calibration reference not found: {path}") from e
    except (UnidentifiedImageError, OSError) as e:
        raise CalibrationError(f"Could not decode calibration reference {path}: {e}") from e

    expected = (size_class.size, size_class.size)
    if rgba.shape[:2] != expected:
        raise CalibrationError(
            f"Calibration reference {path.name} is {rgba.shape[1]}×{rgba.shape[0]}, "
            f"expected {size_class.size}×{size_class.size}"
        )
    return rgba


def load_references(assets_dir: Optional[ImagePath] = None) -> Dict[SizeClass, ImageArray]:
    """Load the references for every size class, failing on the first bad one."""
    directory = resolve_assets_dir(assets_dir)
    references = {
        size_class: load_reference(directory / reference_filename(size_class), size_class)
        for size_class in SizeClass
    }
    logger.info(f"Loaded {len(references)} calibration references from {directory}")
    return references


def alpha_from_reference(reference: ImageArray) -> AlphaMap:
    """Derive the opacity map from a logo captured over black.

    Over black, each channel holds ``alpha * 255``; the brightest channel is
    the least affected by compression noise.

    Returns:
        h×w float32 array in [0, 1]
    """
    rgb = reference[..., :3].astype(np.float32)
    return rgb.max(axis=2) / 255.0


def alpha_from_background_pair(on_black: ImageArray, on_white: ImageArray) -> AlphaMap:
    """Solve for the opacity map from captures over black and over white.

    With foreground F and opacity a, the captures are ``black = a*F`` and
    ``white = a*F + (1 - a)*255``, so ``a = 1 - (white - black) / 255``
    regardless of F. Channels are averaged to reduce noise.

    Returns:
        h×w float32 array in [0, 1]
    """
    if on_black.shape[:2] != on_white.shape[:2]:
        raise ValueError(
            f"Captures differ in size: {on_black.shape[:2]} vs {on_white.shape[:2]}"
        )
    black = on_black[..., :3].astype(np.float32)
    white = on_white[..., :3].astype(np.float32)
    alpha = 1.0 - (white - black).mean(axis=2) / 255.0
    return np.clip(alpha, 0.0, 1.0).astype(np.float32)


class AlphaMapCache:
    """Size class → alpha map memo, written at most once per key.

    Cached maps are marked read-only since every caller shares them.
    """

    def __init__(
        self,
        references: Mapping[SizeClass, ImageArray],
        derive: Callable[[ImageArray], AlphaMap] = alpha_from_reference,
    ):
        self._references = dict(references)
        self._derive = derive
        self._maps: Dict[SizeClass, AlphaMap] = {}
        self._lock = threading.Lock()

    def get(self, size_class: SizeClass) -> AlphaMap:
        cached = self._maps.get(size_class)
        if cached is not None:
            return cached

        with self._lock:
            cached = self._maps.get(size_class)
            if cached is None:
                cached = self._derive(self._references[size_class])
                cached.setflags(write=False)
                self._maps[size_class] = cached
                logger.debug(
                    f"Derived {size_class.size}px alpha map "
                    f"(max alpha {float(cached.max()):.3f})"
                )
        return cached

    def __contains__(self, size_class: SizeClass) -> bool:
        return size_class in self._maps
