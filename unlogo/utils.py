"""Shared utilities and type definitions for unlogo."""

import cv2
import numpy as np
from pathlib import Path
from typing import List, Tuple, Union
import logging

# Type aliases for clarity
ImageArray = np.ndarray  # H×W×4 RGBA uint8 (H×W×3 RGB also accepted)
AlphaMap = np.ndarray    # H×W float32 in [0, 1]
Box = Tuple[int, int, int, int]  # (x, y, width, height)
ImagePath = Union[str, Path]

# Supported image extensions
IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.webp'}

# ITU-R BT.601 luma weights, RGB order
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)

def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Set up a logger with consistent formatting.

    Args:
        name: Logger name
        level: Logging level

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:  # Avoid duplicate handlers
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(level)
    return logger

def validate_image(image: ImageArray) -> None:
    """Check that an array is an 8-bit RGB or RGBA pixel buffer.

    Raises:
        ValueError: If the array has the wrong type, rank or channel count
    """
    if not isinstance(image, np.ndarray):
        raise ValueError("Image must be a numpy array")
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise ValueError(f"Image must be H×W×3 or H×W×4, got shape {image.shape}")
    if image.dtype != np.uint8:
        raise ValueError(f"Image must be uint8, got {image.dtype}")

def to_luminance(pixels: np.ndarray) -> np.ndarray:
    """Convert RGB(A) pixels to float64 luminance, ignoring alpha.

    Args:
        pixels: Array of shape (..., 3) or (..., 4), RGB channel order

    Returns:
        Array of shape (...) with L = 0.299R + 0.587G + 0.114B
    """
    return pixels[..., :3].astype(np.float64) @ LUMA_WEIGHTS

def load_image(image_path: ImagePath) -> ImageArray:
    """Load an image from file path as an RGBA buffer.

    Args:
        image_path: Path to image file

    Returns:
        Image array in RGBA format

    Raises:
        ValueError: If image cannot be loaded
    """
    image = cv2.imread(str(image_path), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise ValueError(f"Could not load image: {image_path}")

    if image.dtype != np.uint8:
        # 16-bit PNGs are scaled down to 8 bits per channel
        image = (image / 257).astype(np.uint8)

    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)

def save_image(image: ImageArray, output_path: ImagePath, quality: int = 97) -> None:
    """Save an RGB(A) image to file with quality control.

    JPEG output drops the alpha channel; PNG and WebP keep it.

    Args:
        image: Image array in RGBA (or RGB) format
        output_path: Path where to save the image
        quality: JPEG/WebP quality (0-100)

    Raises:
        ValueError: If image cannot be saved
    """
    output_path = Path(output_path)
    suffix = output_path.suffix.lower()

    if image.shape[2] == 4 and suffix not in {'.jpg', '.jpeg'}:
        bgr = cv2.cvtColor(image, cv2.COLOR_RGBA2BGRA)
    elif image.shape[2] == 4:
        bgr = cv2.cvtColor(image, cv2.COLOR_RGBA2BGR)
    else:
        bgr = cv2.cvtColor(image, cv2.COLOR_RGB2BGR)

    # Set compression parameters based on file extension
    if suffix in {'.jpg', '.jpeg'}:
        params = [cv2.IMWRITE_JPEG_QUALITY, quality]
    elif suffix == '.png':
        params = [cv2.IMWRITE_PNG_COMPRESSION, 8]
    elif suffix == '.webp':
        params = [cv2.IMWRITE_WEBP_QUALITY, quality]
    else:
        params = []

    success = cv2.imwrite(str(output_path), bgr, params)
    if not success:
        raise ValueError(f"Could not save image to: {output_path}")

def get_image_files(path: Path) -> List[Path]:
    """Get list of image files from path (file or directory).

    Args:
        path: Path to file or directory

    Returns:
        List of image file paths, sorted by name
    """
    if path.is_file():
        if path.suffix.lower() in IMAGE_EXTENSIONS:
            return [path]
        else:
            return []

    return sorted(f for f in path.glob("*") if f.suffix.lower() in IMAGE_EXTENSIONS)

def clamp_box_to_image(box: Box, image_shape: Tuple[int, int]) -> Box:
    """Clamp a box to stay within image bounds.

    Args:
        box: Box as (x, y, width, height)
        image_shape: Image shape as (height, width)

    Returns:
        Clamped box; width or height is 0 when the box lies outside the image
    """
    x, y, w, h = box
    img_h, img_w = image_shape

    x1 = max(0, min(x, img_w))
    y1 = max(0, min(y, img_h))
    x2 = max(x1, min(x + w, img_w))
    y2 = max(y1, min(y + h, img_h))

    return (x1, y1, x2 - x1, y2 - y1)
