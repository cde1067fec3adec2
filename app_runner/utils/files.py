"""
File Utilities
==============

Destination path preparation and screenshot persistence used by providers.

Provides functions for:
- Creating parent directories for log/screenshot outputs
- Validating that a source file exists before upload or deploy
- Writing screenshots (raw bytes or base64) to disk, normalized to PNG
"""

import base64
import io
from pathlib import Path
from typing import Union

from PIL import Image, UnidentifiedImageError

from app_runner.utils.logger import get_logger

logger = get_logger(__name__)

PathLike = Union[str, Path]


def ensure_parent_dir(path: PathLike) -> Path:
    """
    Make sure the parent directory of ``path`` exists.

    Args:
        path: Destination file path.

    Returns:
        The destination as a resolved Path.
    """
    destination = Path(path).expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)
    return destination


def require_existing(path: PathLike, description: str = "File") -> Path:
    """
    Validate that ``path`` exists.

    Raises:
        FileNotFoundError: If the path does not exist.
    """
    source = Path(path).expanduser()
    if not source.exists():
        raise FileNotFoundError(f"{description} not found: {source}")
    return source.resolve()


def save_screenshot_bytes(data: bytes, output_path: PathLike) -> Path:
    """
    Write screenshot bytes to ``output_path``.

    Images in formats other than the one implied by the file suffix are
    converted with Pillow. Bytes Pillow cannot read are written unchanged.

    Args:
        data: Raw image bytes.
        output_path: Destination file (suffix picks the format, default PNG).

    Returns:
        The written file path.
    """
    destination = ensure_parent_dir(output_path)
    if not destination.suffix:
        destination = destination.with_suffix(".png")

    try:
        image = Image.open(io.BytesIO(data))
    except UnidentifiedImageError:
        logger.warning("Screenshot data is not a recognized image, writing raw bytes", path=str(destination))
        destination.write_bytes(data)
        return destination

    target_format = Image.registered_extensions().get(destination.suffix.lower(), "PNG")
    if image.format == target_format:
        destination.write_bytes(data)
    else:
        # JPEG has no alpha channel
        if target_format == "JPEG" and image.mode in ("RGBA", "P"):
            image = image.convert("RGB")
        image.save(destination, format=target_format)

    logger.debug(
        "Screenshot saved",
        path=str(destination),
        size=f"{image.width}x{image.height}",
        size_kb=len(data) // 1024,
    )
    return destination


def save_screenshot_base64(screenshot_b64: str, output_path: PathLike) -> Path:
    """Decode a base64 screenshot (as returned by Appium) and save it."""
    return save_screenshot_bytes(base64.b64decode(screenshot_b64), output_path)


def save_screenshot_image(image: Image.Image, output_path: PathLike) -> Path:
    """Save an in-memory Pillow image (e.g. from ImageGrab)."""
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return save_screenshot_bytes(buffer.getvalue(), output_path)
