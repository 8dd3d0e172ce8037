"""Helpers for the encoded screenshot bytes."""
from PIL import Image
import io
import base64

from pagecapture.models import CapturedImage


def image_size(screenshot_bytes: bytes) -> tuple[int, int]:
    """(width, height) of an encoded screenshot."""
    with Image.open(io.BytesIO(screenshot_bytes)) as img:
        return img.size


def to_captured_image(screenshot_bytes: bytes, fmt: str) -> CapturedImage:
    """
    Wrap raw Playwright output. Dimensions are informational only, so a
    decoder failure leaves them at zero rather than failing the capture.
    """
    try:
        width, height = image_size(screenshot_bytes)
    except (OSError, Image.DecompressionBombError):
        width, height = 0, 0
    return CapturedImage(data=screenshot_bytes, format=fmt, width=width, height=height)


def screenshot_to_b64(screenshot_bytes: bytes) -> str:
    return base64.b64encode(screenshot_bytes).decode()
