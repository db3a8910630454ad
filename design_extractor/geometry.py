"""
Geometry Utility - pixel buffer operations for the extraction pipeline

- Allocate transparent canvases
- Aspect-safe downscaling under max bounds (never upscales)
- Encode/decode PNG, JPEG and WebP
- Crop and preview helpers

All decoded buffers are RGBA uint8 arrays of shape (H, W, 4).
"""
from __future__ import annotations

import base64
import binascii
import io
import math
import numbers
from dataclasses import dataclass
from typing import Any, Tuple

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import ErrorCode, ProcessingError

# MIME type -> Pillow format
SUPPORTED_MIME_TYPES = {
    "image/png": "PNG",
    "image/jpeg": "JPEG",
    "image/webp": "WEBP",
}


@dataclass
class ImageBuffer:
    """Decoded RGBA pixel grid"""
    pixels: np.ndarray

    def __post_init__(self):
        px = self.pixels
        if not isinstance(px, np.ndarray) or px.ndim != 3 or px.shape[2] != 4:
            shape = getattr(px, "shape", None)
            raise ProcessingError(
                ErrorCode.CANVAS_ERROR,
                details=f"Expected RGBA pixel array (H, W, 4), got shape={shape}",
            )
        if px.shape[0] <= 0 or px.shape[1] <= 0:
            raise ProcessingError(
                ErrorCode.CANVAS_ERROR, details=f"Invalid image size: {px.shape[:2]}"
            )
        if px.dtype != np.uint8:
            self.pixels = px.astype(np.uint8)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def alpha(self) -> np.ndarray:
        return self.pixels[..., 3]

    def copy(self) -> "ImageBuffer":
        return ImageBuffer(self.pixels.copy())

    def to_pil(self) -> Image.Image:
        return Image.fromarray(self.pixels)

    @classmethod
    def from_pil(cls, img: Image.Image) -> "ImageBuffer":
        return cls(np.array(img.convert("RGBA"), dtype=np.uint8))


@dataclass(frozen=True)
class EncodedImage:
    """Encoded image bytes plus MIME type"""
    data: bytes
    mime_type: str = "image/png"

    @property
    def size(self) -> int:
        return len(self.data)

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"


@dataclass(frozen=True)
class BoundingBox:
    """Detected content region, right/bottom exclusive"""
    left: int
    top: int
    right: int
    bottom: int

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    def is_within(self, width: int, height: int) -> bool:
        return 0 <= self.left < self.right <= width and 0 <= self.top < self.bottom <= height

    def pad(self, padding: int, width: int, height: int) -> "BoundingBox":
        """Expand symmetrically, clamped to [0, width] x [0, height]"""
        return BoundingBox(
            left=max(0, self.left - padding),
            top=max(0, self.top - padding),
            right=min(width, self.right + padding),
            bottom=min(height, self.bottom + padding),
        )

    @classmethod
    def full(cls, width: int, height: int) -> "BoundingBox":
        return cls(0, 0, width, height)

    def to_dict(self) -> dict:
        return {"left": self.left, "top": self.top, "right": self.right, "bottom": self.bottom}


def _is_positive_int(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return False
    value = float(value)
    return math.isfinite(value) and value > 0 and value.is_integer()


def _is_positive_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return False
    return math.isfinite(float(value)) and value > 0


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def create_canvas(width: int, height: int) -> ImageBuffer:
    """Allocate a fully transparent RGBA canvas"""
    if not _is_positive_int(width) or not _is_positive_int(height):
        raise ProcessingError(
            ErrorCode.CANVAS_ERROR,
            details=f"Canvas dimensions must be positive integers, got {width!r}x{height!r}",
        )
    return ImageBuffer(np.zeros((int(height), int(width), 4), dtype=np.uint8))


def fit_dimensions(width: int, height: int, max_width: float, max_height: float) -> Tuple[int, int]:
    """
    Output size for resize_image.

    Width pass first; if the height still exceeds max_height, a height pass
    recomputes the width. Never upscales.
    """
    if width <= max_width and height <= max_height:
        return width, height

    if width > max_width:
        ratio = max_width / width
        width = int(max_width)
        height = max(1, _round_half_up(height * ratio))

    if height > max_height:
        ratio = max_height / height
        height = int(max_height)
        width = max(1, _round_half_up(width * ratio))

    return width, height


def resize_image(image: ImageBuffer, max_width: float, max_height: float) -> ImageBuffer:
    """
    Resize to fit within max_width x max_height while keeping the aspect ratio.

    Images that already fit come back as an unscaled copy.
    """
    if not isinstance(image, ImageBuffer):
        raise ProcessingError(ErrorCode.IMAGE_LOAD_ERROR, details="resize_image expects an ImageBuffer")
    if not _is_positive_number(max_width) or not _is_positive_number(max_height):
        raise ProcessingError(
            ErrorCode.CANVAS_ERROR,
            details=f"Max dimensions must be positive numbers, got {max_width!r}x{max_height!r}",
        )

    new_w, new_h = fit_dimensions(image.width, image.height, max_width, max_height)
    if (new_w, new_h) == (image.width, image.height):
        return image.copy()

    resized = cv2.resize(image.pixels, (new_w, new_h), interpolation=cv2.INTER_AREA)
    return ImageBuffer(resized)


def encode_image(
    image: ImageBuffer,
    mime_type: str = "image/png",
    quality: float = 0.95,
    png_compress_level: int = 6,
) -> EncodedImage:
    """Serialize a buffer to PNG/JPEG/WebP. quality is in [0, 1]."""
    if not isinstance(image, ImageBuffer):
        raise ProcessingError(ErrorCode.CANVAS_ERROR, details="encode_image expects an ImageBuffer")
    if mime_type not in SUPPORTED_MIME_TYPES:
        raise ProcessingError(ErrorCode.CANVAS_ERROR, details=f"Unsupported image type: {mime_type!r}")
    if isinstance(quality, bool) or not isinstance(quality, numbers.Real) or not 0 <= quality <= 1:
        raise ProcessingError(ErrorCode.CANVAS_ERROR, details=f"Quality must be within [0, 1], got {quality!r}")

    fmt = SUPPORTED_MIME_TYPES[mime_type]
    img = image.to_pil()
    buffer = io.BytesIO()

    try:
        if fmt == "JPEG":
            # JPEG has no alpha: flatten onto white
            flat = Image.new("RGB", img.size, (255, 255, 255))
            flat.paste(img, mask=img.split()[3])
            q = min(95, max(1, _round_half_up(quality * 100)))
            flat.save(buffer, format="JPEG", quality=q, optimize=True)
        elif fmt == "WEBP":
            q = min(100, max(0, _round_half_up(quality * 100)))
            img.save(buffer, format="WEBP", quality=q, method=6)
        else:
            img.save(buffer, format="PNG", optimize=True, compress_level=png_compress_level)
    except (OSError, ValueError) as e:
        raise ProcessingError(ErrorCode.CANVAS_ERROR, details=f"Encoding to {fmt} failed: {e}", retryable=True)

    return EncodedImage(buffer.getvalue(), mime_type)


def parse_data_url(url: str) -> Tuple[str, bytes]:
    """Split a base64 data URL into (mime_type, bytes)"""
    if not url.startswith("data:") or "," not in url:
        raise ProcessingError(ErrorCode.IMAGE_LOAD_ERROR, details="Not a data URL")
    header, payload = url[5:].split(",", 1)
    parts = header.split(";")
    mime_type = parts[0] or "text/plain"
    if "base64" not in parts[1:]:
        raise ProcessingError(ErrorCode.IMAGE_LOAD_ERROR, details="Only base64 data URLs are supported")
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ProcessingError(ErrorCode.IMAGE_LOAD_ERROR, details=f"Invalid base64 payload: {e}")
    return mime_type, data


def _source_bytes(source: Any) -> bytes:
    if source is None:
        raise ProcessingError(ErrorCode.IMAGE_LOAD_ERROR, details="No image data provided")
    if isinstance(source, EncodedImage):
        return source.data
    if isinstance(source, str):
        return parse_data_url(source)[1]
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source)
    content = getattr(source, "content", None)
    if isinstance(content, (bytes, bytearray)):
        return bytes(content)
    raise ProcessingError(
        ErrorCode.IMAGE_LOAD_ERROR, details=f"Unsupported image source type: {type(source).__name__}"
    )


def decode_image(source: Any) -> ImageBuffer:
    """
    Decode bytes, an EncodedImage, a file-like object with .content, or a
    base64 data URL into an RGBA ImageBuffer.
    """
    data = _source_bytes(source)
    if not data:
        raise ProcessingError(ErrorCode.IMAGE_LOAD_ERROR, details="Image data is empty")

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            return ImageBuffer.from_pil(img)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError, SyntaxError) as e:
        magic_bytes = data[:16]
        raise ProcessingError(
            ErrorCode.IMAGE_LOAD_ERROR,
            details=f"Could not decode image ({len(data)} bytes, magic {magic_bytes.hex()}): {e}",
        )


def crop_image(image: ImageBuffer, box: BoundingBox) -> ImageBuffer:
    """Copy the region inside box"""
    if not box.is_within(image.width, image.height):
        raise ProcessingError(
            ErrorCode.CANVAS_ERROR,
            details=f"Crop box {box.to_dict()} outside {image.width}x{image.height}",
        )
    return ImageBuffer(image.pixels[box.top:box.bottom, box.left:box.right].copy())


def add_transparency_grid(
    image: ImageBuffer,
    grid_size: int = 10,
    color1: Tuple[int, int, int] = (255, 255, 255),
    color2: Tuple[int, int, int] = (204, 204, 204),
) -> ImageBuffer:
    """Composite the image over a checkerboard, the way editors show transparency"""
    if not _is_positive_int(grid_size):
        raise ProcessingError(ErrorCode.CANVAS_ERROR, details=f"Invalid grid size: {grid_size!r}")

    ys, xs = np.indices((image.height, image.width))
    use_first = ((ys // grid_size) % 2) == ((xs // grid_size) % 2)

    grid = np.empty((image.height, image.width, 4), dtype=np.uint8)
    grid[..., :3] = np.where(use_first[..., None], np.array(color1, np.uint8), np.array(color2, np.uint8))
    grid[..., 3] = 255

    composite = Image.alpha_composite(Image.fromarray(grid), image.to_pil())
    return ImageBuffer.from_pil(composite)
