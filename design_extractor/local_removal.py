"""
Local background removal with rembg (U2-Net family models)

Same interface as the remote client. Runs on-device, so there is no quota
and no network failure mode; the model is loaded on first use.
"""
import asyncio
import io
import logging
import re
from typing import Any, Optional

from PIL import Image, UnidentifiedImageError

from .bounds import PatternExtractor
from .errors import ErrorCode, ProcessingError
from .geometry import EncodedImage, ImageBuffer, encode_image
from .recognition import BackgroundRemovalService, RemovalOptions

logger = logging.getLogger(__name__)

_MARGIN_RE = re.compile(r"^\s*(\d+)\s*(px)?\s*$")


def parse_crop_margin(margin: str) -> int:
    """'20px' or '20' -> 20. Percent margins are not supported locally."""
    match = _MARGIN_RE.match(margin or "0")
    if not match:
        raise ValueError(f"Unsupported crop margin for local removal: {margin!r}")
    return int(match.group(1))


class RembgService(BackgroundRemovalService):
    """rembg-backed removal service"""

    def __init__(self, model_name: Optional[str] = None, extractor: Optional[PatternExtractor] = None):
        self.model_name = model_name
        self.extractor = extractor or PatternExtractor()
        self._session = None
        logger.info(f"RembgService initialized | model={model_name or 'default'}")

    @property
    def session(self):
        """Lazy load the rembg model session, once per service"""
        if self._session is None:
            from rembg import new_session
            self._session = new_session(self.model_name) if self.model_name else new_session()
            logger.info(f"Loaded rembg model | {self.model_name or 'default'}")
        return self._session

    def _remove_sync(self, image_bytes: bytes, opts: RemovalOptions) -> EncodedImage:
        from rembg import remove

        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                img.load()
                rgba = remove(img.convert("RGB"), session=self.session).convert("RGBA")
        except (UnidentifiedImageError, OSError, ValueError, RuntimeError) as e:
            raise ProcessingError(
                ErrorCode.CANVAS_ERROR, details=f"rembg background removal failed: {e}", retryable=False
            )

        buffer = ImageBuffer.from_pil(rgba)
        if opts.crop:
            margin = parse_crop_margin(opts.crop_margin)
            buffer = self.extractor.extract_pattern(buffer, padding=margin)

        return encode_image(buffer, "image/png")

    async def remove_background(self, image_bytes: bytes, options: Any = None) -> EncodedImage:
        if isinstance(image_bytes, EncodedImage):
            image_bytes = image_bytes.data
        if not isinstance(image_bytes, (bytes, bytearray)) or len(image_bytes) == 0:
            raise ProcessingError(
                ErrorCode.API_BAD_REQUEST, details="Invalid image data provided", retryable=False
            )

        opts = RemovalOptions.from_value(options)
        logger.info(f"Removing background locally | {len(image_bytes)} bytes, crop={opts.crop}")
        result = await asyncio.to_thread(self._remove_sync, bytes(image_bytes), opts)
        logger.info(f"Local removal succeeded | {result.size} bytes")
        return result

    async def check_service_status(self) -> bool:
        try:
            import rembg  # noqa: F401
        except ImportError as e:
            logger.warning(f"rembg is not available: {e}")
            return False
        return True
