"""
Image Processor - orchestrates a single design extraction

Pipeline per call:
1. Validate input, look up the result cache
2. Decode and pre-compress the upload (downscale above the threshold)
3. Background removal through the configured service (with retries)
4. Decode the result, optionally crop locally to the design
5. Cache and return

Errors leave as ClassifiedError; anything unexpected is normalized to a
retryable ProcessingError. Transient per-call resources are released on
every failure path, including cancellation.
"""
import asyncio
import logging
import mimetypes
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .bounds import PatternExtractor, default_strategy
from .cache import ResultCache, make_cache_key
from .config import Config, CropMode, ProcessingStage, get_config
from .errors import ApiError, ClassifiedError, ErrorCode, ProcessingError, normalize_error
from .geometry import EncodedImage, ImageBuffer, crop_image, decode_image, encode_image, resize_image
from .logging_config import create_request_logger
from .recognition import BackgroundRemovalService, RemovalOptions
from .recovery import ResourceRegistry, is_retryable, retry

logger = logging.getLogger(__name__)


@dataclass
class InputFile:
    """An uploaded image file"""
    name: str
    content: bytes
    content_type: str
    last_modified: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "InputFile":
        path = Path(path)
        content_type, _ = mimetypes.guess_type(path.name)
        modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        return cls(
            name=path.name,
            content=path.read_bytes(),
            content_type=content_type or "application/octet-stream",
            last_modified=modified,
        )


@dataclass(frozen=True)
class ProcessingResult:
    """Result of one extraction. Immutable, so cached entries can be shared"""
    original: EncodedImage
    extracted: EncodedImage
    width: int
    height: int
    processing_time_ms: int
    from_cache: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original": self.original.to_data_url(),
            "extracted": self.extracted.to_data_url(),
            "width": self.width,
            "height": self.height,
            "processing_time_ms": self.processing_time_ms,
            "from_cache": self.from_cache,
        }


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class ImageProcessor:
    """
    Runs the extraction pipeline against a background removal service.

    The cache is an explicit ResultCache so several processors can share
    one, or tests can inject a clock.
    """

    def __init__(
        self,
        service: Optional[BackgroundRemovalService] = None,
        cache: Optional[ResultCache] = None,
        config: Optional[Config] = None,
    ):
        self.config = config or get_config()
        self.service = service
        self.cache = cache or ResultCache(
            max_size=self.config.cache.max_size,
            expiration_seconds=self.config.cache.expiration_seconds,
        )

        extraction = self.config.extraction
        self.extractor = PatternExtractor(default_padding=extraction.padding)
        self.strategy = default_strategy(
            density_threshold=extraction.density_threshold,
            opacity_threshold=extraction.opacity_threshold,
            distance_threshold=extraction.color_distance_threshold,
            sample_stride=extraction.sample_stride,
        )

        # request id -> current stage
        self._in_flight: Dict[str, ProcessingStage] = {}

        logger.info(
            f"ImageProcessor initialized | crop_mode={extraction.crop_mode.value} "
            f"padding={extraction.padding}px cache={self.cache.max_size} entries"
        )

    def set_background_removal_service(self, service: BackgroundRemovalService) -> None:
        self.service = service

    @property
    def in_flight(self) -> Dict[str, ProcessingStage]:
        """Snapshot of running requests and their current stage"""
        return dict(self._in_flight)

    def _track(self, request_id: str, registry: ResourceRegistry) -> None:
        self._in_flight[request_id] = ProcessingStage.VALIDATING
        registry.register_resource(lambda: self._in_flight.pop(request_id, None))

    def _default_options(self) -> RemovalOptions:
        extraction = self.config.extraction
        return RemovalOptions(
            size="auto",
            type="auto",
            format="png",
            crop=extraction.crop_mode == CropMode.SERVICE,
            crop_margin=f"{extraction.padding}px",
        )

    async def process_image(self, input_file: InputFile) -> ProcessingResult:
        """
        Extract the design from an uploaded product image.

        Raises:
            ClassifiedError: every failure, classified by category and code
        """
        start = time.perf_counter()

        if not isinstance(input_file, InputFile):
            raise ProcessingError(
                ErrorCode.API_BAD_REQUEST,
                details=f"Expected an InputFile, got {type(input_file).__name__}",
                retryable=False,
            )
        if self.service is None:
            raise ApiError(
                ErrorCode.API_SERVICE_UNAVAILABLE,
                details="Background removal service is not configured",
                retryable=False,
            )

        request_id = uuid.uuid4().hex[:8]
        request_log = create_request_logger(__name__)
        registry = ResourceRegistry()
        self._track(request_id, registry)

        def stage(value: ProcessingStage, **details) -> None:
            self._in_flight[request_id] = value
            request_log.log_stage(value.value, **details)

        request_log.start_request(
            request_id,
            "extract_design",
            file=input_file.name,
            content_type=input_file.content_type,
            size_bytes=input_file.size,
        )

        try:
            stage(ProcessingStage.VALIDATING)
            cache_key = make_cache_key(input_file)
            cached = self.cache.get(cache_key)
            if cached is not None:
                result = replace(cached, from_cache=True, processing_time_ms=_elapsed_ms(start))
                stage(ProcessingStage.DONE, cache="hit")
                request_log.end_request(True, from_cache=True)
                registry.cleanup()
                return result

            stage(ProcessingStage.COMPRESSING)
            decoded = await asyncio.to_thread(decode_image, input_file)
            upload = await self.compress_image(input_file, decoded)

            stage(ProcessingStage.CALLING_SERVICE, upload_bytes=upload.size)
            extracted = await self.service.remove_background(upload.data, self._default_options())

            stage(ProcessingStage.DECODING_RESULT, result_bytes=extracted.size)
            result_image = await asyncio.to_thread(decode_image, extracted)

            if self.config.extraction.crop_mode == CropMode.LOCAL:
                stage(ProcessingStage.CROPPING)
                result_image, extracted = await asyncio.to_thread(self._crop_locally, result_image)

            result = ProcessingResult(
                original=EncodedImage(bytes(input_file.content), input_file.content_type),
                extracted=extracted,
                width=result_image.width,
                height=result_image.height,
                processing_time_ms=_elapsed_ms(start),
                from_cache=False,
            )

            stage(ProcessingStage.CACHING)
            self.cache.put(cache_key, result)

            stage(ProcessingStage.DONE, width=result.width, height=result.height)
            request_log.end_request(True, processing_time_ms=result.processing_time_ms)
            registry.cleanup()
            return result

        except asyncio.CancelledError:
            logger.warning(f"Request {request_id} cancelled")
            registry.cleanup()
            request_log.end_request(False, cancelled=True)
            raise
        except ClassifiedError as e:
            stage(ProcessingStage.FAILED, error=e.code.value)
            logger.error(f"Processing failed: {e!r}")
            registry.cleanup()
            request_log.end_request(False, error=e.code.value)
            raise
        except Exception as e:
            error = normalize_error(e)
            stage(ProcessingStage.FAILED, error=error.code.value)
            logger.error(f"Processing failed with unexpected error: {e!r}", exc_info=True)
            registry.cleanup()
            request_log.end_request(False, error=error.code.value)
            raise error from e

    def _crop_locally(self, image: ImageBuffer):
        box = self.extractor.detect_bounds(image, self.strategy)
        if box is not None:
            image = crop_image(image, box)
        else:
            logger.info("No design detected, keeping the full image")
        return image, encode_image(image, "image/png", png_compress_level=self.config.compression.png_compress_level)

    async def compress_image(self, input_file: InputFile, decoded: Optional[ImageBuffer] = None) -> EncodedImage:
        """
        Downscale the upload when it exceeds the compression threshold.

        Uploads within bounds are returned byte-for-byte.
        """
        compression = self.config.compression
        try:
            if decoded is None:
                decoded = await asyncio.to_thread(decode_image, input_file)

            if decoded.width <= compression.max_width and decoded.height <= compression.max_height:
                logger.debug(f"No compression needed ({decoded.width}x{decoded.height})")
                return EncodedImage(input_file.content, input_file.content_type)

            resized = await asyncio.to_thread(
                resize_image, decoded, compression.max_width, compression.max_height
            )
            quality = (
                compression.jpeg_quality
                if compression.output_format == "image/jpeg"
                else compression.png_quality
            )
            encoded = await asyncio.to_thread(
                encode_image,
                resized,
                compression.output_format,
                quality,
                compression.png_compress_level,
            )
            logger.info(
                f"Compressed {decoded.width}x{decoded.height} -> {resized.width}x{resized.height} "
                f"({input_file.size} -> {encoded.size} bytes)"
            )
            return encoded
        except ClassifiedError:
            raise
        except Exception as e:
            raise ProcessingError(
                ErrorCode.CANVAS_ERROR, details=f"Image compression failed: {e}", retryable=True
            ) from e

    async def remove_background(self, image: Any, options: Any = None) -> EncodedImage:
        """Call the removal service directly, cropping with the configured margin by default"""
        if self.service is None:
            raise ApiError(
                ErrorCode.API_SERVICE_UNAVAILABLE,
                details="Background removal service is not configured",
                retryable=False,
            )
        if isinstance(image, InputFile):
            image = image.content
        if options is None:
            options = RemovalOptions(crop=True, crop_margin=f"{self.config.extraction.padding}px")
        else:
            options = RemovalOptions.from_value(options)
        return await self.service.remove_background(image, options)

    async def check_service_status(self) -> bool:
        if self.service is None:
            return False
        return await self.service.check_service_status()

    def clear_cache(self) -> None:
        self.cache.clear()

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    async def process_with_retry(self, input_file: InputFile) -> ProcessingResult:
        """process_image again while the failure is retryable"""
        retry_config = self.config.retry
        return await retry(
            lambda: self.process_image(input_file),
            max_attempts=retry_config.max_attempts,
            initial_delay=retry_config.initial_delay_seconds,
            backoff_multiplier=retry_config.backoff_multiplier,
            should_retry=is_retryable,
        )

    async def aclose(self) -> None:
        if self.service is not None:
            await self.service.aclose()
