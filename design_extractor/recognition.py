"""
Background Removal Service Client
=================================
remove.bg HTTP contract: multipart POST with image_file + options, binary
image on success, JSON/plain error body with 400/401/402/403/429/5xx.

Failures are classified:
- 400           -> ApiError(API_BAD_REQUEST), terminal
- 401 / 403     -> ApiError(API_KEY_INVALID), terminal
- 402 / 429     -> ApiError(API_QUOTA_EXCEEDED), terminal
- 5xx           -> ApiError(API_SERVICE_UNAVAILABLE), retried
- timeout       -> NetworkError(NETWORK_TIMEOUT), retried
- no connection -> NetworkError(NETWORK_OFFLINE), retried

Retries use exponential backoff: initial_delay * multiplier ** (attempt - 1).
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, fields
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from .config import get_config
from .errors import ApiError, ErrorCode, NetworkError, ProcessingError
from .geometry import SUPPORTED_MIME_TYPES, EncodedImage
from .recovery import is_retryable, retry

logger = logging.getLogger(__name__)

FULL_FRAME_ROI = "0% 0% 100% 100%"


@dataclass
class RemovalOptions:
    """Options forwarded to the removal service"""
    size: str = "auto"          # auto, preview, full, medium, hd, 4k
    type: str = "auto"          # auto, person, product, car
    format: str = "png"         # auto, png, jpg, zip
    crop: bool = False          # crop off empty regions
    crop_margin: str = "0px"    # e.g. "20px", "10%"
    position: str = "original"  # original, center, "0%", "50%"
    roi: str = FULL_FRAME_ROI

    def to_form_fields(self) -> Dict[str, str]:
        form = {"size": self.size, "type": self.type, "format": self.format}
        if self.crop:
            form["crop"] = "true"
            if self.crop_margin:
                form["crop_margin"] = self.crop_margin
        if self.position and self.position != "original":
            form["position"] = self.position
        if self.roi and self.roi != FULL_FRAME_ROI:
            form["roi"] = self.roi
        return form

    @classmethod
    def from_value(cls, options: Any) -> "RemovalOptions":
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        if isinstance(options, dict):
            unknown = set(options) - {f.name for f in fields(cls)}
            if unknown:
                raise ProcessingError(
                    ErrorCode.API_BAD_REQUEST,
                    details=f"Unknown removal options: {', '.join(sorted(unknown))}",
                    retryable=False,
                )
            return cls(**options)
        raise ProcessingError(
            ErrorCode.API_BAD_REQUEST,
            details=f"Unsupported options type: {type(options).__name__}",
            retryable=False,
        )


class BackgroundRemovalService(ABC):
    """Interface every background removal backend implements"""

    @abstractmethod
    async def remove_background(self, image_bytes: bytes, options: Any = None) -> EncodedImage:
        """Return the image with its background removed"""

    @abstractmethod
    async def check_service_status(self) -> bool:
        """True when the backend is reachable and usable"""

    async def aclose(self) -> None:
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()


def _error_details(response: httpx.Response) -> str:
    """Pull a readable message out of a remove.bg error body"""
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:500] if text else f"HTTP {response.status_code}"

    errors = body.get("errors") if isinstance(body, dict) else None
    if errors:
        titles = [e.get("title") or e.get("detail") or str(e) for e in errors if isinstance(e, dict)]
        if titles:
            return "; ".join(titles)
    return str(body)[:500]


def classify_http_error(response: httpx.Response) -> ApiError:
    """Map an error response to a classified ApiError"""
    status = response.status_code
    details = f"HTTP {status}: {_error_details(response)}"

    if status == 400:
        return ApiError(ErrorCode.API_BAD_REQUEST, details=details, retryable=False)
    if status in (401, 403):
        return ApiError(ErrorCode.API_KEY_INVALID, details=details, retryable=False)
    if status in (402, 429):
        return ApiError(ErrorCode.API_QUOTA_EXCEEDED, details=details, retryable=False)
    if status >= 500:
        return ApiError(ErrorCode.API_SERVICE_UNAVAILABLE, details=details, retryable=True)
    return ApiError(ErrorCode.API_SERVICE_UNAVAILABLE, details=details, retryable=False)


def classify_transport_error(error: httpx.TransportError) -> NetworkError:
    """Map a connection-level failure to a NetworkError"""
    if isinstance(error, httpx.TimeoutException):
        return NetworkError(ErrorCode.NETWORK_TIMEOUT, details=f"No response from server: {error!r}")
    return NetworkError(ErrorCode.NETWORK_OFFLINE, details=f"Connection failed: {error!r}")


class RemoveBgService(BackgroundRemovalService):
    """
    remove.bg client with classified errors and bounded retries.

    An httpx.AsyncClient can be injected (tests use httpx.MockTransport);
    otherwise one is created lazily and owned by the service.
    """

    def __init__(
        self,
        api_key: str,
        endpoint: Optional[str] = None,
        account_endpoint: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        initial_delay: Optional[float] = None,
        backoff_multiplier: Optional[float] = None,
        status_timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        if not api_key:
            raise ValueError("API key is required for RemoveBgService")

        config = get_config()
        self.api_key = api_key
        self.endpoint = endpoint or config.recognition.endpoint
        self.account_endpoint = account_endpoint or config.recognition.account_endpoint
        self.timeout = timeout if timeout is not None else config.recognition.timeout_seconds
        self.status_timeout = (
            status_timeout if status_timeout is not None else config.recognition.status_timeout_seconds
        )
        self.max_attempts = max_attempts if max_attempts is not None else config.retry.max_attempts
        self.initial_delay = (
            initial_delay if initial_delay is not None else config.retry.initial_delay_seconds
        )
        self.backoff_multiplier = (
            backoff_multiplier if backoff_multiplier is not None else config.retry.backoff_multiplier
        )
        self._sleep = sleep or asyncio.sleep
        self._client = client
        self._owns_client = client is None

        logger.info(
            f"RemoveBgService initialized | endpoint={self.endpoint} timeout={self.timeout}s "
            f"retries={self.max_attempts} (delay {self.initial_delay}s x{self.backoff_multiplier})"
        )

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazy load the HTTP client"""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    @property
    def headers(self) -> Dict[str, str]:
        return {"X-Api-Key": self.api_key}

    async def remove_background(self, image_bytes: bytes, options: Any = None) -> EncodedImage:
        """
        Remove the background from an image.

        Args:
            image_bytes: Encoded input image (PNG/JPEG/WebP)
            options: RemovalOptions or a dict of its fields

        Returns:
            EncodedImage with the service output (PNG with transparency by default)
        """
        if isinstance(image_bytes, EncodedImage):
            image_bytes = image_bytes.data
        if not isinstance(image_bytes, (bytes, bytearray)) or len(image_bytes) == 0:
            raise ProcessingError(
                ErrorCode.API_BAD_REQUEST, details="Invalid image data provided", retryable=False
            )

        opts = RemovalOptions.from_value(options)
        fields = opts.to_form_fields()
        logger.info(f"Request options: {fields} | image: {len(image_bytes)} bytes")

        async def attempt() -> EncodedImage:
            return await self._post_image(bytes(image_bytes), fields)

        return await retry(
            attempt,
            max_attempts=self.max_attempts,
            initial_delay=self.initial_delay,
            backoff_multiplier=self.backoff_multiplier,
            should_retry=is_retryable,
            sleep=self._sleep,
        )

    async def _post_image(self, image_bytes: bytes, fields: Dict[str, str]) -> EncodedImage:
        try:
            response = await self.client.post(
                self.endpoint,
                data=fields,
                files={"image_file": ("image", image_bytes, "application/octet-stream")},
                headers=self.headers,
                timeout=self.timeout,
            )
        except httpx.TransportError as e:
            error = classify_transport_error(e)
            logger.warning(f"Removal request failed: {error.details}")
            raise error from e

        if response.status_code != 200:
            error = classify_http_error(response)
            logger.error(f"Removal service error: {error.details} (retryable={error.retryable})")
            raise error

        if not response.content:
            raise ProcessingError(
                ErrorCode.API_BAD_REQUEST, details="Empty response from API", retryable=False
            )

        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        mime_type = content_type if content_type in SUPPORTED_MIME_TYPES else "image/png"
        logger.info(f"Removal succeeded | {len(response.content)} bytes ({mime_type})")
        return EncodedImage(response.content, mime_type)

    async def check_service_status(self) -> bool:
        """Lightweight account lookup; True only on HTTP 200"""
        try:
            response = await self.client.get(
                self.account_endpoint, headers=self.headers, timeout=self.status_timeout
            )
        except httpx.HTTPError as e:
            logger.warning(f"Service status check failed: {e!r}")
            return False
        available = response.status_code == 200
        logger.info(f"Service status: HTTP {response.status_code} (available={available})")
        return available

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def create_background_removal_service(provider: str, api_key: str = "", **kwargs) -> BackgroundRemovalService:
    """
    Factory for removal backends.

    Providers: removebg / remove.bg (remote API), rembg (local model).
    """
    name = (provider or "").lower()
    if name in ("removebg", "remove.bg"):
        return RemoveBgService(api_key, **kwargs)
    if name == "rembg":
        from .local_removal import RembgService
        return RembgService(**kwargs)
    raise ValueError(f"Unsupported background removal provider: {provider}")
