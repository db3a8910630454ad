"""
Error recovery helpers
- Exponential backoff retry loop (async)
- Retryability classifier for errors not produced by the removal client
- Registry of transient resources released on error paths
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

import httpx

from .errors import ErrorCategory, ErrorCode

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_INITIAL_DELAY = 1.0
DEFAULT_BACKOFF_MULTIPLIER = 2.0

RETRYABLE_API_CODES = {
    ErrorCode.API_QUOTA_EXCEEDED,
    ErrorCode.API_SERVICE_UNAVAILABLE,
    ErrorCode.NETWORK_TIMEOUT,
}
NON_RETRYABLE_API_CODES = {
    ErrorCode.API_KEY_INVALID,
    ErrorCode.API_BAD_REQUEST,
}


def backoff_delay(attempt: int, initial_delay: float, backoff_multiplier: float) -> float:
    """Delay after the given 1-based failed attempt"""
    return initial_delay * backoff_multiplier ** (attempt - 1)


def is_retryable(error: Optional[BaseException]) -> bool:
    """
    Whether an error is worth another attempt.

    An explicit boolean `retryable` attribute always wins. Otherwise
    network errors retry, API errors retry unless they are credential or
    bad-request failures, processing errors retry, upload errors never do.
    """
    if error is None:
        return False

    explicit = getattr(error, "retryable", None)
    if isinstance(explicit, bool):
        return explicit

    if isinstance(error, httpx.TransportError):
        return True

    category = getattr(error, "category", None)
    code = getattr(error, "code", None)

    if category == ErrorCategory.NETWORK_ERROR:
        return True

    if category == ErrorCategory.API_ERROR:
        if code in RETRYABLE_API_CODES:
            return True
        if code in NON_RETRYABLE_API_CODES:
            return False
        return True

    if category == ErrorCategory.PROCESSING_ERROR:
        return True

    return False


async def retry(
    operation: Callable[[], Awaitable[Any]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """
    Await operation() up to max_attempts times with exponential backoff.

    Delays are initial_delay * backoff_multiplier ** (attempt - 1) seconds.
    If should_retry is given and returns False for an error, that error is
    raised at once. The last error is raised when attempts run out.
    """
    if not callable(operation):
        raise TypeError("operation must be callable")
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Attempt {attempt}/{max_attempts} failed: {e}")

            if attempt == max_attempts:
                raise
            if should_retry is not None and not should_retry(e):
                raise

            delay = backoff_delay(attempt, initial_delay, backoff_multiplier)
            logger.info(f"Retrying in {delay:.2f}s")
            await sleep(delay)


class ResourceRegistry:
    """
    Tracks transient resources (temp files, open buffers, clients) so they
    can be released on any error path.

    A resource is either a callable, or an object with cleanup() or close().
    """

    def __init__(self):
        self._resources: Set[Any] = set()

    def register_resource(self, resource: Any) -> Any:
        if resource is None:
            raise ValueError("resource must not be None")
        self._resources.add(resource)
        return resource

    def unregister_resource(self, resource: Any) -> None:
        self._resources.discard(resource)

    def cleanup(self) -> int:
        """Release every registered resource; returns how many were released"""
        released = 0
        for resource in list(self._resources):
            try:
                if hasattr(resource, "cleanup"):
                    resource.cleanup()
                elif hasattr(resource, "close"):
                    resource.close()
                elif callable(resource):
                    resource()
                else:
                    logger.warning(f"Don't know how to release resource: {resource!r}")
                    continue
                released += 1
            except Exception as e:
                logger.warning(f"Failed to clean up resource {resource!r}: {e}")
        self._resources.clear()
        return released

    def reset(self) -> None:
        self.cleanup()

    def __len__(self) -> int:
        return len(self._resources)

