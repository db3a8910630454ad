"""
Classified errors for the extraction pipeline

Every failure leaving the pipeline carries a category, a code and a
retryable flag so callers can decide on a retry without re-deriving it.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    UPLOAD_ERROR = "UPLOAD_ERROR"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    API_ERROR = "API_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"


class ErrorCode(str, Enum):
    INVALID_TYPE = "INVALID_TYPE"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    FILE_CORRUPTED = "FILE_CORRUPTED"
    CANVAS_ERROR = "CANVAS_ERROR"
    IMAGE_LOAD_ERROR = "IMAGE_LOAD_ERROR"
    API_KEY_INVALID = "API_KEY_INVALID"
    API_QUOTA_EXCEEDED = "API_QUOTA_EXCEEDED"
    API_SERVICE_UNAVAILABLE = "API_SERVICE_UNAVAILABLE"
    API_BAD_REQUEST = "API_BAD_REQUEST"
    NETWORK_TIMEOUT = "NETWORK_TIMEOUT"
    NETWORK_OFFLINE = "NETWORK_OFFLINE"


# User-facing messages
ERROR_MESSAGES: Dict[ErrorCode, str] = {
    ErrorCode.INVALID_TYPE: "Unsupported file type. Please upload a JPG, PNG or WebP image.",
    ErrorCode.FILE_TOO_LARGE: "File is too large. Please upload an image smaller than 10MB.",
    ErrorCode.FILE_CORRUPTED: "The file is corrupted. Please try another image.",
    ErrorCode.CANVAS_ERROR: "Image processing failed. Please try again.",
    ErrorCode.IMAGE_LOAD_ERROR: "The image could not be loaded. Please retry or try another image.",
    ErrorCode.API_KEY_INVALID: "The background removal API key is invalid. Please contact the administrator.",
    ErrorCode.API_QUOTA_EXCEEDED: "The background removal quota is used up. Please contact the administrator.",
    ErrorCode.API_SERVICE_UNAVAILABLE: "The service is temporarily unavailable. Please try again later.",
    ErrorCode.API_BAD_REQUEST: "No design could be recognized in the image. Please try a clearer photo.",
    ErrorCode.NETWORK_TIMEOUT: "The request timed out. Please check your connection and retry.",
    ErrorCode.NETWORK_OFFLINE: "Network connection failed. Please check your connection and retry.",
}


class ClassifiedError(Exception):
    """Base pipeline error with category, code and retryable flag"""

    category: ErrorCategory = ErrorCategory.PROCESSING_ERROR

    def __init__(
        self,
        code: ErrorCode,
        details: Optional[str] = None,
        retryable: bool = False,
        message: Optional[str] = None,
    ):
        self.code = ErrorCode(code)
        self.details = details or ""
        self.retryable = retryable
        self.message = message or ERROR_MESSAGES.get(self.code) or self.details
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
            "timestamp": self.timestamp,
        }

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code.value!r}, "
            f"details={self.details!r}, retryable={self.retryable})"
        )


class UploadError(ClassifiedError):
    """Bad input file. Never retryable."""
    category = ErrorCategory.UPLOAD_ERROR

    def __init__(self, code: ErrorCode, details: Optional[str] = None, message: Optional[str] = None):
        super().__init__(code, details, retryable=False, message=message)


class ProcessingError(ClassifiedError):
    """Local decode/encode/canvas failure"""
    category = ErrorCategory.PROCESSING_ERROR


class ApiError(ClassifiedError):
    """The removal service rejected the request"""
    category = ErrorCategory.API_ERROR


class NetworkError(ClassifiedError):
    """No response received. Always retryable."""
    category = ErrorCategory.NETWORK_ERROR

    def __init__(self, code: ErrorCode, details: Optional[str] = None, message: Optional[str] = None):
        super().__init__(code, details, retryable=True, message=message)


def normalize_error(error: BaseException) -> ClassifiedError:
    """Return a classified error; unclassified exceptions become a generic ProcessingError"""
    if isinstance(error, ClassifiedError):
        return error
    normalized = ProcessingError(
        ErrorCode.CANVAS_ERROR,
        details=str(error) or type(error).__name__,
        retryable=True,
    )
    normalized.__cause__ = error
    return normalized
