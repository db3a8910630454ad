"""
Upload validation - type, size and extension checks before processing
"""
import logging
import os
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from .config import get_config
from .errors import ErrorCode, UploadError

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    is_valid: bool
    error: Optional[ErrorCode] = None


def validate_file_type(mime_type: str, accepted: Optional[Iterable[str]] = None) -> bool:
    accepted = accepted if accepted is not None else get_config().upload.accepted_mime_types
    return isinstance(mime_type, str) and mime_type.lower() in accepted


def validate_file_size(size: int, max_size: Optional[int] = None) -> bool:
    max_size = max_size if max_size is not None else get_config().upload.max_file_size
    if isinstance(size, bool) or not isinstance(size, int):
        return False
    return 0 <= size <= max_size


def validate_file_extension(filename: str, accepted: Optional[Iterable[str]] = None) -> bool:
    accepted = accepted if accepted is not None else get_config().upload.accepted_extensions
    _, ext = os.path.splitext(filename or "")
    return ext.lower() in accepted


def validate_file(input_file: Any) -> ValidationResult:
    """Check type, then size, then extension"""
    if input_file is None:
        return ValidationResult(False, ErrorCode.INVALID_TYPE)

    upload = get_config().upload
    content = getattr(input_file, "content", b"") or b""

    if not validate_file_type(getattr(input_file, "content_type", ""), upload.accepted_mime_types):
        return ValidationResult(False, ErrorCode.INVALID_TYPE)
    if not validate_file_size(len(content), upload.max_file_size):
        return ValidationResult(False, ErrorCode.FILE_TOO_LARGE)
    if not validate_file_extension(getattr(input_file, "name", ""), upload.accepted_extensions):
        return ValidationResult(False, ErrorCode.INVALID_TYPE)

    return ValidationResult(True)


def ensure_valid_file(input_file: Any) -> None:
    """Raise UploadError when the file fails validation"""
    result = validate_file(input_file)
    if result.is_valid:
        return
    name = getattr(input_file, "name", None)
    content_type = getattr(input_file, "content_type", None)
    size = len(getattr(input_file, "content", b"") or b"")
    logger.warning(f"Rejected upload {name!r} ({content_type}, {size} bytes): {result.error.value}")
    raise UploadError(
        result.error,
        details=f"name={name!r} type={content_type!r} size={size}",
    )
