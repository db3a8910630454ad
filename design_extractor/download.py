"""
Download helpers - filenames and saving extracted designs to disk
"""
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from .config import get_config

logger = logging.getLogger(__name__)


def generate_filename(prefix: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """
    <prefix>-YYYY-MM-DDTHH-MM-SS-mmmZ.png

    Timestamp is UTC ISO 8601 at millisecond precision, with ':' and '.'
    replaced by '-'.
    """
    download = get_config().download
    prefix = download.filename_prefix if prefix is None else prefix
    if not prefix:
        raise ValueError("Filename prefix must not be empty")

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    stamp = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
    stamp = stamp.replace(":", "-").replace(".", "-")
    return f"{prefix}-{stamp}{download.extension}"


def save_result(result, output_dir: Optional[Union[str, Path]] = None, filename: Optional[str] = None) -> Path:
    """Write the extracted image of a ProcessingResult; returns the file path"""
    if filename is not None and not filename:
        raise ValueError("Filename must not be empty")

    directory = Path(output_dir) if output_dir else get_config().download.output_dir
    directory.mkdir(parents=True, exist_ok=True)

    path = directory / (filename or generate_filename())
    path.write_bytes(result.extracted.data)
    logger.info(f"Saved extracted design: {path} ({len(result.extracted.data)} bytes)")
    return path
