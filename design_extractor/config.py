"""
Configuration settings for the Design Extractor pipeline
Background removal service, compression, caching and pattern extraction
"""
import os
from enum import Enum
from dataclasses import dataclass, field
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class CropMode(str, Enum):
    """Where the extracted design gets cropped to its content"""
    SERVICE = "service"   # Ask the removal service to crop (crop=true, crop_margin)
    LOCAL = "local"       # Crop locally with the bounds detection strategies
    NONE = "none"         # Keep the whole subject, background removed only


class ProcessingStage(str, Enum):
    """Stages of a single process_image call"""
    VALIDATING = "validating"
    COMPRESSING = "compressing"
    CALLING_SERVICE = "calling-service"
    DECODING_RESULT = "decoding-result"
    CROPPING = "cropping"
    CACHING = "caching"
    DONE = "done"
    FAILED = "failed"


def _default_crop_mode() -> CropMode:
    if not _env_bool("ENABLE_PATTERN_EXTRACTION", "true"):
        return CropMode.NONE
    return CropMode(os.getenv("CROP_MODE", CropMode.SERVICE.value).lower())


@dataclass
class RecognitionConfig:
    """Remote background removal service (remove.bg HTTP contract)"""
    api_key: str = field(default_factory=lambda: os.getenv("REMOVE_BG_API_KEY", ""))
    endpoint: str = field(
        default_factory=lambda: os.getenv(
            "REMOVE_BG_API_ENDPOINT", "https://api.remove.bg/v1.0/removebg"
        )
    )
    account_endpoint: str = field(
        default_factory=lambda: os.getenv(
            "REMOVE_BG_ACCOUNT_ENDPOINT", "https://api.remove.bg/v1.0/account"
        )
    )
    # Options: removebg, rembg (local model)
    provider: str = field(default_factory=lambda: os.getenv("REMOVAL_PROVIDER", "removebg"))
    timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("API_TIMEOUT", "30"))
    )
    status_timeout_seconds: float = 5.0

    @property
    def configured(self) -> bool:
        return self.provider == "rembg" or bool(self.api_key)


@dataclass
class RetryConfig:
    """Exponential backoff: initial_delay * multiplier ** (attempt - 1)"""
    max_attempts: int = field(
        default_factory=lambda: int(os.getenv("API_RETRY_MAX_ATTEMPTS", "3"))
    )
    initial_delay_seconds: float = field(
        default_factory=lambda: float(os.getenv("API_RETRY_INITIAL_DELAY", "1.0"))
    )
    backoff_multiplier: float = field(
        default_factory=lambda: float(os.getenv("API_RETRY_BACKOFF_MULTIPLIER", "2.0"))
    )


@dataclass
class CompressionConfig:
    """Pre-upload compression (bounds upload size and service cost)"""
    max_width: int = field(
        default_factory=lambda: int(os.getenv("COMPRESSION_THRESHOLD", "2000"))
    )
    max_height: int = field(
        default_factory=lambda: int(os.getenv("COMPRESSION_THRESHOLD", "2000"))
    )
    output_format: str = "image/png"
    png_quality: float = 0.95
    jpeg_quality: float = 0.9
    png_compress_level: int = 6


@dataclass
class CacheConfig:
    """In-memory result cache"""
    max_size: int = field(default_factory=lambda: int(os.getenv("CACHE_MAX_SIZE", "10")))
    expiration_seconds: float = field(
        default_factory=lambda: float(os.getenv("CACHE_EXPIRATION_SECONDS", "3600"))
    )


@dataclass
class ExtractionConfig:
    """Pattern extraction (crop to the design on the product)"""
    crop_mode: CropMode = field(default_factory=_default_crop_mode)
    padding: int = field(default_factory=lambda: int(os.getenv("PATTERN_PADDING", "20")))

    opacity_threshold: int = 10
    color_distance_threshold: float = 30.0
    density_threshold: float = 0.05
    sample_stride: int = 10


@dataclass
class UploadConfig:
    """Upload validation rules"""
    max_file_size: int = field(
        default_factory=lambda: int(os.getenv("MAX_FILE_SIZE", str(10 * 1024 * 1024)))
    )
    accepted_mime_types: tuple = ("image/jpeg", "image/png", "image/webp")
    accepted_extensions: tuple = (".jpg", ".jpeg", ".png", ".webp")


@dataclass
class DownloadConfig:
    """Download naming and local output"""
    filename_prefix: str = "extracted-design"
    extension: str = ".png"
    output_dir: Path = field(
        default_factory=lambda: Path(os.getenv("DOWNLOAD_DIR", "downloads"))
    )


@dataclass
class APIConfig:
    """HTTP adapter configuration"""
    host: str = "0.0.0.0"
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))
    cors_origins: list = field(default_factory=lambda: ["*"])


@dataclass
class Config:
    """Main configuration class"""
    recognition: RecognitionConfig = field(default_factory=RecognitionConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    compression: CompressionConfig = field(default_factory=CompressionConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    upload: UploadConfig = field(default_factory=UploadConfig)
    download: DownloadConfig = field(default_factory=DownloadConfig)
    api: APIConfig = field(default_factory=APIConfig)

    debug: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            debug=_env_bool("DEBUG", "false"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


# Global config instance
_config = None


def get_config() -> Config:
    """Get the global config instance"""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Drop the global instance so the next get_config() re-reads the environment"""
    global _config
    _config = None
