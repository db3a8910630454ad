"""
Design Extractor - Core Source Package
Extracts printed designs from product photos
Background removal service + local bounds detection
"""
from .config import (
    get_config,
    reset_config,
    Config,
    CropMode,
    ProcessingStage,
)
from .errors import (
    ErrorCategory,
    ErrorCode,
    ClassifiedError,
    UploadError,
    ProcessingError,
    ApiError,
    NetworkError,
    normalize_error,
)
from .geometry import (
    ImageBuffer,
    EncodedImage,
    BoundingBox,
    create_canvas,
    resize_image,
    encode_image,
    decode_image,
    crop_image,
    add_transparency_grid,
)
from .bounds import (
    BoundsDetectionStrategy,
    ColorDistanceStrategy,
    DensityStrategy,
    ChainedStrategy,
    PatternExtractor,
    default_strategy,
)
from .recognition import (
    BackgroundRemovalService,
    RemoveBgService,
    RemovalOptions,
    create_background_removal_service,
)
from .recovery import retry, is_retryable, ResourceRegistry
from .cache import ResultCache, make_cache_key
from .validation import ValidationResult, validate_file, ensure_valid_file
from .download import generate_filename, save_result
from .processor import ImageProcessor, InputFile, ProcessingResult

__all__ = [
    # Config
    'get_config',
    'reset_config',
    'Config',
    'CropMode',
    'ProcessingStage',

    # Errors
    'ErrorCategory',
    'ErrorCode',
    'ClassifiedError',
    'UploadError',
    'ProcessingError',
    'ApiError',
    'NetworkError',
    'normalize_error',

    # Geometry
    'ImageBuffer',
    'EncodedImage',
    'BoundingBox',
    'create_canvas',
    'resize_image',
    'encode_image',
    'decode_image',
    'crop_image',
    'add_transparency_grid',

    # Bounds detection
    'BoundsDetectionStrategy',
    'ColorDistanceStrategy',
    'DensityStrategy',
    'ChainedStrategy',
    'PatternExtractor',
    'default_strategy',

    # Background removal
    'BackgroundRemovalService',
    'RemoveBgService',
    'RemovalOptions',
    'create_background_removal_service',

    # Recovery
    'retry',
    'is_retryable',
    'ResourceRegistry',

    # Cache
    'ResultCache',
    'make_cache_key',

    # Upload / download
    'ValidationResult',
    'validate_file',
    'ensure_valid_file',
    'generate_filename',
    'save_result',

    # Processing
    'ImageProcessor',
    'InputFile',
    'ProcessingResult',
]
