import io
import logging
from datetime import datetime, timezone
from typing import List
from contextlib import asynccontextmanager

from fastapi import FastAPI, File, UploadFile, Request
from fastapi.responses import StreamingResponse, JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from design_extractor.config import get_config
from design_extractor.errors import ClassifiedError, ErrorCategory, ErrorCode
from design_extractor.processor import ImageProcessor, InputFile
from design_extractor.recognition import create_background_removal_service
from design_extractor.validation import ensure_valid_file
from design_extractor.download import generate_filename
from design_extractor.logging_config import setup_logging

# Initialize logging
config = get_config()
setup_logging(level=config.log_level)
logger = logging.getLogger(__name__)


# Pydantic models for API
class ExtractResponse(BaseModel):
    """Response from an extraction"""
    success: bool
    filename: str
    width: int
    height: int
    processing_time_ms: int
    from_cache: bool
    original: str
    extracted: str


class CacheStatsResponse(BaseModel):
    """Result cache statistics"""
    size: int
    max_size: int
    keys: List[str]
    expiration_seconds: float


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    service_available: bool
    provider: str
    in_flight: int


# HTTP status per error category / code
API_ERROR_STATUS = {
    ErrorCode.API_BAD_REQUEST: 422,
    ErrorCode.API_KEY_INVALID: 502,
    ErrorCode.API_QUOTA_EXCEEDED: 429,
    ErrorCode.API_SERVICE_UNAVAILABLE: 503,
}
CATEGORY_STATUS = {
    ErrorCategory.UPLOAD_ERROR: 400,
    ErrorCategory.NETWORK_ERROR: 504,
    ErrorCategory.PROCESSING_ERROR: 500,
}


def error_status(error: ClassifiedError) -> int:
    if error.category == ErrorCategory.API_ERROR:
        return API_ERROR_STATUS.get(error.code, 503)
    return CATEGORY_STATUS.get(error.category, 500)


def build_processor() -> ImageProcessor:
    """Processor wired to the configured removal provider (no service when unconfigured)"""
    recognition = config.recognition
    service = None
    if recognition.configured:
        service = create_background_removal_service(recognition.provider, recognition.api_key)
    else:
        logger.warning("REMOVE_BG_API_KEY not set - extraction endpoints will return 503")
    return ImageProcessor(service=service)


# Initialize services
processor = build_processor()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting Design Extractor API...")
    logger.info(f"   Provider: {config.recognition.provider}")
    logger.info(f"   Crop mode: {config.extraction.crop_mode.value}")

    yield

    logger.info("Shutting down...")
    await processor.aclose()


# Create FastAPI app
app = FastAPI(
    title="Design Extractor API",
    description="Extracts printed designs from product photos",
    version="1.0.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.api.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ClassifiedError)
async def classified_error_handler(request: Request, exc: ClassifiedError):
    status = error_status(exc)
    logger.error(f"{request.method} {request.url.path} -> {status}: {exc!r}")
    return JSONResponse(status_code=status, content={"error": exc.to_dict()})


async def read_upload(file: UploadFile) -> InputFile:
    """Read and validate a multipart upload"""
    content = await file.read()
    input_file = InputFile(
        name=file.filename or "",
        content=content,
        content_type=(file.content_type or "").lower(),
    )
    ensure_valid_file(input_file)
    return input_file


# ==================== API Endpoints ====================

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint"""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        service_available=await processor.check_service_status(),
        provider=config.recognition.provider,
        in_flight=len(processor.in_flight),
    )


@app.post("/api/v1/extract/upload", response_model=ExtractResponse)
async def extract_upload(file: UploadFile = File(...)):
    """
    Extract the design from an uploaded product photo

    - Returns both images as base64 data URLs
    """
    input_file = await read_upload(file)
    result = await processor.process_image(input_file)

    return ExtractResponse(
        success=True,
        filename=generate_filename(),
        width=result.width,
        height=result.height,
        processing_time_ms=result.processing_time_ms,
        from_cache=result.from_cache,
        original=result.original.to_data_url(),
        extracted=result.extracted.to_data_url(),
    )


@app.post("/api/v1/extract/download")
async def extract_download(file: UploadFile = File(...)):
    """Extract the design and download it as PNG"""
    input_file = await read_upload(file)
    result = await processor.process_image(input_file)
    filename = generate_filename()

    return StreamingResponse(
        io.BytesIO(result.extracted.data),
        media_type=result.extracted.mime_type,
        headers={
            "Content-Disposition": f"attachment; filename={filename}",
            "X-Processing-Time-Ms": str(result.processing_time_ms),
            "X-From-Cache": str(result.from_cache).lower(),
        }
    )


@app.get("/api/v1/cache/stats", response_model=CacheStatsResponse)
async def cache_stats():
    return processor.get_cache_stats()


@app.delete("/api/v1/cache")
async def clear_cache():
    processor.clear_cache()
    return {"cleared": True}


# Run with: uvicorn api.main:app --reload --port 8000
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=config.api.host,
        port=config.api.port,
        reload=True
    )
