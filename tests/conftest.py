"""
Test Configuration
==================

Shared fixtures: synthetic images, upload files and a fake removal service.
"""
import asyncio
import io
import logging
from typing import Any, List, Optional

import numpy as np
import pytest
from PIL import Image

from design_extractor.config import Config, reset_config
from design_extractor.geometry import EncodedImage
from design_extractor.processor import InputFile
from design_extractor.recognition import BackgroundRemovalService, RemovalOptions

logging.getLogger('PIL').setLevel(logging.WARNING)

ENV_VARS = [
    "REMOVE_BG_API_KEY",
    "REMOVE_BG_API_ENDPOINT",
    "REMOVAL_PROVIDER",
    "API_TIMEOUT",
    "API_RETRY_MAX_ATTEMPTS",
    "API_RETRY_INITIAL_DELAY",
    "API_RETRY_BACKOFF_MULTIPLIER",
    "COMPRESSION_THRESHOLD",
    "CACHE_MAX_SIZE",
    "CACHE_EXPIRATION_SECONDS",
    "CROP_MODE",
    "ENABLE_PATTERN_EXTRACTION",
    "PATTERN_PADDING",
    "MAX_FILE_SIZE",
    "DOWNLOAD_DIR",
]


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Each test starts from default configuration"""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


def make_rgba(width: int, height: int, color=(0, 0, 0, 0)) -> np.ndarray:
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[...] = color
    return pixels


def png_bytes(pixels: np.ndarray) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(pixels).save(buffer, format="PNG")
    return buffer.getvalue()


def solid_png(width: int, height: int, color=(96, 96, 96, 255)) -> bytes:
    return png_bytes(make_rgba(width, height, color))


def make_input_file(content: bytes, name: str = "shirt.png", content_type: str = "image/png") -> InputFile:
    return InputFile(name=name, content=content, content_type=content_type)


class FakeRemovalService(BackgroundRemovalService):
    """Records calls and returns a canned image, or raises queued errors"""

    def __init__(self, result: Optional[bytes] = None, errors: Optional[List[BaseException]] = None):
        self.result = result if result is not None else solid_png(40, 30, (224, 0, 0, 255))
        self.errors = list(errors or [])
        self.calls: List[Any] = []
        self.available = True
        self.closed = False

    async def remove_background(self, image_bytes: bytes, options: Any = None) -> EncodedImage:
        self.calls.append((image_bytes, RemovalOptions.from_value(options)))
        if self.errors:
            raise self.errors.pop(0)
        return EncodedImage(self.result, "image/png")

    async def check_service_status(self) -> bool:
        return self.available

    async def aclose(self) -> None:
        self.closed = True


class BlockingRemovalService(FakeRemovalService):
    """Never returns until cancelled; signals when the call has started"""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()

    async def remove_background(self, image_bytes: bytes, options: Any = None) -> EncodedImage:
        self.calls.append((image_bytes, options))
        self.started.set()
        await asyncio.Event().wait()


@pytest.fixture
def config():
    """Fresh config built from the (cleaned) environment"""
    return Config()


@pytest.fixture
def small_png():
    return solid_png(400, 300)


@pytest.fixture
def input_file(small_png):
    return make_input_file(small_png)


@pytest.fixture
def fake_service():
    return FakeRemovalService()


@pytest.fixture
def recorded_sleep():
    """Async sleep replacement that records requested delays"""
    delays: List[float] = []

    async def sleep(delay: float) -> None:
        delays.append(delay)

    sleep.delays = delays
    return sleep
