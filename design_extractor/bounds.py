"""
Bounds Detector - locate the printed design on a background-removed product

Two strategies, both returning a BoundingBox or None ("no content found"):

1. ColorDistanceStrategy
   - dominant color from a strided sample of opaque pixels (quantized to 32)
   - foreground = visible pixels whose RGB distance to it exceeds a cutoff
   - flat-color image: falls back to plain alpha bounds
2. DensityStrategy
   - per-row / per-column fraction of visible pixels
   - first/last row and column above a density threshold

ChainedStrategy runs strategies in order and keeps the first hit. The
default chain is density first (cheap), then color distance.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .errors import ErrorCode, ProcessingError
from .geometry import BoundingBox, ImageBuffer, crop_image

logger = logging.getLogger(__name__)

DEFAULT_PADDING = 20
DEFAULT_OPACITY_THRESHOLD = 10
DEFAULT_DISTANCE_THRESHOLD = 30.0
DEFAULT_DENSITY_THRESHOLD = 0.05
DEFAULT_SAMPLE_STRIDE = 10
SAMPLE_ALPHA_THRESHOLD = 200
QUANTIZE_STEP = 32


def _check_buffer(image: ImageBuffer) -> np.ndarray:
    if not isinstance(image, ImageBuffer):
        raise ProcessingError(
            ErrorCode.CANVAS_ERROR,
            details=f"Bounds detection expects an ImageBuffer, got {type(image).__name__}",
        )
    return image.pixels


def mask_bounds(mask: np.ndarray) -> Optional[BoundingBox]:
    """Tightest box around the True cells of a 2D mask"""
    rows = np.flatnonzero(mask.any(axis=1))
    if rows.size == 0:
        return None
    cols = np.flatnonzero(mask.any(axis=0))
    return BoundingBox(
        left=int(cols[0]),
        top=int(rows[0]),
        right=int(cols[-1]) + 1,
        bottom=int(rows[-1]) + 1,
    )


def apply_padding(box: BoundingBox, padding: int, width: int, height: int) -> BoundingBox:
    """Add padding on every side, clamped to the image extents"""
    if padding < 0:
        raise ValueError(f"padding must be >= 0, got {padding}")
    return box.pad(padding, width, height)


class BoundsDetectionStrategy(ABC):
    """Finds the content region of a background-removed image"""

    name: str = "base"

    @abstractmethod
    def detect(self, image: ImageBuffer) -> Optional[BoundingBox]:
        """Return the content box, or None when no content is found"""


class AlphaStrategy(BoundsDetectionStrategy):
    """Any pixel above the opacity threshold is content, color ignored"""

    name = "alpha"

    def __init__(self, opacity_threshold: int = DEFAULT_OPACITY_THRESHOLD):
        self.opacity_threshold = opacity_threshold

    def detect(self, image: ImageBuffer) -> Optional[BoundingBox]:
        pixels = _check_buffer(image)
        return mask_bounds(pixels[..., 3] > self.opacity_threshold)


class ColorDistanceStrategy(BoundsDetectionStrategy):
    """Excludes the dominant (garment) color; what remains is the design"""

    name = "color_distance"

    def __init__(
        self,
        opacity_threshold: int = DEFAULT_OPACITY_THRESHOLD,
        distance_threshold: float = DEFAULT_DISTANCE_THRESHOLD,
        sample_stride: int = DEFAULT_SAMPLE_STRIDE,
        sample_alpha: int = SAMPLE_ALPHA_THRESHOLD,
        quantize_step: int = QUANTIZE_STEP,
    ):
        if sample_stride < 1:
            raise ValueError(f"sample_stride must be >= 1, got {sample_stride}")
        self.opacity_threshold = opacity_threshold
        self.distance_threshold = distance_threshold
        self.sample_stride = sample_stride
        self.sample_alpha = sample_alpha
        self.quantize_step = quantize_step
        self._basic = AlphaStrategy(opacity_threshold)

    def dominant_color(self, image: ImageBuffer) -> Tuple[int, int, int]:
        """
        Most frequent quantized color among sampled opaque pixels.

        Samples every Nth pixel of every Nth row. Ties go to the color seen
        first in scan order; (0, 0, 0) when nothing qualifies.
        """
        pixels = _check_buffer(image)
        samples = pixels[:: self.sample_stride, :: self.sample_stride].reshape(-1, 4)
        opaque = samples[samples[:, 3] > self.sample_alpha][:, :3]
        if opaque.shape[0] == 0:
            return (0, 0, 0)

        step = self.quantize_step
        quantized = (opaque // step) * step
        colors, first_seen, counts = np.unique(
            quantized, axis=0, return_index=True, return_counts=True
        )
        # highest count first, then earliest occurrence
        best = np.lexsort((first_seen, -counts))[0]
        r, g, b = (int(c) for c in colors[best])
        return (r, g, b)

    def detect(self, image: ImageBuffer) -> Optional[BoundingBox]:
        pixels = _check_buffer(image)
        dominant = self.dominant_color(image)
        logger.debug(f"Dominant color: {dominant}")

        visible = pixels[..., 3] > self.opacity_threshold
        diff = pixels[..., :3].astype(np.int32) - np.array(dominant, dtype=np.int32)
        distance_sq = np.einsum("ijk,ijk->ij", diff, diff)
        foreground = visible & (distance_sq > self.distance_threshold ** 2)

        box = mask_bounds(foreground)
        if box is None:
            logger.debug("No pixel clears the color distance cutoff, using alpha bounds")
            return self._basic.detect(image)
        return box


class DensityStrategy(BoundsDetectionStrategy):
    """Row/column opacity density thresholding"""

    name = "density"

    def __init__(
        self,
        density_threshold: float = DEFAULT_DENSITY_THRESHOLD,
        opacity_threshold: int = DEFAULT_OPACITY_THRESHOLD,
    ):
        self.density_threshold = density_threshold
        self.opacity_threshold = opacity_threshold

    def densities(self, image: ImageBuffer) -> Tuple[np.ndarray, np.ndarray]:
        """(row_density, column_density), each in [0, 1]"""
        pixels = _check_buffer(image)
        visible = pixels[..., 3] > self.opacity_threshold
        return visible.mean(axis=1), visible.mean(axis=0)

    def detect(self, image: ImageBuffer) -> Optional[BoundingBox]:
        row_density, col_density = self.densities(image)
        rows = np.flatnonzero(row_density > self.density_threshold)
        cols = np.flatnonzero(col_density > self.density_threshold)
        if rows.size == 0 or cols.size == 0:
            return None
        return BoundingBox(
            left=int(cols[0]),
            top=int(rows[0]),
            right=int(cols[-1]) + 1,
            bottom=int(rows[-1]) + 1,
        )


class ChainedStrategy(BoundsDetectionStrategy):
    """First strategy that finds content wins"""

    name = "chained"

    def __init__(self, strategies: Sequence[BoundsDetectionStrategy]):
        if not strategies:
            raise ValueError("ChainedStrategy needs at least one strategy")
        self.strategies: List[BoundsDetectionStrategy] = list(strategies)

    def detect(self, image: ImageBuffer) -> Optional[BoundingBox]:
        for strategy in self.strategies:
            box = strategy.detect(image)
            if box is not None:
                logger.debug(f"Bounds found by {strategy.name}: {box.to_dict()}")
                return box
            logger.debug(f"{strategy.name} found no content, trying next strategy")
        return None


def default_strategy(
    density_threshold: float = DEFAULT_DENSITY_THRESHOLD,
    opacity_threshold: int = DEFAULT_OPACITY_THRESHOLD,
    distance_threshold: float = DEFAULT_DISTANCE_THRESHOLD,
    sample_stride: int = DEFAULT_SAMPLE_STRIDE,
) -> ChainedStrategy:
    """Density first, color distance as fallback"""
    return ChainedStrategy([
        DensityStrategy(density_threshold, opacity_threshold),
        ColorDistanceStrategy(opacity_threshold, distance_threshold, sample_stride),
    ])


class PatternExtractor:
    """
    Crops a background-removed product image down to its design.

    extract_pattern uses the color distance strategy; smart_crop tries the
    density strategy first and falls back to extract_pattern.
    """

    def __init__(self, default_padding: int = DEFAULT_PADDING):
        self.default_padding = default_padding

    def detect_bounds(
        self,
        image: ImageBuffer,
        strategy: Optional[BoundsDetectionStrategy] = None,
        padding: Optional[int] = None,
    ) -> Optional[BoundingBox]:
        """Run a strategy and pad the result; None when nothing was found"""
        strategy = strategy or default_strategy()
        padding = self.default_padding if padding is None else padding

        box = strategy.detect(image)
        if box is None:
            return None
        padded = apply_padding(box, padding, image.width, image.height)
        logger.info(
            f"Pattern bounds ({strategy.name}): {box.to_dict()} -> padded {padded.to_dict()} "
            f"({padded.width}x{padded.height})"
        )
        return padded

    def extract_pattern(
        self,
        image: ImageBuffer,
        padding: Optional[int] = None,
        threshold: int = DEFAULT_OPACITY_THRESHOLD,
    ) -> ImageBuffer:
        """Crop with the color distance strategy; full image when nothing is found"""
        logger.info(f"Detecting pattern bounds on {image.width}x{image.height} (threshold {threshold})")
        box = self.detect_bounds(image, ColorDistanceStrategy(opacity_threshold=threshold), padding)
        if box is None:
            logger.info("No pattern detected, returning full image")
            return image.copy()
        return crop_image(image, box)

    def smart_crop(
        self,
        image: ImageBuffer,
        density_threshold: float = DEFAULT_DENSITY_THRESHOLD,
        padding: Optional[int] = None,
    ) -> ImageBuffer:
        """Crop by content density, falling back to extract_pattern"""
        box = self.detect_bounds(image, DensityStrategy(density_threshold), padding)
        if box is None:
            return self.extract_pattern(image, padding=padding)
        return crop_image(image, box)
