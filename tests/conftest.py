"""Shared pytest fixtures for hdr_headroom tests."""
from collections.abc import Callable, Iterator

import numpy as np
import pytest

from hdr_headroom.config import DISPLAY_P3_PQ, EngineConfig
from hdr_headroom.engine import HeadroomEngine
from hdr_headroom.pixels import PixelBuffer
from hdr_headroom.transfer import pq_encode


def encode_pq_codes(rgb_u: np.ndarray, reference_white_nits: float = 203.0) -> np.ndarray:
    """Quantize a linear raster (1.0 = reference white) to 16-bit PQ codes."""
    linear = np.asarray(rgb_u, dtype=np.float64) * reference_white_nits / 10000.0
    return np.round(pq_encode(linear).astype(np.float64) * 65535.0).astype(np.uint16)


# =============================================================================
# Rasters
# =============================================================================

@pytest.fixture
def rng() -> np.random.Generator:
    """Deterministic random generator."""
    return np.random.default_rng(1234)


@pytest.fixture
def make_pq_buffer() -> Callable[..., PixelBuffer]:
    """Factory for PixelBuffers holding a PQ-encoded linear raster."""

    def factory(rgb_u: np.ndarray, *, alpha: bool = False, big_endian: bool = True) -> PixelBuffer:
        codes = encode_pq_codes(rgb_u)
        if alpha:
            a = np.full(codes.shape[:2] + (1,), 65535, dtype=np.uint16)
            codes = np.concatenate([codes, a], axis=2)
        return PixelBuffer.from_codes(codes, big_endian=big_endian)

    return factory


@pytest.fixture
def gradient_rgb() -> np.ndarray:
    """16x32 grey ramp from black to 8x reference white, with a colored corner."""
    ramp = np.linspace(0.0, 8.0, 32, dtype=np.float32)
    rgb = np.repeat(np.tile(ramp, (16, 1))[:, :, np.newaxis], 3, axis=2)
    rgb[:4, :4] = (3.0, 0.2, 0.2)
    return rgb


@pytest.fixture
def hdr_buffer(make_pq_buffer, gradient_rgb) -> PixelBuffer:
    """PQ buffer of the gradient raster."""
    return make_pq_buffer(gradient_rgb)


# =============================================================================
# Engine
# =============================================================================

@pytest.fixture
def config() -> EngineConfig:
    """Engine config with a short debounce and two workers."""
    return EngineConfig(debounce_seconds=0.05, max_workers=2)


@pytest.fixture
def engine(config) -> Iterator[HeadroomEngine]:
    """Engine that is closed after the test."""
    eng = HeadroomEngine(config)
    yield eng
    eng.close()


@pytest.fixture
def registered(engine, hdr_buffer) -> str:
    """Image id of the gradient registered with the engine."""
    engine.register_image("gradient", hdr_buffer, DISPLAY_P3_PQ)
    return "gradient"
