# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Decoded pixel buffers and the linear-light view built on top of them.

A PixelBuffer holds 16-bit PQ code values exactly as the decoder produced
them. validate() checks the declared color profile and returns a LinearView
that decodes the codes to linear light once, on first use, in units where
1.0 = reference white.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Final, Self

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .config import EngineConfig
from .errors import CannotDecodeSource, InvalidColorSpace
from .transfer import decode_pq_codes, luminance

__all__: Final[list[str]] = [
    "PixelBuffer",
    "LinearView",
    "validate",
]

SUPPORTED_COMPONENTS: Final[frozenset[int]] = frozenset({3, 4})


@dataclass(frozen=True, slots=True, kw_only=True)
class PixelBuffer:
    """Immutable 16-bit-per-component interleaved pixel data."""

    data: bytes
    width: int
    height: int
    components_per_pixel: int
    big_endian: bool = True
    bits_per_component: int = 16

    def __post_init__(self) -> None:
        """Validate geometry against the byte length."""
        if self.bits_per_component != 16:
            raise CannotDecodeSource(
                f"Expected 16 bits per component, got {self.bits_per_component}"
            )
        if self.components_per_pixel not in SUPPORTED_COMPONENTS:
            raise CannotDecodeSource(
                f"Expected 3 or 4 components per pixel, got {self.components_per_pixel}"
            )
        if self.width < 0 or self.height < 0:
            raise CannotDecodeSource(f"Invalid dimensions {self.width}x{self.height}")
        if not isinstance(self.data, bytes):
            object.__setattr__(self, "data", bytes(self.data))
        if len(self.data) < self.required_bytes:
            raise CannotDecodeSource(
                f"Buffer holds {len(self.data)} bytes, "
                f"{self.width}x{self.height}x{self.components_per_pixel} needs {self.required_bytes}"
            )

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def required_bytes(self) -> int:
        return self.pixel_count * self.components_per_pixel * 2

    @property
    def megapixels(self) -> float:
        return self.pixel_count / 1_000_000

    def codes(self) -> NDArray[np.uint16]:
        """Return the code values as a native-endian (H, W, C) array."""
        dtype = ">u2" if self.big_endian else "<u2"
        count = self.pixel_count * self.components_per_pixel
        flat = np.frombuffer(self.data, dtype=dtype, count=count)
        return flat.astype(np.uint16).reshape(self.height, self.width, self.components_per_pixel)

    @classmethod
    def from_codes(cls, codes: ArrayLike, *, big_endian: bool = True) -> Self:
        """Pack an (H, W, C) array of 16-bit codes into a buffer."""
        arr = np.asarray(codes)
        if arr.ndim != 3:
            raise CannotDecodeSource(f"Expected (H, W, C) code array, got shape {arr.shape}")
        if np.any(arr < 0) or np.any(arr > 65535):
            raise CannotDecodeSource("Code values out of 16-bit range")
        dtype = ">u2" if big_endian else "<u2"
        height, width, components = arr.shape
        return cls(
            data=np.ascontiguousarray(arr, dtype=dtype).tobytes(),
            width=width,
            height=height,
            components_per_pixel=components,
            big_endian=big_endian,
        )


class LinearView:
    """Read-only linear-light access to a validated image.

    Values are relative to reference white (1.0 = reference white nits) and
    unbounded above. The float decode happens once, on first access, and is
    shared by all readers.
    """

    def __init__(
        self,
        *,
        width: int,
        height: int,
        buffer: PixelBuffer | None = None,
        pq_scale: float = 1.0,
        rgb: NDArray[np.float32] | None = None,
    ) -> None:
        self.width = width
        self.height = height
        self._buffer = buffer
        self._pq_scale = pq_scale
        self._rgb = rgb
        self._luma: NDArray[np.float32] | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_linear(cls, rgb: ArrayLike) -> Self:
        """Wrap an already-linear (H, W, 3+) raster."""
        arr = np.asarray(rgb, dtype=np.float32)
        if arr.ndim != 3 or arr.shape[2] < 3:
            raise CannotDecodeSource(f"Expected (H, W, 3) linear raster, got shape {arr.shape}")
        arr = np.ascontiguousarray(arr[:, :, :3])
        arr.setflags(write=False)
        return cls(width=arr.shape[1], height=arr.shape[0], rgb=arr)

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def megapixels(self) -> float:
        return self.pixel_count / 1_000_000

    @property
    def rgb(self) -> NDArray[np.float32]:
        """Linear R, G, B as a read-only (H, W, 3) float32 array."""
        if self._rgb is None:
            with self._lock:
                if self._rgb is None:
                    self._rgb = self._decode()
        return self._rgb

    @property
    def luminance(self) -> NDArray[np.float32]:
        """Linear Rec.709 luminance as a read-only (H, W) float32 array."""
        if self._luma is None:
            rgb = self.rgb
            with self._lock:
                if self._luma is None:
                    luma = luminance(rgb)
                    luma.setflags(write=False)
                    self._luma = luma
        return self._luma

    def pixel(self, x: int, y: int) -> tuple[float, float, float, float]:
        """Linear (R, G, B, Y) of a single pixel."""
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise IndexError(f"Pixel ({x}, {y}) outside {self.width}x{self.height}")
        r, g, b = (float(v) for v in self.rgb[y, x])
        return r, g, b, float(self.luminance[y, x])

    def _decode(self) -> NDArray[np.float32]:
        assert self._buffer is not None
        codes = self._buffer.codes()[:, :, :3]
        rgb = decode_pq_codes(codes) * np.float32(self._pq_scale)
        rgb = np.ascontiguousarray(rgb, dtype=np.float32)
        rgb.setflags(write=False)
        return rgb


def validate(
    buffer: PixelBuffer,
    profile: str | None,
    config: EngineConfig | None = None,
) -> LinearView:
    """Check the declared profile and return a linear view of the buffer.

    Raises:
        InvalidColorSpace: profile is not exactly the required HDR profile.
    """
    cfg = config or EngineConfig()
    if profile != cfg.required_profile:
        raise InvalidColorSpace(profile)
    return LinearView(
        width=buffer.width,
        height=buffer.height,
        buffer=buffer,
        pq_scale=cfg.pq_scale,
    )
