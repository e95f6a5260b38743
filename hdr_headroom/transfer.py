# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Transfer functions shared by every stage of the engine.

- pq_decode() / pq_encode(): SMPTE ST 2084 EOTF and its inverse
- srgb_encode() / srgb_decode(): IEC 61966-2-1 curve used for the SDR axis
- luminance(): Rec.709 luminance weighting
- pq_lut(): 65536-entry table mapping 16-bit PQ codes to linear light

All functions accept scalars or arrays and clamp inputs to their valid
domain, so none of them can raise on numeric input.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Final

import numpy as np
from numpy.typing import ArrayLike, NDArray

__all__: Final[list[str]] = [
    "PQ_MAX_NITS",
    "REC709_COEFFS",
    "pq_decode",
    "pq_encode",
    "srgb_encode",
    "srgb_decode",
    "luminance",
    "pq_lut",
    "decode_pq_codes",
]

# PQ (SMPTE ST 2084) constants
PQ_M1: Final[float] = 2610.0 / 16384.0  # 0.1593017578125
PQ_M2: Final[float] = 2523.0 / 32.0  # 78.84375
PQ_C1: Final[float] = 3424.0 / 4096.0  # 0.8359375
PQ_C2: Final[float] = 2413.0 / 128.0  # 18.8515625
PQ_C3: Final[float] = 2392.0 / 128.0  # 18.6875

# Absolute luminance represented by linear PQ 1.0
PQ_MAX_NITS: Final[float] = 10000.0

# sRGB breakpoints (encode side, decode side)
SRGB_LINEAR_THRESHOLD: Final[float] = 0.0031308
SRGB_CODE_THRESHOLD: Final[float] = 0.04045

# Rec.709 luminance coefficients
REC709_COEFFS: Final[NDArray[np.float32]] = np.array(
    [0.2126, 0.7152, 0.0722], dtype=np.float32
)


# =============================================================================
# PQ
# =============================================================================


def pq_decode(code: ArrayLike) -> NDArray[np.float32]:
    """Apply the PQ EOTF.

    Input: PQ code values in [0, 1]
    Output: linear light in [0, 1] where 1.0 = 10,000 nits
    """
    v = np.clip(np.asarray(code, dtype=np.float64), 0.0, 1.0)
    vp = np.power(v, 1.0 / PQ_M2)
    numerator = np.maximum(vp - PQ_C1, 0.0)
    # c2 - c3 * vp stays >= 0.164 over the clamped domain
    denominator = PQ_C2 - PQ_C3 * vp
    return np.power(numerator / denominator, 1.0 / PQ_M1).astype(np.float32)


def pq_encode(linear: ArrayLike) -> NDArray[np.float32]:
    """Apply the inverse PQ EOTF (linear [0, 1], 1.0 = 10,000 nits -> code)."""
    y = np.clip(np.asarray(linear, dtype=np.float64), 0.0, 1.0)
    y_m1 = np.power(y, PQ_M1)
    numerator = PQ_C1 + PQ_C2 * y_m1
    denominator = 1.0 + PQ_C3 * y_m1
    return np.power(numerator / denominator, PQ_M2).astype(np.float32)


@lru_cache(maxsize=1)
def pq_lut() -> NDArray[np.float32]:
    """Linear light for every 16-bit PQ code (index = code)."""
    codes = np.arange(65536, dtype=np.float64) / 65535.0
    lut = pq_decode(codes)
    lut.setflags(write=False)
    return lut


def decode_pq_codes(codes: NDArray[np.uint16]) -> NDArray[np.float32]:
    """Decode raw 16-bit PQ codes to linear light through the lookup table."""
    return pq_lut()[codes]


# =============================================================================
# sRGB
# =============================================================================


def srgb_encode(linear: ArrayLike) -> NDArray[np.float32]:
    """Apply sRGB transfer function (IEC 61966-2-1).

    Piecewise:
        x <= 0.0031308: 12.92 * x
        x > 0.0031308:  1.055 * x^(1/2.4) - 0.055
    """
    x = np.clip(np.asarray(linear, dtype=np.float64), 0.0, 1.0)
    return np.where(
        x <= SRGB_LINEAR_THRESHOLD,
        12.92 * x,
        1.055 * np.power(x, 1.0 / 2.4) - 0.055,
    ).astype(np.float32)


def srgb_decode(code: ArrayLike) -> NDArray[np.float32]:
    """Convert sRGB-encoded values in [0, 1] back to linear light."""
    y = np.clip(np.asarray(code, dtype=np.float64), 0.0, 1.0)
    return np.where(
        y <= SRGB_CODE_THRESHOLD,
        y / 12.92,
        np.power((y + 0.055) / 1.055, 2.4),
    ).astype(np.float32)


# =============================================================================
# Luminance
# =============================================================================


def luminance(rgb: ArrayLike) -> NDArray[np.float32]:
    """Linear luminance of an (..., 3) array using Rec.709 weights."""
    arr = np.asarray(rgb, dtype=np.float32)
    return np.dot(arr[..., :3], REC709_COEFFS).astype(np.float32)
