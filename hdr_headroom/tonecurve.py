# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Tone curve boundary.

The engine never hands raw method parameters to a tone curve: an applicator
receives a linear raster plus the resolved (source, target) headroom pair
and returns a linear SDR raster. Any callable with that signature can be
plugged in; ExtendedReinhardCurve is the default.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Final, Protocol

import numpy as np
from numpy.typing import NDArray

from .errors import ToneMapFailed
from .headroom import ResolvedHeadroom
from .pixels import LinearView
from .transfer import luminance

__all__: Final[list[str]] = [
    "ToneCurveApplicator",
    "ExtendedReinhardCurve",
    "apply_tone_curve",
]


class ToneCurveApplicator(Protocol):
    """Maps linear HDR to linear SDR given a resolved headroom pair.

    Pixels at or below source_headroom must land in [0, target_headroom];
    brighter pixels are compressed or clipped at the applicator's discretion.
    """

    def __call__(
        self,
        rgb: NDArray[np.float32],
        source_headroom: float,
        target_headroom: float,
    ) -> NDArray[np.float32]: ...


@dataclass(frozen=True, slots=True)
class ExtendedReinhardCurve:
    """Extended Reinhard on luminance with white point at source headroom.

    Formula (x = Y / target, w = source / target):
        y = x * (1 + x / w^2) / (1 + x)

    maps 0 -> 0 and source -> target. RGB is scaled by the luminance ratio
    to preserve hue, so saturated highlights can still exceed 1.0 per channel.
    """

    epsilon: float = 1e-10

    def __call__(
        self,
        rgb: NDArray[np.float32],
        source_headroom: float,
        target_headroom: float,
    ) -> NDArray[np.float32]:
        rgb = np.maximum(np.asarray(rgb, dtype=np.float32), 0.0)
        if source_headroom <= target_headroom:
            return rgb.copy()
        if target_headroom <= 0.0:
            return np.zeros_like(rgb)

        y_in = luminance(rgb)
        x = y_in / np.float32(target_headroom)
        w = source_headroom / target_headroom
        y_out = target_headroom * x * (1.0 + x / (w * w)) / (1.0 + x)

        scale = np.divide(
            y_out,
            y_in,
            out=np.zeros_like(y_in),
            where=y_in > self.epsilon,
        )
        return (rgb * scale[:, :, np.newaxis]).astype(np.float32)


def apply_tone_curve(
    applicator: ToneCurveApplicator,
    view: LinearView,
    headroom: ResolvedHeadroom,
) -> NDArray[np.float32]:
    """Run *applicator* on *view* and check its result.

    Raises:
        ToneMapFailed: headroom pair is negative or non-finite, the applicator
            raised, or it returned a raster of the wrong shape or with
            non-finite samples
    """
    source, target = headroom.source, headroom.target
    if not (math.isfinite(source) and math.isfinite(target)) or source < 0 or target < 0:
        raise ToneMapFailed(f"Invalid headroom pair: source={source}, target={target}")

    try:
        sdr = applicator(view.rgb, source, target)
    except ToneMapFailed:
        raise
    except Exception as e:
        raise ToneMapFailed(f"Tone curve failed: {e}") from e

    sdr = np.asarray(sdr, dtype=np.float32)
    expected = (view.height, view.width, 3)
    if sdr.shape != expected:
        raise ToneMapFailed(f"Tone curve returned shape {sdr.shape}, expected {expected}")
    if not np.all(np.isfinite(sdr)):
        raise ToneMapFailed("Tone curve produced non-finite samples")
    sdr.setflags(write=False)
    return sdr
