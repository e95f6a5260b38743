# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Headroom estimation.

Three interchangeable methods turn a linear image into the (source,
target) headroom pair handed to the tone curve:

- PeakMax:    headroom = max(1, 1 + peak - peak**ratio)
- Percentile: luminance below which a fraction p of pixels fall
- Direct:     user-declared source/target, clamped to a sane range

Headroom is a ratio to reference white: 1.0 means "no highlights above
SDR white", 4.0 means two stops of highlight.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field, replace
from typing import Final, Self

from .errors import HeadroomCalculationFailed
from .percentile import PercentileTable, build_percentile_table, headroom_from_cdf
from .pixels import LinearView
from .scheduler import CancellationToken, checkpoint

__all__: Final[list[str]] = [
    "PeakMax",
    "Percentile",
    "Direct",
    "HeadroomMethod",
    "ImageSettings",
    "ResolvedHeadroom",
    "DIRECT_MIN_HEADROOM",
    "measure_peak",
    "peak_max_headroom",
    "direct_headroom",
    "estimate_headroom",
    "resolve_headroom",
]

logger = logging.getLogger(__name__)

# Lower clamp for Direct headrooms
DIRECT_MIN_HEADROOM: Final[float] = 0.1


# =============================================================================
# Methods
# =============================================================================


def _check_unit_interval(name: str, value: float) -> None:
    if not (math.isfinite(value) and 0.0 <= value <= 1.0):
        msg = f"{name} must be in [0, 1], got {value}"
        raise ValueError(msg)


@dataclass(frozen=True, slots=True)
class PeakMax:
    """Compress toward SDR by a ratio of the measured peak.

    ratio=0 keeps the full peak (no compression); ratio=1 forces headroom 1
    (maximum clipping).
    """

    ratio: float = 0.2

    def __post_init__(self) -> None:
        _check_unit_interval("ratio", self.ratio)

    def fingerprint(self) -> str:
        return f"m=peakMax;r={self.ratio}"


@dataclass(frozen=True, slots=True)
class Percentile:
    """Headroom at the luminance percentile p (e.g. 0.999 = 99.9th)."""

    p: float = 0.999

    def __post_init__(self) -> None:
        _check_unit_interval("p", self.p)

    def fingerprint(self) -> str:
        return f"m=percentile;p={self.p}"


@dataclass(frozen=True, slots=True)
class Direct:
    """Explicit source/target headroom; None selects the measured default."""

    source_headroom: float | None = None
    target_headroom: float | None = None

    def fingerprint(self) -> str:
        sh = self.source_headroom if self.source_headroom is not None else -1
        th = self.target_headroom if self.target_headroom is not None else -1
        return f"m=direct;sh={sh};th={th}"


HeadroomMethod = PeakMax | Percentile | Direct


@dataclass(frozen=True, slots=True)
class ImageSettings:
    """Processing settings for a single image."""

    method: HeadroomMethod = field(default_factory=PeakMax)
    show_clipped_overlay: bool = True

    def fingerprint(self) -> str:
        """Cache key fragment for results that depend on tone mapping."""
        return self.method.fingerprint()

    def with_method(self, method: HeadroomMethod) -> Self:
        return replace(self, method=method)

    def reset_direct_defaults(self, measured_headroom: float) -> Self:
        """Switch to Direct with source = max(1, measured) and target = 1."""
        real = max(1.0, measured_headroom) if math.isfinite(measured_headroom) else 1.0
        return replace(self, method=Direct(source_headroom=real, target_headroom=1.0))


@dataclass(frozen=True, slots=True)
class ResolvedHeadroom:
    """The only inputs the tone curve applicator receives."""

    source: float
    target: float = 1.0


# =============================================================================
# Estimation
# =============================================================================


def measure_peak(view: LinearView, token: CancellationToken | None = None) -> float:
    """Maximum linear luminance over all pixels (0.0 for an empty image).

    Raises:
        HeadroomCalculationFailed: peak is NaN or infinite
    """
    started = time.perf_counter()
    luma = view.luminance
    if luma.size == 0:
        logger.warning("Peak scan on empty image; using 0.0")
        return 0.0
    peak = float(luma.max())
    checkpoint(token)
    if not math.isfinite(peak):
        raise HeadroomCalculationFailed(f"Non-finite peak luminance: {peak}")
    peak = max(peak, 0.0)
    logger.info(
        "Peak scan: %dx%d, peak %.4f (%.3fs)",
        view.width,
        view.height,
        peak,
        time.perf_counter() - started,
    )
    return peak


def peak_max_headroom(peak: float, ratio: float) -> float:
    """max(1, 1 + peak - peak**ratio)."""
    if not math.isfinite(peak):
        raise HeadroomCalculationFailed(f"Non-finite peak luminance: {peak}")
    peak = max(peak, 0.0)
    return max(1.0, 1.0 + peak - math.pow(peak, ratio))


def direct_headroom(method: Direct, measured_peak: float) -> ResolvedHeadroom:
    """Resolve Direct defaults and clamp both values to [0.1, max(1, 2 * peak)]."""
    measured = max(measured_peak, 0.0) if math.isfinite(measured_peak) else 1.0
    upper = max(1.0, 2.0 * measured)

    def clamp(value: float) -> float:
        if not math.isfinite(value):
            return upper if value > 0 else DIRECT_MIN_HEADROOM
        return min(max(value, DIRECT_MIN_HEADROOM), upper)

    source = method.source_headroom if method.source_headroom is not None else max(1.0, measured)
    target = method.target_headroom if method.target_headroom is not None else 1.0
    return ResolvedHeadroom(source=clamp(source), target=clamp(target))


def estimate_headroom(
    view: LinearView,
    method: HeadroomMethod,
    table: PercentileTable | None = None,
    *,
    peak: float | None = None,
    percentile_bins: int = 2048,
    reference_white_nits: float = 203.0,
    token: CancellationToken | None = None,
) -> float:
    """Source headroom for *method*.

    *peak* and *table* let callers pass cached scans; missing ones are
    computed here.
    """
    return resolve_headroom(
        view,
        method,
        table,
        peak=peak,
        percentile_bins=percentile_bins,
        reference_white_nits=reference_white_nits,
        token=token,
    ).source


def resolve_headroom(
    view: LinearView,
    method: HeadroomMethod,
    table: PercentileTable | None = None,
    *,
    peak: float | None = None,
    percentile_bins: int = 2048,
    reference_white_nits: float = 203.0,
    token: CancellationToken | None = None,
) -> ResolvedHeadroom:
    """Resolve *method* to the (source, target) pair for the tone curve."""
    match method:
        case PeakMax(ratio=ratio):
            measured = peak if peak is not None else measure_peak(view, token)
            resolved = ResolvedHeadroom(source=peak_max_headroom(measured, ratio))
        case Percentile(p=p):
            if table is None:
                table = build_percentile_table(
                    view.luminance,
                    peak=peak if peak is not None else measure_peak(view, token),
                    bins=percentile_bins,
                    reference_white_nits=reference_white_nits,
                    token=token,
                )
            resolved = ResolvedHeadroom(source=max(1.0, headroom_from_cdf(table, p)))
        case Direct():
            measured = peak if peak is not None else measure_peak(view, token)
            resolved = direct_headroom(method, measured)
        case _:
            msg = f"Unknown headroom method: {method!r}"
            raise TypeError(msg)

    if not (math.isfinite(resolved.source) and math.isfinite(resolved.target)):
        raise HeadroomCalculationFailed(f"Non-finite headroom: {resolved}")
    logger.debug("%s -> source %.4f, target %.4f", method.fingerprint(), resolved.source, resolved.target)
    return resolved
