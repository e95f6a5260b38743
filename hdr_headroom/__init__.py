# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""HDR headroom estimation, tone mapping previews and luminance histograms."""

from __future__ import annotations

from typing import Final

from .clipping import ClipCategory, ClippingReport, ClippingStats
from .config import BT2100_PQ, DISPLAY_P3_PQ, EngineConfig
from .engine import HeadroomEngine, ImageResult, PreviewResult
from .errors import (
    CannotDecodeSource,
    ComputationCancelled,
    ClippingCalculationFailed,
    HeadroomCalculationFailed,
    HeadroomEngineError,
    HistogramCalculationFailed,
    InvalidColorSpace,
    ToneMapFailed,
    UnknownImage,
)
from .headroom import (
    Direct,
    HeadroomMethod,
    ImageSettings,
    PeakMax,
    Percentile,
    ResolvedHeadroom,
    estimate_headroom,
)
from .histogram import HistogramResult, ScalarBinner, VectorizedBinner
from .percentile import PercentileTable, build_percentile_table, headroom_from_cdf
from .pixels import LinearView, PixelBuffer, validate
from .scheduler import CancellationToken, Debouncer
from .tonecurve import ExtendedReinhardCurve, ToneCurveApplicator

__version__: Final[str] = "0.1.0"

__all__: Final[list[str]] = [
    "__version__",
    "BT2100_PQ",
    "DISPLAY_P3_PQ",
    "CancellationToken",
    "CannotDecodeSource",
    "ClipCategory",
    "ClippingCalculationFailed",
    "ClippingReport",
    "ClippingStats",
    "ComputationCancelled",
    "Debouncer",
    "Direct",
    "EngineConfig",
    "ExtendedReinhardCurve",
    "HeadroomCalculationFailed",
    "HeadroomEngine",
    "HeadroomEngineError",
    "HeadroomMethod",
    "HistogramCalculationFailed",
    "HistogramResult",
    "ImageResult",
    "ImageSettings",
    "InvalidColorSpace",
    "LinearView",
    "PeakMax",
    "Percentile",
    "PercentileTable",
    "PixelBuffer",
    "PreviewResult",
    "ResolvedHeadroom",
    "ScalarBinner",
    "ToneCurveApplicator",
    "ToneMapFailed",
    "UnknownImage",
    "VectorizedBinner",
    "build_percentile_table",
    "estimate_headroom",
    "headroom_from_cdf",
    "validate",
]
