# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Engine configuration.

Fixed display constants (reference white, displayable headroom), histogram
layout, scheduling and cache limits. Every value can be overridden from the
environment through EngineConfig.from_env():

  HDR_HEADROOM_REFERENCE_WHITE   Reference white in nits (default: 203)
  HDR_HEADROOM_HEADROOM_STOPS    Displayed headroom in stops (default: 4)
  HDR_HEADROOM_MAX_WORKERS       Worker pool size (default: CPU count)
  HDR_HEADROOM_DEBOUNCE_MS       Debounce interval (default: 300)
  HDR_HEADROOM_PERCENTILE_BINS   Percentile table resolution (default: 2048)
  HDR_HEADROOM_SMOOTH_WINDOW     Histogram smoothing window (default: 11)
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, replace
from typing import Final, Self

__all__: Final[list[str]] = [
    "DISPLAY_P3_PQ",
    "BT2100_PQ",
    "EngineConfig",
]

# Profile identifiers as reported by the platform color management layer
DISPLAY_P3_PQ: Final[str] = "kCGColorSpaceDisplayP3_PQ"
BT2100_PQ: Final[str] = "kCGColorSpaceITUR_2100_PQ"


def _get_cpu_count() -> int:
    """Get CPU count for worker pool sizing."""
    return os.cpu_count() or 1


def _get_env_int(var_name: str, /) -> int | None:
    """Get a positive int from environment variable, or None if invalid."""
    value = os.environ.get(var_name, "").strip()
    if not value:
        return None
    try:
        result = int(value)
        return result if result > 0 else None
    except ValueError:
        return None


def _get_env_float(var_name: str, /) -> float | None:
    """Get a positive finite float from environment variable, or None if invalid."""
    value = os.environ.get(var_name, "").strip()
    if not value:
        return None
    try:
        result = float(value)
    except ValueError:
        return None
    return result if math.isfinite(result) and result > 0 else None


@dataclass(frozen=True, slots=True, kw_only=True)
class EngineConfig:
    """Constants and limits shared by every engine component."""

    # Display model
    reference_white_nits: float = 203.0
    displayed_headroom_stops: float = 4.0
    required_profile: str = DISPLAY_P3_PQ

    # Histogram layout
    sdr_bins: int = 256
    hdr_bins_min: int = 64
    hdr_bins_max: int = 4096
    smooth_window: int = 11
    x_at_reference_white: float = 0.5

    # Percentile table
    percentile_bins: int = 2048

    # Clipping threshold is 1.0 + clip_epsilon
    clip_epsilon: float = 1e-6

    # Scheduling
    debounce_seconds: float = 0.3
    max_workers: int = 0  # 0 = CPU count

    # Cache limits
    preview_cache_count: int = 32
    overlay_cache_count: int = 32
    clipping_cache_count: int = 64
    histogram_cache_count: int = 64
    percentile_cache_count: int = 32
    source_cache_megapixels: int = 800

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not (math.isfinite(self.reference_white_nits) and self.reference_white_nits > 0):
            msg = f"reference_white_nits must be > 0, got {self.reference_white_nits}"
            raise ValueError(msg)
        if not (math.isfinite(self.displayed_headroom_stops) and self.displayed_headroom_stops > 0):
            msg = f"displayed_headroom_stops must be > 0, got {self.displayed_headroom_stops}"
            raise ValueError(msg)
        if self.sdr_bins < 2:
            msg = f"sdr_bins must be >= 2, got {self.sdr_bins}"
            raise ValueError(msg)
        if not 1 <= self.hdr_bins_min <= self.hdr_bins_max:
            msg = f"invalid HDR bin range [{self.hdr_bins_min}, {self.hdr_bins_max}]"
            raise ValueError(msg)
        if self.smooth_window < 1:
            msg = f"smooth_window must be >= 1, got {self.smooth_window}"
            raise ValueError(msg)
        if not 0.0 < self.x_at_reference_white < 1.0:
            msg = f"x_at_reference_white must be in (0, 1), got {self.x_at_reference_white}"
            raise ValueError(msg)
        if self.percentile_bins < 1:
            msg = f"percentile_bins must be >= 1, got {self.percentile_bins}"
            raise ValueError(msg)
        if self.clip_epsilon < 0:
            msg = f"clip_epsilon must be >= 0, got {self.clip_epsilon}"
            raise ValueError(msg)
        if self.debounce_seconds < 0:
            msg = f"debounce_seconds must be >= 0, got {self.debounce_seconds}"
            raise ValueError(msg)
        if self.max_workers < 0:
            msg = f"max_workers must be >= 0, got {self.max_workers}"
            raise ValueError(msg)
        if self.max_workers == 0:
            object.__setattr__(self, "max_workers", _get_cpu_count())

    @property
    def max_histogram_nits(self) -> float:
        """Upper end of the histogram axis in nits."""
        return self.reference_white_nits * 2.0**self.displayed_headroom_stops

    @property
    def histogram_u_max(self) -> float:
        """Upper end of the histogram axis relative to reference white."""
        return self.max_histogram_nits / self.reference_white_nits

    @property
    def pq_scale(self) -> float:
        """Factor from linear PQ (1.0 = 10,000 nits) to reference-white units."""
        return 10000.0 / self.reference_white_nits

    @property
    def clip_threshold(self) -> float:
        """Value a channel must exceed to count as clipped."""
        return 1.0 + self.clip_epsilon

    def headroom_to_nits(self, headroom: float) -> float:
        """Absolute luminance of a headroom ratio."""
        return headroom * self.reference_white_nits

    def nits_to_headroom(self, nits: float) -> float:
        """Headroom ratio of an absolute luminance."""
        return nits / self.reference_white_nits

    @classmethod
    def from_env(cls, **overrides: object) -> Self:
        """Create config from environment variables, with explicit overrides on top."""
        base = cls()
        env: dict[str, object] = {}

        if (white := _get_env_float("HDR_HEADROOM_REFERENCE_WHITE")) is not None:
            env["reference_white_nits"] = white
        if (stops := _get_env_float("HDR_HEADROOM_HEADROOM_STOPS")) is not None:
            env["displayed_headroom_stops"] = stops
        if (workers := _get_env_int("HDR_HEADROOM_MAX_WORKERS")) is not None:
            env["max_workers"] = workers
        if (debounce_ms := _get_env_int("HDR_HEADROOM_DEBOUNCE_MS")) is not None:
            env["debounce_seconds"] = debounce_ms / 1000.0
        if (bins := _get_env_int("HDR_HEADROOM_PERCENTILE_BINS")) is not None:
            env["percentile_bins"] = bins
        if (window := _get_env_int("HDR_HEADROOM_SMOOTH_WINDOW")) is not None:
            env["smooth_window"] = window

        env.update(overrides)
        return replace(base, **env)  # type: ignore[arg-type]
