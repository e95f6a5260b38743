# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Percentile lookup table over linear luminance.

Built once per source image with a single full scan: luminance is
normalized to the measured peak, counted into a fixed number of bins and
accumulated into a CDF. Percentile queries are then a binary search over
the CDF, cheap enough to run synchronously on every slider tick.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Final

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .errors import HeadroomCalculationFailed
from .scheduler import CancellationToken, checkpoint

__all__: Final[list[str]] = [
    "MAX_PERCENTILE_BINS",
    "PercentileTable",
    "build_percentile_table",
    "headroom_from_cdf",
]

logger = logging.getLogger(__name__)

MAX_PERCENTILE_BINS: Final[int] = 4096


@dataclass(frozen=True, slots=True, kw_only=True)
class PercentileTable:
    """Cumulative luminance histogram normalized to the image peak.

    cumulative_counts[i] is the number of samples in bins 0..i; the last
    entry equals the total sample count.
    """

    peak_nits: float
    reference_white_nits: float
    cumulative_counts: NDArray[np.int64]

    @property
    def bin_count(self) -> int:
        return int(self.cumulative_counts.shape[0])

    @property
    def total(self) -> int:
        return int(self.cumulative_counts[-1]) if self.bin_count else 0

    @property
    def peak_headroom(self) -> float:
        return self.peak_nits / self.reference_white_nits


def build_percentile_table(
    samples: ArrayLike,
    *,
    peak: float | None = None,
    bins: int = 2048,
    reference_white_nits: float = 203.0,
    token: CancellationToken | None = None,
) -> PercentileTable:
    """Build a PercentileTable from linear luminance samples.

    Args:
        samples: Linear luminance, 1.0 = reference white (any shape)
        peak: Measured peak of *samples*; scanned when omitted
        bins: Table resolution, clamped to [1, 4096]
        reference_white_nits: Nits corresponding to 1.0
        token: Checked after the scan, before the table is returned

    Raises:
        HeadroomCalculationFailed: peak is not finite
    """
    started = time.perf_counter()
    values = np.asarray(samples, dtype=np.float32).ravel()
    count = max(1, min(int(bins), MAX_PERCENTILE_BINS))

    if peak is None:
        peak = float(values.max()) if values.size else 0.0
    if not math.isfinite(peak):
        raise HeadroomCalculationFailed(f"Non-finite peak luminance: {peak}")

    if peak > 0 and values.size:
        # bin = floor(Y / peak * count); Y == peak lands in the last bin
        scaled = np.clip(values / np.float32(peak), 0.0, 1.0) * count
        indices = np.minimum(scaled.astype(np.int64), count - 1)
        counts = np.bincount(indices, minlength=count)
    else:
        counts = np.zeros(count, dtype=np.int64)
        counts[0] = values.size

    checkpoint(token)

    cumulative = np.cumsum(counts, dtype=np.int64)
    cumulative.setflags(write=False)
    table = PercentileTable(
        peak_nits=float(max(peak, 0.0)) * reference_white_nits,
        reference_white_nits=reference_white_nits,
        cumulative_counts=cumulative,
    )
    logger.info(
        "Percentile table: %d samples, %d bins, peak %.1f nits (%.3fs)",
        values.size,
        count,
        table.peak_nits,
        time.perf_counter() - started,
    )
    return table


def headroom_from_cdf(table: PercentileTable, percentile: float) -> float:
    """Headroom (nits / reference white) at which *percentile* of samples lie at or below.

    The result is the upper edge of the first bin whose cumulative count
    reaches percentile * total. Tables with no samples or zero peak
    resolve to 1.0.
    """
    total = table.total
    if total <= 0 or table.peak_nits <= 0:
        return 1.0

    p = min(max(float(percentile), 0.0), 1.0) if math.isfinite(percentile) else 1.0
    target = p * total
    idx = int(np.searchsorted(table.cumulative_counts, target, side="left"))
    idx = min(idx, table.bin_count - 1)

    threshold = (idx + 1) / table.bin_count
    headroom = threshold * table.peak_headroom
    if not math.isfinite(headroom):
        raise HeadroomCalculationFailed(f"Non-finite percentile headroom for p={p}")
    return headroom
