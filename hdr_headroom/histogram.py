# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
R/G/B/luma histograms on a split axis.

The axis has two segments in u = Y / reference white:
- [0, 1]:     sRGB-shaped (edges are sRGB-decoded uniform codes)
- (1, u_max]: logarithmic in stops up to the displayed headroom

The HDR bin count is chosen so that the first HDR bin is as wide as the last
SDR bin (matched hinge), so density does not jump at reference white. On
the plotting axis reference white sits at x = 0.5.

Two binners produce identical counts from the same edges:
VectorizedBinner (numpy, default) and ScalarBinner (per-sample binary
search, the reference path used to verify the vectorized one).
"""

from __future__ import annotations

import bisect
import logging
import math
import time
from dataclasses import dataclass
from typing import Final, Protocol

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy import ndimage

from .config import EngineConfig
from .errors import HistogramCalculationFailed
from .pixels import LinearView
from .scheduler import CancellationToken, checkpoint
from .transfer import luminance, srgb_decode, srgb_encode

__all__: Final[list[str]] = [
    "HistogramResult",
    "HistogramBinner",
    "VectorizedBinner",
    "ScalarBinner",
    "calculate_bin_edges",
    "nits_to_x",
    "moving_average",
    "compute_histogram",
    "hdr_histogram",
    "sdr_histogram",
]

logger = logging.getLogger(__name__)

CHANNELS: Final[tuple[str, ...]] = ("red", "green", "blue", "luma")


# =============================================================================
# Axis
# =============================================================================


def calculate_bin_edges(
    sdr_bins: int = 256,
    u_max: float = 16.0,
    n_min: int = 64,
    n_max: int = 4096,
) -> NDArray[np.float64]:
    """Bin edges in u-space with a matched hinge at u = 1.

    Returns a strictly increasing array starting at 0.0, containing 1.0
    exactly once and ending at u_max.
    """
    # SDR edges: uniform in sRGB code, decoded to linear
    codes = np.linspace(0.0, 1.0, sdr_bins + 1)
    u_sdr = srgb_decode(codes).astype(np.float64)
    u_sdr[0] = 0.0
    u_sdr[-1] = 1.0

    last_sdr_width = u_sdr[-1] - u_sdr[-2]
    stops = math.log2(u_max)
    denom = math.log2(1.0 + last_sdr_width)
    n_star = int(round(stops / denom)) if denom > 0 else n_min
    n_hdr = max(n_min, min(n_max, n_star))

    u_hdr = np.power(2.0, np.linspace(0.0, stops, n_hdr + 1))
    # u_hdr[0] == 1.0 duplicates the last SDR edge
    return np.concatenate([u_sdr, u_hdr[1:]])


def nits_to_x(
    nits: ArrayLike,
    white: float = 203.0,
    headroom_stops: float = 4.0,
    x_at_white: float = 0.5,
) -> NDArray[np.float32]:
    """Map absolute luminance to plot position in [0, 1].

    Below white: x_at_white * sRGB(nits / white).
    Above white: linear in stops from x_at_white to 1 at the displayed headroom.
    """
    n = np.asarray(nits, dtype=np.float64)
    sdr = x_at_white * srgb_encode(n / white).astype(np.float64)
    with np.errstate(divide="ignore", invalid="ignore"):
        t = np.clip(np.log2(np.maximum(n, white) / white) / headroom_stops, 0.0, 1.0)
    hdr = x_at_white + (1.0 - x_at_white) * t
    return np.where(n <= white, sdr, hdr).astype(np.float32)


def moving_average(values: ArrayLike, window: int = 11) -> NDArray[np.float32]:
    """Symmetric moving average; windows shrink at the array boundaries.

    Even windows are widened by one.
    """
    y = np.asarray(values, dtype=np.float64)
    win = max(1, int(window))
    if win % 2 == 0:
        win += 1
    if win == 1 or y.size == 0:
        return y.astype(np.float32)

    kernel = np.ones(win, dtype=np.float64)
    sums = ndimage.convolve1d(y, kernel, mode="constant", cval=0.0)
    # Number of in-range samples under each window
    support = ndimage.convolve1d(np.ones_like(y), kernel, mode="constant", cval=0.0)
    return (sums / support).astype(np.float32)


# =============================================================================
# Binners
# =============================================================================


class HistogramBinner(Protocol):
    """Counts samples into bins delimited by *edges*.

    A sample v belongs to bin i when edges[i] <= v < edges[i + 1]; v equal to
    the last edge belongs to the last bin; samples outside [edges[0],
    edges[-1]] are dropped.
    """

    name: str

    def count(
        self, samples: NDArray[np.float32], edges: NDArray[np.float64]
    ) -> NDArray[np.int64]:
        """Count each column of an (N, K) sample array; returns (K, bins)."""
        ...


class VectorizedBinner:
    """numpy searchsorted + bincount."""

    name = "vectorized"

    def count(
        self, samples: NDArray[np.float32], edges: NDArray[np.float64]
    ) -> NDArray[np.int64]:
        bins = edges.shape[0] - 1
        out = np.zeros((samples.shape[1], bins), dtype=np.int64)
        for k in range(samples.shape[1]):
            v = samples[:, k].astype(np.float64)
            valid = (v >= edges[0]) & (v <= edges[-1])
            idx = np.searchsorted(edges, v[valid], side="right") - 1
            idx = np.minimum(idx, bins - 1)
            out[k] = np.bincount(idx, minlength=bins)
        return out


class ScalarBinner:
    """Per-sample binary search; slow, used as the reference path."""

    name = "scalar"

    def count(
        self, samples: NDArray[np.float32], edges: NDArray[np.float64]
    ) -> NDArray[np.int64]:
        bins = edges.shape[0] - 1
        edge_list = edges.tolist()
        lo, hi = edge_list[0], edge_list[-1]
        out = np.zeros((samples.shape[1], bins), dtype=np.int64)
        for row in samples.tolist():
            for k, v in enumerate(row):
                if not lo <= v <= hi:
                    continue
                idx = min(bisect.bisect_right(edge_list, v) - 1, bins - 1)
                out[k, idx] += 1
        return out


# =============================================================================
# Histograms
# =============================================================================


@dataclass(frozen=True, slots=True, kw_only=True)
class HistogramResult:
    """Smoothed per-bin counts ready for plotting."""

    x_positions: NDArray[np.float32]
    nits_per_bin: NDArray[np.float32]
    red: NDArray[np.float32]
    green: NDArray[np.float32]
    blue: NDArray[np.float32]
    luma: NDArray[np.float32]
    sdr_boundary_x: float = 0.5

    @property
    def bin_count(self) -> int:
        return int(self.x_positions.shape[0])

    @property
    def per_channel_counts(self) -> tuple[NDArray[np.float32], ...]:
        return (self.red, self.green, self.blue, self.luma)

    def normalized(self) -> tuple[NDArray[np.float32], ...]:
        """Per-channel counts scaled to a peak of 1.0 (zero channels untouched)."""
        out = []
        for counts in self.per_channel_counts:
            peak = float(counts.max()) if counts.size else 0.0
            out.append(counts / peak if peak > 0 else counts)
        return tuple(out)


def compute_histogram(
    rgb_u: NDArray[np.float32],
    config: EngineConfig | None = None,
    *,
    binner: HistogramBinner | None = None,
    token: CancellationToken | None = None,
) -> HistogramResult:
    """Histogram of an (H, W, 3) raster in u-space (1.0 = reference white).

    Raises:
        HistogramCalculationFailed: raster has no pixels
    """
    cfg = config or EngineConfig()
    binner = binner or VectorizedBinner()
    started = time.perf_counter()

    rgb = np.asarray(rgb_u, dtype=np.float32)
    if rgb.ndim != 3 or rgb.shape[2] < 3 or rgb.shape[0] * rgb.shape[1] == 0:
        raise HistogramCalculationFailed(f"Cannot bin raster of shape {rgb.shape}")

    edges = calculate_bin_edges(cfg.sdr_bins, cfg.histogram_u_max, cfg.hdr_bins_min, cfg.hdr_bins_max)
    bins = edges.shape[0] - 1
    if bins < 1:
        raise HistogramCalculationFailed("No histogram bins")

    flat = rgb[:, :, :3].reshape(-1, 3)
    samples = np.column_stack([flat, luminance(flat)]).astype(np.float32)
    counts = binner.count(samples, edges)
    checkpoint(token)

    smoothed = [moving_average(c, cfg.smooth_window) for c in counts]
    centers_u = (edges[:-1] + edges[1:]) / 2.0
    centers_nits = (centers_u * cfg.reference_white_nits).astype(np.float32)
    x = nits_to_x(
        centers_nits,
        cfg.reference_white_nits,
        cfg.displayed_headroom_stops,
        cfg.x_at_reference_white,
    )

    logger.info(
        "Histogram (%s): %d pixels, %d bins (%.3fs)",
        binner.name,
        flat.shape[0],
        bins,
        time.perf_counter() - started,
    )
    return HistogramResult(
        x_positions=x,
        nits_per_bin=centers_nits,
        red=smoothed[0],
        green=smoothed[1],
        blue=smoothed[2],
        luma=smoothed[3],
        sdr_boundary_x=cfg.x_at_reference_white,
    )


def hdr_histogram(
    view: LinearView,
    config: EngineConfig | None = None,
    *,
    binner: HistogramBinner | None = None,
    token: CancellationToken | None = None,
) -> HistogramResult:
    """Histogram of the HDR source (content-only, independent of settings)."""
    return compute_histogram(view.rgb, config, binner=binner, token=token)


def sdr_histogram(
    sdr_rgb: NDArray[np.float32],
    config: EngineConfig | None = None,
    *,
    binner: HistogramBinner | None = None,
    token: CancellationToken | None = None,
) -> HistogramResult:
    """Histogram of a tone-mapped raster, before any clipping overlay.

    SDR output is display-referred, so samples are clamped to [0, 1] first.
    """
    clamped = np.clip(np.asarray(sdr_rgb, dtype=np.float32), 0.0, 1.0)
    return compute_histogram(clamped, config, binner=binner, token=token)
