# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Clipping classification for tone-mapped rasters.

Each channel is thresholded at 1.0 + epsilon. The three channel masks
combine into seven exclusive categories (three single, three double, one
triple). The six non-triple categories are split by a luminance mask at the
same threshold:

- bright: color clips but luminance is still below SDR white
- dim:    luminance is clipped as well

Category counts partition the union of the channel masks exactly.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Final

import numpy as np
from numpy.typing import NDArray

from .errors import ClippingCalculationFailed
from .scheduler import CancellationToken, checkpoint
from .transfer import luminance

__all__: Final[list[str]] = [
    "ClipCategory",
    "ClippingStats",
    "ClippingReport",
    "channel_masks",
    "category_masks",
    "clipping_counts",
    "detailed_clipping",
    "render_overlay",
    "overlay_and_count",
]

logger = logging.getLogger(__name__)

DEFAULT_EPSILON: Final[float] = 1e-6


class ClipCategory(Enum):
    """Exclusive clipping categories; value is the overlay tint (linear RGB)."""

    RED_BRIGHT = (1.0, 0.0, 0.0)
    GREEN_BRIGHT = (0.0, 1.0, 0.0)
    BLUE_BRIGHT = (0.0, 0.0, 1.0)
    YELLOW_BRIGHT = (1.0, 1.0, 0.0)
    MAGENTA_BRIGHT = (1.0, 0.0, 1.0)
    CYAN_BRIGHT = (0.0, 1.0, 1.0)
    RED_DIM = (0.5, 0.0, 0.0)
    GREEN_DIM = (0.0, 0.5, 0.0)
    BLUE_DIM = (0.0, 0.0, 0.5)
    YELLOW_DIM = (0.5, 0.5, 0.0)
    MAGENTA_DIM = (0.5, 0.0, 0.5)
    CYAN_DIM = (0.0, 0.5, 0.5)
    ALL_CHANNELS = (0.0, 0.0, 0.0)

    @property
    def tint(self) -> tuple[float, float, float]:
        return self.value

    @property
    def is_dim(self) -> bool:
        return self.name.endswith("_DIM")


@dataclass(frozen=True, slots=True, kw_only=True)
class ClippingStats:
    """Clipped/total pixel counts, optionally broken down by category."""

    clipped_count: int
    total_count: int
    category_counts: Mapping[ClipCategory, int] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @property
    def fraction(self) -> float:
        return self.clipped_count / self.total_count if self.total_count else 0.0

    @property
    def is_detailed(self) -> bool:
        return bool(self.category_counts)

    def category_fraction(self, category: ClipCategory) -> float:
        """Share of all pixels in *category*."""
        if not self.total_count:
            return 0.0
        return self.category_counts.get(category, 0) / self.total_count


@dataclass(frozen=True, slots=True)
class ClippingReport:
    """Overlay raster plus the detailed statistics it was built from."""

    overlay: NDArray[np.float32]
    stats: ClippingStats


# =============================================================================
# Masks
# =============================================================================


def channel_masks(
    sdr: NDArray[np.float32], epsilon: float = DEFAULT_EPSILON
) -> tuple[NDArray[np.bool_], NDArray[np.bool_], NDArray[np.bool_]]:
    """Per-channel clip masks (value >= 1 + epsilon)."""
    threshold = np.float32(1.0 + epsilon)
    return (
        sdr[:, :, 0] >= threshold,
        sdr[:, :, 1] >= threshold,
        sdr[:, :, 2] >= threshold,
    )


def category_masks(
    sdr: NDArray[np.float32], epsilon: float = DEFAULT_EPSILON
) -> dict[ClipCategory, NDArray[np.bool_]]:
    """Exclusive per-category masks for a linear SDR raster."""
    r, g, b = channel_masks(sdr, epsilon)
    y = luminance(sdr) >= np.float32(1.0 + epsilon)
    not_r, not_g, not_b, not_y = ~r, ~g, ~b, ~y

    only_r = r & not_g & not_b
    only_g = g & not_r & not_b
    only_b = b & not_r & not_g
    rg = r & g & not_b
    rb = r & b & not_g
    gb = g & b & not_r

    return {
        ClipCategory.RED_BRIGHT: only_r & not_y,
        ClipCategory.GREEN_BRIGHT: only_g & not_y,
        ClipCategory.BLUE_BRIGHT: only_b & not_y,
        ClipCategory.YELLOW_BRIGHT: rg & not_y,
        ClipCategory.MAGENTA_BRIGHT: rb & not_y,
        ClipCategory.CYAN_BRIGHT: gb & not_y,
        ClipCategory.RED_DIM: only_r & y,
        ClipCategory.GREEN_DIM: only_g & y,
        ClipCategory.BLUE_DIM: only_b & y,
        ClipCategory.YELLOW_DIM: rg & y,
        ClipCategory.MAGENTA_DIM: rb & y,
        ClipCategory.CYAN_DIM: gb & y,
        ClipCategory.ALL_CHANNELS: r & g & b,
    }


# =============================================================================
# Counting
# =============================================================================


def clipping_counts(sdr: NDArray[np.float32], epsilon: float = DEFAULT_EPSILON) -> ClippingStats:
    """Pixels with at least one clipped channel, over all pixels."""
    r, g, b = channel_masks(sdr, epsilon)
    total = int(sdr.shape[0] * sdr.shape[1])
    return ClippingStats(clipped_count=int(np.count_nonzero(r | g | b)), total_count=total)


def _detailed(
    masks: Mapping[ClipCategory, NDArray[np.bool_]], aggregate: ClippingStats
) -> ClippingStats:
    counts = {category: int(np.count_nonzero(mask)) for category, mask in masks.items()}
    partitioned = sum(counts.values())
    if partitioned != aggregate.clipped_count:
        msg = f"Clip categories cover {partitioned} pixels, union mask has {aggregate.clipped_count}"
        raise ClippingCalculationFailed(msg)
    return ClippingStats(
        clipped_count=aggregate.clipped_count,
        total_count=aggregate.total_count,
        category_counts=MappingProxyType(counts),
    )


def detailed_clipping(sdr: NDArray[np.float32], epsilon: float = DEFAULT_EPSILON) -> ClippingStats:
    """Aggregate counts plus the per-category breakdown."""
    return _detailed(category_masks(sdr, epsilon), clipping_counts(sdr, epsilon))


# =============================================================================
# Overlay
# =============================================================================


def render_overlay(
    sdr: NDArray[np.float32], masks: Mapping[ClipCategory, NDArray[np.bool_]]
) -> NDArray[np.float32]:
    """Tint clipped pixels by category: bright, then dim, then all-channel in black."""
    overlay = np.array(sdr[:, :, :3], dtype=np.float32, copy=True)
    layers = sorted(masks.items(), key=lambda item: (item[0] is ClipCategory.ALL_CHANNELS, item[0].is_dim))
    for category, mask in layers:
        overlay[mask] = category.tint
    return overlay


def overlay_and_count(
    sdr: NDArray[np.float32],
    epsilon: float = DEFAULT_EPSILON,
    token: CancellationToken | None = None,
) -> ClippingReport:
    """Build the overlay raster and detailed counts in one pass over the masks."""
    masks = category_masks(sdr, epsilon)
    checkpoint(token)
    stats = _detailed(masks, clipping_counts(sdr, epsilon))
    overlay = render_overlay(sdr, masks)
    overlay.setflags(write=False)
    logger.debug(
        "Clipping: %d / %d pixels (%.3f%%)",
        stats.clipped_count,
        stats.total_count,
        stats.fraction * 100.0,
    )
    return ClippingReport(overlay=overlay, stats=stats)
