"""Tests for the clipping classifier and overlay."""
import numpy as np
import pytest

import hdr_headroom.clipping as clipping
from hdr_headroom.clipping import (
    ClipCategory,
    ClippingStats,
    category_masks,
    clipping_counts,
    detailed_clipping,
    overlay_and_count,
    render_overlay,
)
from hdr_headroom.errors import ClippingCalculationFailed, ComputationCancelled
from hdr_headroom.scheduler import CancellationToken


@pytest.fixture
def labelled_sdr() -> np.ndarray:
    """One pixel per interesting case, in a 2x5 raster."""
    return np.array(
        [
            [
                [0.5, 0.5, 0.5],  # not clipped
                [1.2, 0.1, 0.1],  # red, luminance below white
                [1.5, 1.5, 0.0],  # red + green, luminance above white
                [0.2, 0.2, 2.0],  # blue, luminance below white
                [2.0, 2.0, 2.0],  # all channels
            ],
            [
                [1.0, 1.0, 1.0],  # exactly white: not clipped
                [0.9, 1.1, 1.1],  # green + blue, luminance above white
                [1.5, 0.9, 1.5],  # red + blue
                [0.0, 1.3, 0.0],  # green, luminance below white
                [1.0 + 1e-7, 0.0, 0.0],  # within epsilon
            ],
        ],
        dtype=np.float32,
    )


class TestCategories:
    """Tests for the category partition."""

    def test_thirteen_categories(self):
        assert len(ClipCategory) == 13
        assert sum(1 for c in ClipCategory if c.is_dim) == 6

    def test_labelled_pixels(self, labelled_sdr):
        stats = detailed_clipping(labelled_sdr)
        counts = stats.category_counts
        assert stats.clipped_count == 7
        assert stats.total_count == 10
        assert counts[ClipCategory.RED_BRIGHT] == 1
        assert counts[ClipCategory.YELLOW_DIM] == 1
        assert counts[ClipCategory.BLUE_BRIGHT] == 1
        assert counts[ClipCategory.ALL_CHANNELS] == 1
        assert counts[ClipCategory.CYAN_DIM] == 1
        assert counts[ClipCategory.GREEN_BRIGHT] == 1
        assert counts[ClipCategory.MAGENTA_BRIGHT] + counts[ClipCategory.MAGENTA_DIM] == 1

    def test_partition_on_random_raster(self, rng):
        sdr = rng.uniform(0.0, 1.6, (64, 64, 3)).astype(np.float32)
        masks = category_masks(sdr)
        stacked = np.stack(list(masks.values()))
        # Mutually exclusive
        assert stacked.sum(axis=0).max() <= 1
        stats = detailed_clipping(sdr)
        assert sum(stats.category_counts.values()) == stats.clipped_count
        assert stats.clipped_count == clipping_counts(sdr).clipped_count

    def test_nothing_clipped(self):
        stats = detailed_clipping(np.full((4, 4, 3), 0.8, dtype=np.float32))
        assert stats.clipped_count == 0
        assert stats.fraction == 0.0
        assert all(v == 0 for v in stats.category_counts.values())

    def test_epsilon_is_configurable(self, labelled_sdr):
        assert clipping_counts(labelled_sdr, epsilon=0.0).clipped_count == 9
        assert clipping_counts(labelled_sdr, epsilon=1.5).clipped_count == 0

    def test_broken_partition_is_an_error(self, labelled_sdr, monkeypatch):
        real_masks = clipping.category_masks

        def without_all_channels(sdr, epsilon):
            masks = dict(real_masks(sdr, epsilon))
            del masks[ClipCategory.ALL_CHANNELS]
            return masks

        monkeypatch.setattr(clipping, "category_masks", without_all_channels)
        with pytest.raises(ClippingCalculationFailed, match="union mask"):
            detailed_clipping(labelled_sdr)


class TestStats:
    """Tests for ClippingStats."""

    def test_fractions(self):
        stats = ClippingStats(
            clipped_count=3,
            total_count=12,
            category_counts={ClipCategory.RED_BRIGHT: 2, ClipCategory.ALL_CHANNELS: 1},
        )
        assert stats.fraction == 0.25
        assert stats.category_fraction(ClipCategory.RED_BRIGHT) == pytest.approx(2 / 12)
        assert stats.category_fraction(ClipCategory.CYAN_DIM) == 0.0
        assert stats.is_detailed

    def test_empty_image(self):
        stats = ClippingStats(clipped_count=0, total_count=0)
        assert stats.fraction == 0.0
        assert not stats.is_detailed


class TestOverlay:
    """Tests for overlay rendering."""

    def test_tints(self, labelled_sdr):
        report = overlay_and_count(labelled_sdr)
        overlay = report.overlay
        np.testing.assert_array_equal(overlay[0, 0], labelled_sdr[0, 0])
        np.testing.assert_array_equal(overlay[0, 1], ClipCategory.RED_BRIGHT.tint)
        np.testing.assert_array_equal(overlay[0, 2], (0.5, 0.5, 0.0))
        np.testing.assert_array_equal(overlay[0, 4], (0.0, 0.0, 0.0))
        assert report.stats.clipped_count == 7

    def test_overlay_does_not_touch_input(self, labelled_sdr):
        before = labelled_sdr.copy()
        render_overlay(labelled_sdr, category_masks(labelled_sdr))
        np.testing.assert_array_equal(labelled_sdr, before)

    def test_overlay_is_read_only(self, labelled_sdr):
        with pytest.raises(ValueError):
            overlay_and_count(labelled_sdr).overlay[0, 0, 0] = 1.0

    def test_cancelled(self, labelled_sdr):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(ComputationCancelled):
            overlay_and_count(labelled_sdr, token=token)
