"""Tests for headroom estimation."""
import math

import numpy as np
import pytest

from hdr_headroom.errors import HeadroomCalculationFailed
from hdr_headroom.headroom import (
    DIRECT_MIN_HEADROOM,
    Direct,
    ImageSettings,
    PeakMax,
    Percentile,
    direct_headroom,
    estimate_headroom,
    measure_peak,
    peak_max_headroom,
    resolve_headroom,
)
from hdr_headroom.percentile import build_percentile_table
from hdr_headroom.pixels import LinearView


def grey_view(values, shape=None) -> LinearView:
    """View whose luminance equals *values* (grey pixels)."""
    y = np.asarray(values, dtype=np.float32)
    if shape is not None:
        y = y.reshape(shape)
    return LinearView.from_linear(np.repeat(y[:, :, np.newaxis], 3, axis=2))


@pytest.fixture
def quad_view() -> LinearView:
    """2x2 image with luminance 0.5, 1, 2, 4."""
    return grey_view([0.5, 1.0, 2.0, 4.0], shape=(2, 2))


# =============================================================================
# Methods and settings
# =============================================================================

class TestMethods:
    """Tests for method variants and settings."""

    def test_defaults(self):
        settings = ImageSettings()
        assert settings.method == PeakMax(ratio=0.2)
        assert settings.show_clipped_overlay is True
        assert Percentile().p == 0.999

    @pytest.mark.parametrize("ratio", [-0.1, 1.5, math.nan])
    def test_ratio_range(self, ratio):
        with pytest.raises(ValueError, match="ratio"):
            PeakMax(ratio=ratio)

    def test_percentile_range(self):
        with pytest.raises(ValueError, match="p must be"):
            Percentile(p=2.0)

    def test_fingerprints(self):
        assert PeakMax(ratio=0.2).fingerprint() == "m=peakMax;r=0.2"
        assert Percentile(p=0.5).fingerprint() == "m=percentile;p=0.5"
        assert Direct().fingerprint() == "m=direct;sh=-1;th=-1"
        assert Direct(4.0, 1.0).fingerprint() == "m=direct;sh=4.0;th=1.0"

    def test_fingerprint_ignores_overlay_flag(self):
        a = ImageSettings(method=PeakMax(0.3), show_clipped_overlay=True)
        b = ImageSettings(method=PeakMax(0.3), show_clipped_overlay=False)
        assert a.fingerprint() == b.fingerprint()

    def test_reset_direct_defaults(self):
        settings = ImageSettings(method=Percentile(0.9), show_clipped_overlay=False)
        reset = settings.reset_direct_defaults(6.5)
        assert reset.method == Direct(source_headroom=6.5, target_headroom=1.0)
        assert reset.show_clipped_overlay is False
        assert settings.reset_direct_defaults(0.2).method.source_headroom == 1.0


# =============================================================================
# Peak
# =============================================================================

class TestPeak:
    """Tests for peak measurement and PeakMax."""

    def test_measure_peak(self, quad_view):
        assert measure_peak(quad_view) == pytest.approx(4.0)

    def test_empty_image(self):
        assert measure_peak(LinearView.from_linear(np.zeros((0, 0, 3)))) == 0.0

    def test_non_finite_peak(self):
        view = grey_view([1.0, np.inf], shape=(1, 2))
        with pytest.raises(HeadroomCalculationFailed):
            measure_peak(view)

    def test_quad_ratio_zero_keeps_peak(self, quad_view):
        assert estimate_headroom(quad_view, PeakMax(ratio=0.0)) == pytest.approx(4.0)

    def test_quad_ratio_one_is_sdr(self, quad_view):
        assert estimate_headroom(quad_view, PeakMax(ratio=1.0)) == pytest.approx(1.0)

    def test_formula(self):
        assert peak_max_headroom(9.0, 0.5) == pytest.approx(1.0 + 9.0 - 3.0)

    @pytest.mark.parametrize("peak", [1.0, 1.5, 4.0, 16.0, 100.0])
    def test_monotone_in_ratio(self, peak):
        ratios = np.linspace(0.0, 1.0, 21)
        values = [peak_max_headroom(peak, r) for r in ratios]
        assert all(a >= b - 1e-12 for a, b in zip(values, values[1:]))
        assert values[0] == pytest.approx(peak)
        assert values[-1] == pytest.approx(1.0)

    def test_dark_image_floors_at_one(self):
        assert peak_max_headroom(0.3, 0.2) == 1.0

    def test_all_black_resolves_to_one(self):
        view = LinearView.from_linear(np.zeros((4, 4, 3)))
        for method in (PeakMax(0.0), PeakMax(0.5), Percentile(0.5), Percentile(1.0)):
            value = estimate_headroom(view, method)
            assert value == 1.0, method


# =============================================================================
# Percentile
# =============================================================================

class TestPercentileMethod:
    """Tests for the Percentile method."""

    def test_full_percentile_is_peak(self, quad_view):
        assert estimate_headroom(quad_view, Percentile(1.0)) == pytest.approx(4.0)

    def test_never_below_one(self, quad_view):
        assert estimate_headroom(quad_view, Percentile(0.0)) == 1.0

    def test_uses_supplied_table(self, quad_view):
        table = build_percentile_table(np.full(100, 8.0), peak=8.0)
        # The table wins over the view's own content
        assert estimate_headroom(quad_view, Percentile(0.5), table) == pytest.approx(8.0)


# =============================================================================
# Direct
# =============================================================================

class TestDirect:
    """Tests for the Direct method."""

    def test_defaults_from_measured_peak(self, quad_view):
        resolved = resolve_headroom(quad_view, Direct())
        assert resolved.source == pytest.approx(4.0)
        assert resolved.target == 1.0

    def test_explicit_values(self):
        resolved = direct_headroom(Direct(3.0, 1.5), measured_peak=4.0)
        assert (resolved.source, resolved.target) == (3.0, 1.5)

    def test_clamped_to_twice_peak(self):
        resolved = direct_headroom(Direct(100.0, 0.0), measured_peak=4.0)
        assert resolved.source == 8.0
        assert resolved.target == DIRECT_MIN_HEADROOM

    def test_black_image_defaults(self):
        resolved = direct_headroom(Direct(), measured_peak=0.0)
        assert (resolved.source, resolved.target) == (1.0, 1.0)

    def test_non_finite_inputs_are_clamped(self):
        resolved = direct_headroom(Direct(math.inf, -math.inf), measured_peak=2.0)
        assert resolved.source == 4.0
        assert resolved.target == DIRECT_MIN_HEADROOM

    def test_peak_is_not_rescanned(self, quad_view):
        resolved = resolve_headroom(quad_view, PeakMax(0.0), peak=10.0)
        assert resolved.source == pytest.approx(10.0)
