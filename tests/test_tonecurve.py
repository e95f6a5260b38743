"""Tests for the tone curve boundary."""
import math

import numpy as np
import pytest

from hdr_headroom.errors import ToneMapFailed
from hdr_headroom.headroom import ResolvedHeadroom
from hdr_headroom.pixels import LinearView
from hdr_headroom.tonecurve import ExtendedReinhardCurve, apply_tone_curve


def grey(values) -> np.ndarray:
    y = np.asarray(values, dtype=np.float32).reshape(1, -1)
    return np.repeat(y[:, :, np.newaxis], 3, axis=2)


class TestExtendedReinhard:
    """Tests for the default tone curve."""

    def test_source_maps_to_target(self):
        out = ExtendedReinhardCurve()(grey([0.0, 4.0]), 4.0, 1.0)
        assert out[0, 0, 0] == 0.0
        assert out[0, 1, 0] == pytest.approx(1.0, rel=1e-5)

    def test_range_below_source(self):
        values = np.linspace(0.0, 6.0, 61)
        out = ExtendedReinhardCurve()(grey(values), 6.0, 1.0)
        assert out.max() <= 1.0 + 1e-5
        assert np.all(np.diff(out[0, :, 0]) >= 0)

    def test_identity_without_compression(self):
        rgb = grey([0.5, 2.0])
        np.testing.assert_array_equal(ExtendedReinhardCurve()(rgb, 1.0, 1.0), rgb)

    def test_hue_preserved(self):
        rgb = np.array([[[3.0, 1.5, 0.75]]], dtype=np.float32)
        out = ExtendedReinhardCurve()(rgb, 4.0, 1.0)
        assert out[0, 0, 1] / out[0, 0, 0] == pytest.approx(0.5, rel=1e-5)
        assert out[0, 0, 2] / out[0, 0, 0] == pytest.approx(0.25, rel=1e-5)


class TestApplyToneCurve:
    """Tests for apply_tone_curve validation."""

    @pytest.fixture
    def view(self):
        return LinearView.from_linear(grey([0.5, 1.0, 3.0]))

    @pytest.mark.parametrize(
        "headroom",
        [
            ResolvedHeadroom(source=-1.0),
            ResolvedHeadroom(source=2.0, target=-0.5),
            ResolvedHeadroom(source=math.nan),
            ResolvedHeadroom(source=2.0, target=math.inf),
        ],
    )
    def test_invalid_pair(self, view, headroom):
        with pytest.raises(ToneMapFailed):
            apply_tone_curve(ExtendedReinhardCurve(), view, headroom)

    def test_result_is_read_only(self, view):
        sdr = apply_tone_curve(ExtendedReinhardCurve(), view, ResolvedHeadroom(source=3.0))
        assert sdr.shape == (1, 3, 3)
        with pytest.raises(ValueError):
            sdr[0, 0, 0] = 0.0

    def test_applicator_error_is_wrapped(self, view):
        def broken(rgb, source, target):
            raise ValueError("boom")

        with pytest.raises(ToneMapFailed, match="boom"):
            apply_tone_curve(broken, view, ResolvedHeadroom(source=2.0))

    def test_unexpected_applicator_error_is_wrapped(self, view):
        def crashing(rgb, source, target):
            raise RuntimeError("applicator crashed")

        with pytest.raises(ToneMapFailed, match="applicator crashed") as info:
            apply_tone_curve(crashing, view, ResolvedHeadroom(source=2.0))
        assert isinstance(info.value.__cause__, RuntimeError)

    def test_wrong_shape_rejected(self, view):
        with pytest.raises(ToneMapFailed, match="shape"):
            apply_tone_curve(lambda rgb, s, t: rgb[:, :2], view, ResolvedHeadroom(source=2.0))

    def test_non_finite_output_rejected(self, view):
        with pytest.raises(ToneMapFailed, match="non-finite"):
            apply_tone_curve(
                lambda rgb, s, t: np.full_like(rgb, np.nan), view, ResolvedHeadroom(source=2.0)
            )
