"""Tests for the PQ/sRGB transfer functions."""
import numpy as np
import pytest

from hdr_headroom.transfer import (
    decode_pq_codes,
    luminance,
    pq_decode,
    pq_encode,
    pq_lut,
    srgb_decode,
    srgb_encode,
)


class TestPQ:
    """Tests for the ST 2084 curve."""

    def test_endpoints(self):
        assert pq_decode(0.0) == pytest.approx(0.0, abs=1e-12)
        assert pq_decode(1.0) == pytest.approx(1.0, rel=1e-5)

    def test_reference_white_code(self):
        """203 nits sits at PQ code ~0.58."""
        code = float(pq_encode(203.0 / 10000.0))
        assert code == pytest.approx(0.5807, abs=1e-3)

    def test_decode_inverts_encode(self):
        linear = np.array([0.0, 1e-4, 0.0203, 0.1, 0.5, 1.0])
        np.testing.assert_allclose(pq_decode(pq_encode(linear)), linear, rtol=1e-4, atol=1e-7)

    def test_out_of_domain_inputs_are_clamped(self):
        assert pq_decode(-0.5) == pq_decode(0.0)
        assert pq_decode(3.0) == pq_decode(1.0)
        assert pq_encode(2.0) == pq_encode(1.0)

    def test_lut_monotonic_over_all_codes(self):
        lut = pq_lut()
        assert lut.shape == (65536,)
        assert np.all(np.diff(lut) >= 0)

    def test_lut_is_read_only(self):
        with pytest.raises(ValueError):
            pq_lut()[0] = 1.0

    def test_decode_codes_matches_curve(self):
        codes = np.array([[0, 1000, 32768, 65535]], dtype=np.uint16)
        np.testing.assert_allclose(
            decode_pq_codes(codes), pq_decode(codes / 65535.0), rtol=1e-6, atol=1e-9
        )


class TestSRGB:
    """Tests for the sRGB pair used on the SDR axis."""

    def test_linear_segment(self):
        assert srgb_encode(0.002) == pytest.approx(0.002 * 12.92, rel=1e-6)
        assert srgb_decode(0.04) == pytest.approx(0.04 / 12.92, rel=1e-6)

    def test_round_trip(self):
        x = np.linspace(0.0, 1.0, 101)
        np.testing.assert_allclose(srgb_decode(srgb_encode(x)), x, atol=1e-6)

    def test_clamps_to_unit_interval(self):
        assert srgb_encode(4.0) == pytest.approx(1.0)
        assert srgb_encode(-1.0) == 0.0


class TestLuminance:
    """Tests for Rec.709 luminance."""

    def test_weights(self):
        rgb = np.eye(3, dtype=np.float32)
        np.testing.assert_allclose(luminance(rgb), [0.2126, 0.7152, 0.0722], rtol=1e-6)

    def test_grey_is_identity(self):
        assert luminance(np.array([2.5, 2.5, 2.5])) == pytest.approx(2.5, rel=1e-6)

    def test_extra_channels_ignored(self):
        rgba = np.array([[1.0, 1.0, 1.0, 0.0]], dtype=np.float32)
        assert luminance(rgba)[0] == pytest.approx(1.0, rel=1e-6)
