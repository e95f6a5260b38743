"""Smoke tests for the hdr-headroom command line."""
import numpy as np
import pytest
from rich.console import Console

from conftest import encode_pq_codes
from hdr_headroom import __version__, cli
from hdr_headroom.cli import main, method_from_args, parse_arguments
from hdr_headroom.config import BT2100_PQ
from hdr_headroom.headroom import Direct, PeakMax, Percentile
from hdr_headroom.source import write_pq_png


@pytest.fixture
def hdr_png(tmp_path, gradient_rgb):
    path = tmp_path / "gradient.png"
    write_pq_png(path, encode_pq_codes(gradient_rgb))
    return path


@pytest.fixture(autouse=True)
def cli_environment(monkeypatch):
    """Small worker pool and a wide console so table cells do not wrap."""
    monkeypatch.setenv("HDR_HEADROOM_MAX_WORKERS", "2")
    monkeypatch.setattr(cli, "console", Console(width=200))


class TestArguments:
    """Tests for argument parsing."""

    def test_default_method(self):
        args = parse_arguments(["a.png"])
        assert method_from_args(args) == PeakMax(ratio=0.2)

    def test_percentile(self):
        args = parse_arguments(["-m", "percentile", "-p", "0.95", "a.png"])
        assert method_from_args(args) == Percentile(p=0.95)

    def test_direct(self):
        args = parse_arguments(["--method", "direct", "--source-headroom", "3", "a.png"])
        assert method_from_args(args) == Direct(source_headroom=3.0)

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            parse_arguments(["--version"])
        assert excinfo.value.code == 0
        assert __version__ in capsys.readouterr().out


class TestMain:
    """Tests for main()."""

    def test_analyzes_file(self, hdr_png, capsys):
        assert main([str(hdr_png)]) == 0
        out = capsys.readouterr().out
        assert "gradient.png" in out
        assert "Done!" in out

    def test_detail_and_overlay(self, hdr_png, tmp_path, capsys):
        out_dir = tmp_path / "overlays"
        code = main(["--ratio", "1", "--detail", "--save-overlay", str(out_dir), str(hdr_png)])
        assert code == 0
        assert (out_dir / "gradient_overlay.png").exists()
        out = capsys.readouterr().out
        assert "all channels" in out

    def test_wrong_profile_fails_only_that_file(self, hdr_png, tmp_path, capsys):
        other = tmp_path / "bt2100.png"
        write_pq_png(other, np.zeros((2, 2, 3), dtype=np.uint16), profile=BT2100_PQ)
        assert main([str(hdr_png), str(other)]) == 1
        out = capsys.readouterr().out
        assert "Invalid colorspace" in out
        assert "1 image(s) failed" in out

    def test_bad_ratio(self, hdr_png, capsys):
        assert main(["--ratio", "3", str(hdr_png)]) == 2
        assert "Configuration error" in capsys.readouterr().out
