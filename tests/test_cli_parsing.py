"""Tests for CLI argument parsing functions."""

import cv2
import pytest

from scanrestore.cli import _parse_param_pairs, _parse_step, build_parser, main


class TestParseParamPairs:
    """Tests for _parse_param_pairs."""

    def test_pairs(self):
        assert _parse_param_pairs(["threshold=140", "method=Sauvola"]) == {
            "threshold": "140",
            "method": "Sauvola",
        }

    def test_strips_whitespace(self):
        assert _parse_param_pairs([" threshold = 140 "]) == {"threshold": "140"}

    def test_value_may_contain_equals(self):
        assert _parse_param_pairs(["a=b=c"]) == {"a": "b=c"}

    def test_none(self):
        assert _parse_param_pairs(None) == {}

    def test_missing_equals_raises(self):
        with pytest.raises(ValueError, match="Invalid parameter"):
            _parse_param_pairs(["threshold"])

    def test_empty_key_raises(self):
        with pytest.raises(ValueError, match="Invalid parameter"):
            _parse_param_pairs(["=3"])


class TestParseStep:
    """Tests for _parse_step."""

    def test_bare_command(self):
        assert _parse_step("Deskew") == ("Deskew", {})

    def test_with_params(self):
        assert _parse_step("Binarize:method=Majority,threshold=140") == (
            "Binarize",
            {"method": "Majority", "threshold": "140"},
        )

    def test_empty_command_raises(self):
        with pytest.raises(ValueError, match="Invalid step"):
            _parse_step(":threshold=1")


class TestBuildParser:
    """Tests for build_parser."""

    def test_single_command(self):
        args = build_parser().parse_args(
            ["binarize", "in.png", "-o", "out.tif", "--param", "threshold=90"]
        )
        assert args.command == "binarize"
        assert args.param == ["threshold=90"]
        assert args.compression == "LZW"

    def test_batch_command(self):
        args = build_parser().parse_args(
            ["batch", "scans", "--step", "Deskew", "--step", "Binarize", "--workers", "2"]
        )
        assert args.step == ["Deskew", "Binarize"]
        assert args.workers == 2
        assert not args.renumber

    def test_bad_compression_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["deskew", "a.png", "-o", "b.tif", "--compression", "zip"])

    def test_output_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["deskew", "a.png"])


class TestMain:
    """End-to-end runs of main()."""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage" in capsys.readouterr().out

    def test_missing_input(self, tmp_path, capsys):
        assert main(["deskew", str(tmp_path / "none.png"), "-o", str(tmp_path / "o.tif")]) == 1
        assert "not found" in capsys.readouterr().err

    def test_binarize_writes_output(self, tmp_path, text_page):
        src = tmp_path / "page.png"
        cv2.imwrite(str(src), text_page)
        out = tmp_path / "out" / "page.tif"
        rc = main(["binarize", str(src), "-o", str(out), "--compression", "CCITT G4"])
        assert rc == 0
        assert out.exists()

    def test_invalid_param_reports_error(self, tmp_path, text_page, capsys):
        src = tmp_path / "page.png"
        cv2.imwrite(str(src), text_page)
        rc = main(["binarize", str(src), "-o", str(tmp_path / "o.tif"), "--param", "threshold"])
        assert rc == 1
        assert "Error:" in capsys.readouterr().err

    def test_lines_fraction_out_of_range(self, tmp_path, text_page, capsys):
        src = tmp_path / "page.png"
        cv2.imwrite(str(src), text_page)
        rc = main(
            ["lines", str(src), "-o", str(tmp_path / "o.tif"), "--param", "minLengthFraction=1.5"]
        )
        assert rc == 1
        assert "minLengthFraction" in capsys.readouterr().err

    def test_enhance_writes_output(self, tmp_path, text_page):
        src = tmp_path / "page.png"
        cv2.imwrite(str(src), text_page)
        out = tmp_path / "enhanced.tif"
        assert main(["enhance", str(src), "-o", str(out)]) == 0
        assert out.exists()

    def test_split_spread(self, tmp_path, spread):
        src = tmp_path / "spread.png"
        cv2.imwrite(str(src), spread)
        assert main(["split", str(src), "-o", str(tmp_path / "pages" / "spread.tif")]) == 0
        assert (tmp_path / "pages" / "spread_1.tif").exists()
        assert (tmp_path / "pages" / "spread_2.tif").exists()

    def test_split_single_page(self, tmp_path, bar_page, capsys):
        src = tmp_path / "page.png"
        cv2.imwrite(str(src), bar_page)
        assert main(["split", str(src), "-o", str(tmp_path / "page.tif")]) == 1
        assert "Not split" in capsys.readouterr().err

    def test_batch(self, tmp_path, text_page):
        cv2.imwrite(str(tmp_path / "a.png"), text_page)
        rc = main(["batch", str(tmp_path), "--step", "Binarize:threshold=128", "--workers", "1"])
        assert rc == 0
        assert (tmp_path / "Processed" / "a.tif").exists()
