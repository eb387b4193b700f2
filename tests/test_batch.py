"""Tests for batch folder processing."""

import os

import cv2
import pytest

from scanrestore.services.batch import BatchRunner, list_images, output_path
from scanrestore.services.processor import ImageProcessor
from scanrestore.utils.cancellation import CancellationToken
from scanrestore.utils.exceptions import UnsupportedConfigurationError


@pytest.fixture
def scan_folder(tmp_path, text_page):
    """Folder with two scans and a file that is not an image."""
    cv2.imwrite(str(tmp_path / "b.png"), text_page)
    cv2.imwrite(str(tmp_path / "a.png"), text_page)
    (tmp_path / "notes.txt").write_text("not a scan")
    return tmp_path


class TestHelpers:
    def test_list_images_sorted_and_filtered(self, scan_folder):
        names = [os.path.basename(p) for p in list_images(str(scan_folder))]
        assert names == ["a.png", "b.png"]

    def test_output_path(self):
        assert output_path("/out", "/in/scan.jpg") == os.path.join("/out", "scan.tif")
        assert output_path("/out", "/in/scan.jpg", 2) == os.path.join("/out", "scan_2.tif")


class TestBatchRunner:
    def test_bad_step_fails_early(self):
        with pytest.raises(UnsupportedConfigurationError):
            BatchRunner([("Sharpen", None)])

    def test_processes_folder(self, scan_folder):
        seen = []
        runner = BatchRunner(
            [("Binarize", {"threshold": "128"})],
            workers=1,
            on_progress=lambda done, total, path: seen.append((done, total)),
        )
        report = runner.run(str(scan_folder))

        out_dir = scan_folder / "Processed"
        assert report.success
        assert report.total == 2 and report.processed == 2
        assert (out_dir / "a.tif").exists()
        assert (out_dir / "b.tif").exists()
        assert not (out_dir / "_batch_errors.txt").exists()
        assert sorted(seen) == [(1, 2), (2, 2)]

    def test_existing_outputs_skipped(self, scan_folder):
        BatchRunner([("Binarize", None)], workers=1).run(str(scan_folder))
        report = BatchRunner([("Binarize", None)], workers=1).run(str(scan_folder))
        assert report.skipped == 2
        assert report.processed == 0

        report = BatchRunner([("Binarize", None)], workers=1, overwrite=True).run(str(scan_folder))
        assert report.processed == 2

    def test_failure_recorded_and_batch_continues(self, scan_folder):
        (scan_folder / "c.png").write_bytes(b"garbage")
        report = BatchRunner([("Binarize", None)], workers=2).run(str(scan_folder))

        assert report.processed == 2
        assert len(report.failed) == 1
        assert report.failed[0][0].endswith("c.png")
        errors = (scan_folder / "Processed" / "_batch_errors.txt").read_text()
        assert "c.png" in errors
        assert not (scan_folder / "Processed" / "c.tif").exists()

    def test_ccitt_output(self, scan_folder):
        report = BatchRunner(
            [("Binarize", None)], compression="CCITT G4", workers=1
        ).run(str(scan_folder))
        assert report.success

    def test_split_and_renumber(self, tmp_path, spread, bar_page):
        cv2.imwrite(str(tmp_path / "a.png"), spread)
        cv2.imwrite(str(tmp_path / "b.png"), bar_page)
        runner = BatchRunner([("SplitPages", None)], workers=1, renumber_split=True)
        report = runner.run(str(tmp_path))

        names = sorted(os.listdir(tmp_path / "Processed"))
        assert names == ["001.tif", "002.tif", "003.tif"]
        assert len(report.outputs) == 3

    def test_split_without_renumber(self, tmp_path, spread):
        cv2.imwrite(str(tmp_path / "a.png"), spread)
        BatchRunner([("SplitPages", None)], workers=1).run(str(tmp_path))
        assert sorted(os.listdir(tmp_path / "Processed")) == ["a_1.tif", "a_2.tif"]

    def test_cancelled_run(self, scan_folder):
        token = CancellationToken()
        token.cancel()
        report = BatchRunner([("Binarize", None)], workers=1, token=token).run(str(scan_folder))
        assert report.cancelled
        assert not report.success
        assert report.processed == 0

    def test_empty_folder(self, tmp_path):
        report = BatchRunner([("Deskew", None)]).run(str(tmp_path))
        assert report.total == 0
        assert report.success

    def test_unexpected_step_error_isolated(self, monkeypatch, scan_folder):
        original = ImageProcessor.apply_command

        def flaky(self, command, params=None):
            if self.source_path.endswith("b.png"):
                raise cv2.error("synthetic OpenCV failure")
            return original(self, command, params)

        monkeypatch.setattr(ImageProcessor, "apply_command", flaky)
        report = BatchRunner([("Binarize", None)], workers=2).run(str(scan_folder))

        out_dir = scan_folder / "Processed"
        assert report.processed == 1
        assert (out_dir / "a.tif").exists()
        assert not (out_dir / "b.tif").exists()
        assert len(report.failed) == 1
        assert report.failed[0][0].endswith("b.png")
        assert "error" in report.failed[0][1]
        assert "b.png" in (out_dir / "_batch_errors.txt").read_text()

    def test_renumber_leaves_earlier_outputs(self, tmp_path, spread):
        cv2.imwrite(str(tmp_path / "a.png"), spread)
        BatchRunner([("SplitPages", None)], workers=1).run(str(tmp_path))

        cv2.imwrite(str(tmp_path / "c.png"), spread)
        report = BatchRunner([("SplitPages", None)], workers=1, renumber_split=True).run(
            str(tmp_path)
        )

        assert report.skipped == 1
        names = sorted(os.listdir(tmp_path / "Processed"))
        assert names == ["001.tif", "002.tif", "a_1.tif", "a_2.tif"]

    def test_renumber_continues_sequence(self, tmp_path, spread):
        cv2.imwrite(str(tmp_path / "a.png"), spread)
        BatchRunner([("SplitPages", None)], workers=1, renumber_split=True).run(str(tmp_path))
        first = (tmp_path / "Processed" / "001.tif").read_bytes()

        os.remove(tmp_path / "a.png")
        marked = spread.copy()
        marked[100:140, 100:140] = 0
        cv2.imwrite(str(tmp_path / "c.png"), marked)
        report = BatchRunner([("SplitPages", None)], workers=1, renumber_split=True).run(
            str(tmp_path)
        )

        names = sorted(os.listdir(tmp_path / "Processed"))
        assert names == ["001.tif", "002.tif", "003.tif", "004.tif"]
        assert [os.path.basename(p) for p in report.outputs] == ["003.tif", "004.tif"]
        assert (tmp_path / "Processed" / "001.tif").read_bytes() == first
