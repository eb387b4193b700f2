"""Tests for the exception hierarchy."""

import pytest

from scanrestore.utils.exceptions import (
    ImageIOError,
    InvalidInputError,
    NoSignalFoundError,
    OperationCancelledError,
    ScanRestoreError,
    UnsupportedConfigurationError,
)


class TestScanRestoreError:
    def test_message_only(self):
        err = ScanRestoreError("boom")
        assert str(err) == "boom"
        assert err.details is None

    def test_message_with_details(self):
        err = ScanRestoreError("boom", details="at stage 2")
        assert str(err) == "boom (at stage 2)"


class TestSubclasses:
    @pytest.mark.parametrize(
        "err",
        [
            InvalidInputError("src"),
            NoSignalFoundError("page split"),
            OperationCancelledError(),
            UnsupportedConfigurationError("method", "Foo"),
            ImageIOError("/tmp/x.png"),
        ],
    )
    def test_all_derive_from_base(self, err):
        assert isinstance(err, ScanRestoreError)

    def test_invalid_input_message(self):
        err = InvalidInputError("threshold", 300, "must be <= 255")
        assert err.message == "Invalid input for 'threshold': must be <= 255"
        assert err.details == "value=300"

    def test_no_signal_message(self):
        err = NoSignalFoundError("page split", "Low confidence")
        assert str(err) == "No usable signal found in page split: Low confidence"

    def test_cancelled_without_stage(self):
        assert str(OperationCancelledError()) == "Operation cancelled"

    def test_unsupported_lists_supported(self):
        err = UnsupportedConfigurationError("method", "Foo", ["Threshold", "Sauvola"])
        assert "'Foo'" in str(err)
        assert "supported=Threshold, Sauvola" in str(err)

    def test_image_io_keeps_path(self):
        err = ImageIOError("/tmp/a.tif", "file not found")
        assert err.path == "/tmp/a.tif"
        assert "file not found" in str(err)
