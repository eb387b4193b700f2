"""Tests for the image processor facade."""

import numpy as np
import pytest

from scanrestore.services.config import (
    BinarizeMethod,
    BinarizeParameters,
    BinarizeRequest,
    DeskewParameters,
    ProcessorCommand,
)
from scanrestore.services.gutter_splitter import SplitResult
from scanrestore.services.processor import ImageProcessor, resolve_parameters, run_command
from scanrestore.utils.exceptions import (
    InvalidInputError,
    OperationCancelledError,
    UnsupportedConfigurationError,
)


class TestResolveParameters:
    def test_map_parsed(self):
        params = resolve_parameters(ProcessorCommand.BINARIZE, {"method": "Sauvola"})
        assert isinstance(params, BinarizeRequest)
        assert params.params.method == BinarizeMethod.SAUVOLA

    def test_defaults_for_none(self):
        assert isinstance(resolve_parameters(ProcessorCommand.DESKEW, None), DeskewParameters)

    def test_binarize_parameters_wrapped(self):
        request = resolve_parameters(ProcessorCommand.BINARIZE, BinarizeParameters(threshold=90))
        assert request.params.threshold == 90

    def test_typed_passthrough(self):
        params = DeskewParameters()
        assert resolve_parameters(ProcessorCommand.DESKEW, params) is params


class TestRunCommand:
    def test_binarize_by_name(self, text_page):
        out = run_command(text_page, "Binarize", {"threshold": "128"})
        assert set(np.unique(out)) <= {0, 255}

    def test_alias(self, spread):
        assert isinstance(run_command(spread, "split"), SplitResult)

    def test_unknown_command(self, text_page):
        with pytest.raises(UnsupportedConfigurationError):
            run_command(text_page, "Sharpen")


class TestImageProcessor:
    def test_no_image(self):
        processor = ImageProcessor()
        with pytest.raises(InvalidInputError, match="no image loaded"):
            processor.apply_command(ProcessorCommand.DESKEW)
        with pytest.raises(InvalidInputError):
            processor.get_output()

    def test_apply_replaces_image(self, text_page):
        processor = ImageProcessor()
        processor.set_image(text_page)
        out = processor.apply_command(ProcessorCommand.BINARIZE)
        assert processor.image is out
        assert set(np.unique(processor.image)) <= {0, 255}

    def test_set_image_copies(self, text_page):
        processor = ImageProcessor()
        processor.set_image(text_page)
        text_page[:] = 0
        assert processor.image.max() == 255

    def test_cancel_keeps_image(self, text_page):
        processor = ImageProcessor()
        processor.set_image(text_page)
        before = processor.image
        processor.cancel()
        with pytest.raises(OperationCancelledError):
            processor.apply_command(ProcessorCommand.BINARIZE)
        assert processor.image is before

    def test_failed_command_keeps_image(self, text_page):
        processor = ImageProcessor()
        processor.set_image(text_page)
        before = processor.image
        with pytest.raises(InvalidInputError):
            processor.apply_command(ProcessorCommand.BINARIZE, {"threshold": "999"})
        assert processor.image is before

    def test_split_keeps_working_image(self, spread):
        processor = ImageProcessor()
        processor.set_image(spread)
        before = processor.image
        processor.apply_command("SplitPages")
        assert processor.image is before
        assert processor.split_results.success

    def test_process_single_is_stateless(self, text_page):
        processor = ImageProcessor()
        out = processor.process_single(text_page, ProcessorCommand.BINARIZE)
        assert out.shape == text_page.shape
        assert processor.image is None

    def test_load_and_output(self, tmp_path, text_page):
        import cv2

        path = tmp_path / "page.png"
        cv2.imwrite(str(path), text_page)
        processor = ImageProcessor()
        processor.load(str(path))
        assert processor.source_path == str(path)
        processor.apply_command(ProcessorCommand.BINARIZE)
        data = processor.get_output("CCITT G4")
        assert data[:2] in (b"II", b"MM")
