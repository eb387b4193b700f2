"""Tests for cooperative cancellation."""

import threading

import numpy as np
import pytest

from scanrestore.services.config import ProcessorCommand
from scanrestore.services.deskew import projection_sweep
from scanrestore.services.processor import ImageProcessor
from scanrestore.services.rotation import rotate_with_canvas
from scanrestore.utils.cancellation import NEVER_CANCELLED, CancellationToken, ensure_token
from scanrestore.utils.exceptions import OperationCancelledError


class TestCancellationToken:
    def test_initially_not_cancelled(self):
        token = CancellationToken()
        assert not token.is_cancelled
        token.raise_if_cancelled("anything")

    def test_cancel_raises_with_stage(self):
        token = CancellationToken()
        token.cancel()
        assert token.is_cancelled
        with pytest.raises(OperationCancelledError, match="during deskew") as exc:
            token.raise_if_cancelled("deskew")
        assert exc.value.stage == "deskew"

    def test_cancel_from_other_thread(self):
        token = CancellationToken()
        t = threading.Thread(target=token.cancel)
        t.start()
        t.join()
        assert token.is_cancelled


class TestEnsureToken:
    def test_none_gives_never_cancelled(self):
        token = ensure_token(None)
        assert token is NEVER_CANCELLED
        token.cancel()
        assert not token.is_cancelled

    def test_given_token_passes_through(self):
        token = CancellationToken()
        assert ensure_token(token) is token


class _TripAfter(CancellationToken):
    """Token that cancels itself on its ``limit``-th poll."""

    def __init__(self, limit):
        super().__init__()
        self.limit = limit
        self.polls = 0

    def raise_if_cancelled(self, stage=None):
        self.polls += 1
        if self.polls >= self.limit:
            self.cancel()
        super().raise_if_cancelled(stage)


def _speckled(page, count=60, seed=3):
    rng = np.random.default_rng(seed)
    page = page.copy()
    h, w = page.shape[:2]
    for x, y in zip(rng.integers(5, w - 5, count), rng.integers(5, h - 5, count)):
        page[y : y + 2, x : x + 2] = 0
    return page


class TestCancelMidOperation:
    def test_projection_sweep_stops_at_next_angle(self):
        mask = np.zeros((200, 200), dtype=np.uint8)
        mask[50:53, 20:180] = 255
        token = _TripAfter(5)
        with pytest.raises(OperationCancelledError, match="projection sweep"):
            projection_sweep(mask, np.arange(-15.0, 15.5, 1.0), token)
        assert token.polls == 5

    def test_deskew_leaves_working_image(self, text_page):
        token = _TripAfter(4)
        processor = ImageProcessor(token)
        processor.set_image(rotate_with_canvas(text_page, 3.0))
        before = processor.image
        before_bytes = processor.get_output()

        with pytest.raises(OperationCancelledError):
            processor.apply_command(ProcessorCommand.DESKEW, {"deskewAlgorithm": "Projection"})

        assert token.polls == 4
        assert processor.image is before
        assert processor.get_output() == before_bytes

    def test_despeckle_leaves_working_image(self, text_page):
        page = _speckled(text_page)
        token = _TripAfter(10)
        processor = ImageProcessor(token)
        processor.set_image(page)
        before_bytes = processor.get_output()

        with pytest.raises(OperationCancelledError, match="despeckle"):
            processor.apply_command(ProcessorCommand.DESPECKLE)

        assert token.polls == 10
        np.testing.assert_array_equal(processor.image, page)
        assert processor.get_output() == before_bytes
