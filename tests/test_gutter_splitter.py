"""Tests for gutter detection and page splitting."""

import numpy as np
import pytest

from scanrestore.services.config import SplitterSettings
from scanrestore.services.gutter_splitter import (
    find_valley,
    projection_confidence,
    smooth_moving_average,
    split_pages,
)
from scanrestore.utils.exceptions import InvalidInputError, NoSignalFoundError


class TestProfileHelpers:
    def test_moving_average_shrinks_at_ends(self):
        out = smooth_moving_average(np.array([0.0, 3.0, 6.0]), 3)
        np.testing.assert_allclose(out, [1.5, 3.0, 4.5])

    def test_moving_average_window_one(self):
        data = np.array([1, 2, 3])
        np.testing.assert_array_equal(smooth_moving_average(data, 1), data)

    def test_valley_centre_of_plateau(self):
        profile = np.array([5, 4, 0, 0, 0, 0, 3, 5], dtype=float)
        assert find_valley(profile, 0, 7) == 3

    def test_projection_confidence(self):
        profile = np.array([10, 10, 0, 10, 10], dtype=float)
        assert projection_confidence(profile, 0, 4, 2) == pytest.approx(1.0)
        assert projection_confidence(np.zeros(5), 0, 4, 2) == 0.0


class TestSplitPages:
    def test_spread_split_at_gutter(self, spread):
        result = split_pages(spread)
        assert result.success
        assert abs(result.split_x - 500) <= 5
        assert result.final_confidence >= 0.28
        assert result.left.shape[1] == result.split_x + 24
        assert result.right.shape[1] == spread.shape[1] - (result.split_x - 24)
        assert result.left.shape[0] == spread.shape[0]

    def test_downscaled_analysis(self, spread):
        result = split_pages(spread, SplitterSettings(analysis_max_width=500))
        assert result.success
        assert abs(result.split_x_analysis - 250) <= 6
        assert abs(result.split_x - 500) <= 12

    def test_single_page_not_split(self, bar_page):
        result = split_pages(bar_page)
        assert not result.success
        assert result.left is None and result.right is None
        assert result.reason.startswith("Low confidence")

    def test_strict_mode_raises(self, bar_page):
        with pytest.raises(NoSignalFoundError):
            split_pages(bar_page, SplitterSettings(throw_if_low_confidence=True))

    def test_debug_overlay(self, spread):
        result = split_pages(spread, SplitterSettings(produce_debug_overlay=True))
        assert result.debug_overlay is not None
        assert result.debug_overlay.shape == spread.shape

    def test_band_order_validated(self):
        with pytest.raises(InvalidInputError, match="centralBandEnd"):
            SplitterSettings(central_band_start=0.7, central_band_end=0.3).validate()
