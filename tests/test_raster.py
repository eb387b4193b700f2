"""Tests for raster buffer helpers."""

import numpy as np
import pytest

from scanrestore.utils.exceptions import InvalidInputError
from scanrestore.utils.raster import (
    channel_count,
    clamp,
    content_bounding_box,
    estimate_black_threshold,
    estimate_page_fill_color,
    expand_to_bgr,
    is_binary_mask,
    is_empty,
    make_odd,
    restore_channels,
    sample_corner_background,
    to_bgr,
    to_bgra,
    to_gray,
    validate_raster,
)


def _make_framed_page(size=200, frame=20, paper=230):
    """Gray page of uniform paper surrounded by a black frame."""
    img = np.zeros((size, size), dtype=np.uint8)
    img[frame:-frame, frame:-frame] = paper
    return img


class TestValidateRaster:
    def test_none_rejected(self):
        with pytest.raises(InvalidInputError, match="image is None"):
            validate_raster(None)

    def test_wrong_dtype_rejected(self):
        with pytest.raises(InvalidInputError, match="8-bit"):
            validate_raster(np.zeros((4, 4), dtype=np.float32))

    def test_two_channels_rejected(self):
        with pytest.raises(InvalidInputError, match="channels"):
            validate_raster(np.zeros((4, 4, 2), dtype=np.uint8))

    def test_empty_rejected_unless_allowed(self):
        empty = np.zeros((0, 0), dtype=np.uint8)
        with pytest.raises(InvalidInputError, match="empty"):
            validate_raster(empty)
        validate_raster(empty, allow_empty=True)

    def test_supported_layouts_accepted(self):
        for shape in [(5, 5), (5, 5, 3), (5, 5, 4)]:
            validate_raster(np.zeros(shape, dtype=np.uint8))

    def test_field_name_in_error(self):
        with pytest.raises(InvalidInputError) as exc:
            validate_raster(None, "src")
        assert exc.value.field == "src"


class TestChannelConversions:
    def test_channel_count(self):
        assert channel_count(np.zeros((2, 2), dtype=np.uint8)) == 1
        assert channel_count(np.zeros((2, 2, 3), dtype=np.uint8)) == 3
        assert channel_count(np.zeros((2, 2, 4), dtype=np.uint8)) == 4

    def test_to_gray_returns_copy(self):
        gray = np.full((3, 3), 10, dtype=np.uint8)
        out = to_gray(gray)
        out[0, 0] = 99
        assert gray[0, 0] == 10

    def test_to_bgr_and_bgra_shapes(self):
        gray = np.full((3, 3), 10, dtype=np.uint8)
        assert to_bgr(gray).shape == (3, 3, 3)
        assert to_bgra(gray).shape == (3, 3, 4)
        assert to_bgr(to_bgra(gray)).shape == (3, 3, 3)

    def test_expand_to_bgr_replicates_mask(self):
        mask = np.array([[0, 255]], dtype=np.uint8)
        out = expand_to_bgr(mask)
        np.testing.assert_array_equal(out[0, 0], [0, 0, 0])
        np.testing.assert_array_equal(out[0, 1], [255, 255, 255])

    def test_restore_channels_follows_reference(self):
        bgr = np.full((4, 4, 3), 200, dtype=np.uint8)
        assert restore_channels(bgr, np.zeros((4, 4), dtype=np.uint8)).ndim == 2
        assert restore_channels(bgr, np.zeros((4, 4, 4), dtype=np.uint8)).shape[2] == 4

    def test_is_empty(self):
        assert is_empty(None)
        assert is_empty(np.zeros((0, 3), dtype=np.uint8))
        assert not is_empty(np.zeros((1, 1), dtype=np.uint8))


class TestSmallHelpers:
    def test_is_binary_mask(self):
        assert is_binary_mask(np.array([[0, 255]], dtype=np.uint8))
        assert not is_binary_mask(np.array([[0, 128]], dtype=np.uint8))
        assert not is_binary_mask(np.zeros((0,), dtype=np.uint8))

    def test_clamp_and_make_odd(self):
        assert clamp(5, 0, 3) == 3
        assert clamp(-1, 0, 3) == 0
        assert make_odd(4) == 5
        assert make_odd(7) == 7

    def test_content_bounding_box(self):
        mask = np.zeros((10, 10), dtype=np.uint8)
        mask[2:5, 3:8] = 255
        assert content_bounding_box(mask) == (3, 2, 5, 3)
        assert content_bounding_box(np.zeros((4, 4), dtype=np.uint8)) is None


class TestThresholdEstimation:
    def test_threshold_between_ink_and_paper(self):
        img = np.full((200, 200), 220, dtype=np.uint8)
        img[60:140, 60:140] = 20
        thr = estimate_black_threshold(img)
        assert 20 < thr < 220

    def test_uniform_image_falls_back(self):
        img = np.full((100, 100), 128, dtype=np.uint8)
        assert estimate_black_threshold(img) == 40

    def test_empty_image_falls_back(self):
        assert estimate_black_threshold(np.zeros((0, 0), dtype=np.uint8)) == 40


class TestBackgroundSampling:
    def test_dark_corners_ignored(self):
        img = _make_framed_page()
        assert sample_corner_background(img, dark_threshold=40) == (255.0, 255.0, 255.0)

    def test_paper_corners_sampled(self):
        img = np.full((100, 100, 3), (200, 210, 220), dtype=np.uint8)
        b, g, r = sample_corner_background(img, dark_threshold=40)
        assert (round(b), round(g), round(r)) == (200, 210, 220)

    def test_page_fill_color_on_flat_paper(self):
        img = np.full((300, 300, 3), 235, dtype=np.uint8)
        color = estimate_page_fill_color(img)
        np.testing.assert_allclose(color, (235.0, 235.0, 235.0), atol=0.5)

    def test_page_fill_color_degenerate(self):
        assert estimate_page_fill_color(np.zeros((1, 1), dtype=np.uint8)) == (255.0, 255.0, 255.0)
