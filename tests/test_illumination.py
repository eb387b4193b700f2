"""Tests for illumination normalization."""

import numpy as np
import pytest

from scanrestore.services.config import (
    EnhanceMethod,
    EnhanceParameters,
    PreBinarizationMethod,
    PreBinarizationParameters,
    RetinexOutputMode,
)
from scanrestore.services.illumination import (
    apply_clahe_lab,
    apply_pre_binarization,
    enhance,
    homomorphic_retinex,
    robust_normalize_to_8u,
)
from scanrestore.services.processor import run_command
from scanrestore.utils.exceptions import OperationCancelledError


def _make_shaded_page():
    """Horizontal lighting gradient (100 → 250) with a dark square in each half."""
    ramp = np.linspace(100, 250, 400).astype(np.uint8)
    img = np.tile(ramp, (200, 1))
    img[90:110, 100:120] = 30
    img[90:110, 280:300] = 30
    return img


class TestRobustNormalize:
    def test_minmax(self):
        src = np.array([[0.0, 0.5, 1.0]], dtype=np.float32)
        out = robust_normalize_to_8u(src, robust=False)
        np.testing.assert_array_equal(out, [[0, 128, 255]])

    def test_constant_input(self):
        out = robust_normalize_to_8u(np.full((10, 10), 3.0, dtype=np.float32))
        assert out.dtype == np.uint8
        assert not out.any()

    def test_outliers_clipped(self):
        rng = np.random.default_rng(42)
        src = rng.normal(0.0, 1.0, (60, 60)).astype(np.float32)
        src[0, 0] = 1000.0
        out = robust_normalize_to_8u(src)
        # the single outlier no longer squeezes everything else into a few levels
        assert out[1:, 1:].std() > 30


class TestHomomorphicRetinex:
    def test_flattens_lighting_gradient(self):
        img = _make_shaded_page()
        params = PreBinarizationParameters(
            method=PreBinarizationMethod.HOMOMORPHIC_RETINEX, sigma=10.0
        )
        out = homomorphic_retinex(img, params)

        assert out.shape == img.shape
        assert out.dtype == np.uint8
        bg_left = float(out[150:190, 40:80].mean())
        bg_right = float(out[150:190, 320:360].mean())
        assert abs(bg_left - bg_right) < 40
        assert float(out[95:105, 105:115].mean()) < bg_left - 50
        assert float(out[95:105, 285:295].mean()) < bg_right - 50

    def test_exp_reconstruct_mode(self):
        params = PreBinarizationParameters(output_mode=RetinexOutputMode.EXP_RECONSTRUCT, sigma=10.0)
        out = homomorphic_retinex(_make_shaded_page(), params)
        assert out.ndim == 2
        assert out.dtype == np.uint8

    def test_color_input(self, text_page):
        out = homomorphic_retinex(text_page, PreBinarizationParameters(use_lab_l=False))
        assert out.shape == text_page.shape[:2]

    def test_cancelled(self, cancelled_token):
        with pytest.raises(OperationCancelledError):
            homomorphic_retinex(_make_shaded_page(), token=cancelled_token)


class TestPreBinarization:
    def test_none_passes_input_through(self):
        img = _make_shaded_page()
        assert apply_pre_binarization(img, None) is img
        assert apply_pre_binarization(img, PreBinarizationParameters()) is img

    def test_retinex_selected(self):
        params = PreBinarizationParameters(method=PreBinarizationMethod.HOMOMORPHIC_RETINEX)
        out = apply_pre_binarization(_make_shaded_page(), params)
        assert out.ndim == 2


class TestClaheLab:
    def test_keeps_shape_and_boosts_contrast(self):
        ramp = np.tile(np.linspace(110, 140, 256).astype(np.uint8), (256, 1))
        img = np.dstack([ramp, ramp, ramp])
        out = apply_clahe_lab(img, clip_limit=40.0)
        assert out.shape == img.shape
        assert int(out.max()) - int(out.min()) > int(img.max()) - int(img.min())


class TestEnhance:
    def test_clahe_keeps_gray_layout(self):
        ramp = np.tile(np.linspace(110, 140, 256).astype(np.uint8), (256, 1))
        out = enhance(ramp, EnhanceParameters(clip_limit=40.0))
        assert out.shape == ramp.shape
        assert int(out.max()) - int(out.min()) > 30

    def test_retinex_keeps_color_layout(self, text_page):
        out = enhance(text_page, EnhanceParameters(method=EnhanceMethod.RETINEX, retinex_sigma=10.0))
        assert out.shape == text_page.shape
        assert out.dtype == np.uint8

    def test_routed_from_command(self, text_page):
        out = run_command(text_page, "Enhance", {"enhanceMethod": "Clahe", "claheGridSize": "4"})
        assert out.shape == text_page.shape

    def test_cancelled(self, cancelled_token):
        with pytest.raises(OperationCancelledError):
            enhance(
                _make_shaded_page(),
                EnhanceParameters(method=EnhanceMethod.RETINEX),
                token=cancelled_token,
            )
