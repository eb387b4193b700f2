"""Illumination normalization and contrast enhancement.

Homomorphic retinex removes slow lighting gradients (page curl shadows,
scanner lamp falloff) by splitting the log image into a Gaussian low band
and its high-frequency residual, reweighting both and mapping the result
back to 8 bits. It runs before thresholding or as the Retinex mode of the
enhance command, next to CLAHE on the Lab lightness.
"""

import logging

import cv2
import numpy as np

from scanrestore.services.config import (
    EnhanceMethod,
    EnhanceParameters,
    PreBinarizationMethod,
    PreBinarizationParameters,
    RetinexOutputMode,
)
from scanrestore.utils.cancellation import CancellationToken, ensure_token
from scanrestore.utils.exceptions import UnsupportedConfigurationError
from scanrestore.utils.raster import (
    lab_lightness,
    restore_channels,
    to_bgr,
    to_gray,
    validate_raster,
)

logger = logging.getLogger(__name__)

_ROBUST_SAMPLE_MIN_PIXELS = 900  # larger images are sampled at half size
_ROBUST_SAMPLE_SCALE = 0.5


def robust_normalize_to_8u(
    src: np.ndarray,
    robust: bool = True,
    p_low: float = 0.5,
    p_high: float = 99.5,
    hist_bins: int = 2048,
) -> np.ndarray:
    """Map a float image to uint8.

    Args:
        src: Single-channel float image
        robust: Clip at the p_low/p_high percentiles instead of min/max
        p_low: Lower percentile (0..100)
        p_high: Upper percentile (0..100)
        hist_bins: Histogram resolution used to locate the percentiles

    Returns:
        uint8 image of the same shape
    """
    src = src.astype(np.float32, copy=False)
    if not robust:
        return cv2.normalize(src, None, 0, 255, cv2.NORM_MINMAX, cv2.CV_8U)

    sample = src
    if src.shape[0] * src.shape[1] > _ROBUST_SAMPLE_MIN_PIXELS:
        sample = cv2.resize(
            src,
            None,
            fx=_ROBUST_SAMPLE_SCALE,
            fy=_ROBUST_SAMPLE_SCALE,
            interpolation=cv2.INTER_AREA,
        )

    vmin = float(sample.min())
    vmax = float(sample.max())
    if vmax <= vmin + 1e-12:
        return np.zeros(src.shape, dtype=np.uint8)

    hist, _ = np.histogram(sample, bins=hist_bins, range=(vmin, vmax))
    cdf = np.cumsum(hist)
    total = float(cdf[-1])
    idx_low = int(np.searchsorted(cdf, total * p_low / 100.0))
    idx_high = int(np.searchsorted(cdf, total * p_high / 100.0))
    idx_low = min(idx_low, hist_bins - 1)
    idx_high = min(idx_high, hist_bins - 1)

    span = vmax - vmin
    lo = vmin + idx_low / (hist_bins - 1) * span
    hi = vmin + idx_high / (hist_bins - 1) * span
    if hi <= lo:
        return cv2.normalize(src, None, 0, 255, cv2.NORM_MINMAX, cv2.CV_8U)

    scaled = (np.clip(src, lo, hi) - lo) * (255.0 / (hi - lo))
    return np.clip(np.rint(scaled), 0, 255).astype(np.uint8)


def homomorphic_retinex(
    src: np.ndarray,
    params: PreBinarizationParameters | None = None,
    token: CancellationToken | None = None,
) -> np.ndarray:
    """Flatten uneven illumination with a log-domain high-pass.

    Args:
        src: 1/3/4-channel uint8 image
        params: Retinex parameters (defaults when None)
        token: Optional cancellation token

    Returns:
        Single-channel uint8 image
    """
    validate_raster(src, "src")
    params = params or PreBinarizationParameters()
    token = ensure_token(token)

    gray = lab_lightness(src) if params.use_lab_l else to_gray(src)
    f = gray.astype(np.float32) / 255.0
    np.maximum(f, params.eps, out=f)
    log_img = np.log(f)
    token.raise_if_cancelled("homomorphic retinex")

    low = cv2.GaussianBlur(
        log_img, (0, 0), sigmaX=params.sigma, sigmaY=params.sigma, borderType=cv2.BORDER_REFLECT_101
    )
    high = log_img - low
    token.raise_if_cancelled("homomorphic retinex")

    if params.output_mode == RetinexOutputMode.LOG_HIGHPASS:
        out = params.gamma_high * high
    elif params.output_mode == RetinexOutputMode.EXP_RECONSTRUCT:
        combined = params.gamma_high * high + params.gamma_low * low
        out = np.exp(np.clip(combined, -params.exp_clamp_abs, params.exp_clamp_abs))
    else:
        raise UnsupportedConfigurationError(
            "retinexOutputMode", params.output_mode, [m.value for m in RetinexOutputMode]
        )

    result = robust_normalize_to_8u(
        out,
        robust=params.robust_normalize,
        p_low=params.p_low,
        p_high=params.p_high,
        hist_bins=params.hist_bins,
    )

    if params.apply_clahe:
        clahe = cv2.createCLAHE(
            clipLimit=params.clahe_clip, tileGridSize=(params.clahe_tile, params.clahe_tile)
        )
        result = clahe.apply(result)

    logger.debug(
        f"Homomorphic retinex: mode={params.output_mode.value}, sigma={params.sigma}, "
        f"robust={params.robust_normalize}"
    )
    return result


def apply_pre_binarization(
    src: np.ndarray,
    params: PreBinarizationParameters | None,
    token: CancellationToken | None = None,
) -> np.ndarray:
    """Run the configured pre-stage; returns ``src`` unchanged for NONE."""
    if params is None or params.method == PreBinarizationMethod.NONE:
        return src
    if params.method == PreBinarizationMethod.HOMOMORPHIC_RETINEX:
        return homomorphic_retinex(src, params, token)
    raise UnsupportedConfigurationError(
        "preMethod", params.method, [m.value for m in PreBinarizationMethod]
    )


def apply_clahe_lab(img: np.ndarray, clip_limit: float = 2.0, tile_size: int = 8) -> np.ndarray:
    """Equalize local contrast on the Lab L channel, keeping colour."""
    validate_raster(img, "img")
    lab = cv2.cvtColor(to_bgr(img), cv2.COLOR_BGR2LAB)
    clahe = cv2.createCLAHE(clipLimit=clip_limit, tileGridSize=(tile_size, tile_size))
    lab[:, :, 0] = clahe.apply(lab[:, :, 0])
    return cv2.cvtColor(lab, cv2.COLOR_LAB2BGR)


def enhance(
    src: np.ndarray,
    params: EnhanceParameters | None = None,
    token: CancellationToken | None = None,
) -> np.ndarray:
    """Boost local contrast, keeping the channel layout of ``src``.

    CLAHE works on the Lab lightness and keeps colour. Retinex flattens
    the lighting and yields a gray page.
    """
    validate_raster(src, "src")
    params = params or EnhanceParameters()
    token = ensure_token(token)

    if params.method == EnhanceMethod.CLAHE:
        result = apply_clahe_lab(src, params.clip_limit, params.grid_size)
    elif params.method == EnhanceMethod.RETINEX:
        pre = PreBinarizationParameters(
            method=PreBinarizationMethod.HOMOMORPHIC_RETINEX,
            output_mode=RetinexOutputMode.EXP_RECONSTRUCT,
            sigma=params.retinex_sigma,
        )
        result = homomorphic_retinex(src, pre, token)
    else:
        raise UnsupportedConfigurationError(
            "enhanceMethod", params.method, [m.value for m in EnhanceMethod]
        )
    token.raise_if_cancelled("enhance")
    logger.debug(f"Enhance: method={params.method.value}")
    return restore_channels(result, src)
