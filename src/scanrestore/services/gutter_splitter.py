"""Gutter detection and two-page spread splitting.

The gutter of a book spread shows up as a valley in the column ink
profile near the middle of the image, and as a band that is brighter and
smoother than the pages beside it in Lab lightness. Both cues are scored
and blended into one confidence; low-confidence spreads are left unsplit.
"""

import logging
from dataclasses import dataclass

import cv2
import numpy as np

from scanrestore.constants import WHITE
from scanrestore.services.config import SplitterSettings
from scanrestore.utils.cancellation import CancellationToken, ensure_token
from scanrestore.utils.exceptions import NoSignalFoundError
from scanrestore.utils.raster import clamp, clamp01, make_odd, to_bgr, validate_raster

logger = logging.getLogger(__name__)

# ── Lab confirmation scoring ─────────────────────────────────────
_LAB_MIN_GUTTER_HALF = 4
_LAB_MIN_NEIGHBOR = 12
_LAB_BRIGHTNESS_SPAN = 20.0  # L levels above min_l_diff for a full score
_LAB_MIN_NEIGHBOR_STD = 2.0
_LAB_BRIGHTNESS_WEIGHT = 0.65
_LAB_TEXTURE_WEIGHT = 0.35

_BAND_COLOR = (0, 255, 255)
_SPLIT_COLOR = (0, 0, 255)


@dataclass
class SplitResult:
    """Outcome of one split attempt.

    ``left`` and ``right`` are crops of the original image and are only set
    on success. ``split_x`` is in original coordinates, ``split_x_analysis``
    in the downscaled analysis image.
    """

    success: bool = False
    left: np.ndarray | None = None
    right: np.ndarray | None = None
    split_x: int = 0
    split_x_analysis: int = 0
    projection_confidence: float = 0.0
    lab_confidence: float = 0.0
    final_confidence: float = 0.0
    reason: str | None = None
    debug_overlay: np.ndarray | None = None


def build_ink_mask(bgr: np.ndarray, settings: SplitterSettings) -> np.ndarray:
    """Ink mask with characters fused horizontally into line blobs."""
    gray = cv2.cvtColor(bgr, cv2.COLOR_BGR2GRAY)
    if settings.use_clahe:
        grid = settings.clahe_tile_grid
        clahe = cv2.createCLAHE(clipLimit=settings.clahe_clip_limit, tileGridSize=(grid, grid))
        gray = clahe.apply(gray)
    gray = cv2.GaussianBlur(gray, (5, 5), 0)

    block = make_odd(max(9, settings.adaptive_block_size))
    binary = cv2.adaptiveThreshold(
        gray, WHITE, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY_INV, block, settings.adaptive_c
    )

    width_frac = clamp(settings.close_kernel_width_frac, 0.005, 0.12)
    kw = max(15, int(round(bgr.shape[1] * width_frac)))
    kh = int(clamp(settings.close_kernel_height_px, 1, 25))
    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (kw, kh))
    return cv2.morphologyEx(binary, cv2.MORPH_CLOSE, kernel)


def smooth_moving_average(data: np.ndarray, window: int) -> np.ndarray:
    """Centered moving average; the window shrinks at both ends."""
    n = len(data)
    if n == 0 or window <= 1:
        return data.astype(np.float64, copy=True)
    window = make_odd(min(window, n))
    r = window // 2
    prefix = np.concatenate(([0.0], np.cumsum(data, dtype=np.float64)))
    idx = np.arange(n)
    a = np.maximum(0, idx - r)
    b = np.minimum(n - 1, idx + r)
    return (prefix[b + 1] - prefix[a]) / (b - a + 1)


def find_valley(profile: np.ndarray, start: int, end: int) -> int:
    """Centre of the lowest plateau of ``profile[start:end + 1]``."""
    band = profile[start : end + 1]
    first = int(np.argmin(band))
    low = band[first]
    last = first
    while last + 1 < len(band) and band[last + 1] <= low + 1e-9:
        last += 1
    return start + (first + last) // 2


def projection_confidence(profile: np.ndarray, start: int, end: int, split_x: int) -> float:
    """``1 - valley / median`` over the search band; 0 for an inkless band."""
    median = float(np.median(profile[start : end + 1]))
    if median < 1.0:
        return 0.0
    return clamp01(1.0 - clamp01(profile[split_x] / median))


def lab_confidence(
    bgr: np.ndarray,
    split_x: int,
    settings: SplitterSettings,
    token: CancellationToken | None = None,
) -> float:
    """Score how much brighter and smoother the gutter is than its neighbours."""
    token = ensure_token(token)
    lightness = cv2.cvtColor(bgr, cv2.COLOR_BGR2LAB)[:, :, 0]
    w = lightness.shape[1]
    half = max(_LAB_MIN_GUTTER_HALF, settings.lab_gutter_half_width_px)
    neighbor = max(_LAB_MIN_NEIGHBOR, settings.lab_neighbor_width_px)

    gx0 = int(clamp(split_x - half, 0, w - 1))
    gx1 = int(clamp(split_x + half, 0, w - 1))
    lx1 = int(clamp(gx0 - 1, 0, w - 1))
    lx0 = int(clamp(lx1 - neighbor + 1, 0, w - 1))
    rx0 = int(clamp(gx1 + 1, 0, w - 1))
    rx1 = int(clamp(rx0 + neighbor - 1, 0, w - 1))
    if lx1 <= lx0 or rx1 <= rx0 or gx1 <= gx0:
        return 0.0

    def mean_std(x0: int, x1: int) -> tuple[float, float]:
        strip = lightness[:, x0 : x1 + 1]
        return float(strip.mean()), float(strip.std())

    mean_g, std_g = mean_std(gx0, gx1)
    mean_l, std_l = mean_std(lx0, lx1)
    mean_r, std_r = mean_std(rx0, rx1)
    token.raise_if_cancelled("gutter lab confirmation")

    neighbor_mean = (mean_l + mean_r) / 2.0
    neighbor_std = max(_LAB_MIN_NEIGHBOR_STD, (std_l + std_r) / 2.0)
    brightness = clamp01((mean_g - neighbor_mean - settings.min_l_diff) / _LAB_BRIGHTNESS_SPAN)

    ratio = std_g / neighbor_std
    max_ratio = settings.max_gutter_std_ratio
    texture = clamp01((max_ratio - ratio) / max_ratio) if ratio <= max_ratio else 0.0
    return clamp01(_LAB_BRIGHTNESS_WEIGHT * brightness + _LAB_TEXTURE_WEIGHT * texture)


def _debug_overlay(bgr: np.ndarray, split_x: int, band_start: int, band_end: int) -> np.ndarray:
    overlay = bgr.copy()
    h = overlay.shape[0]
    cv2.line(overlay, (band_start, 0), (band_start, h - 1), _BAND_COLOR, 2)
    cv2.line(overlay, (band_end, 0), (band_end, h - 1), _BAND_COLOR, 2)
    cv2.line(overlay, (split_x, 0), (split_x, h - 1), _SPLIT_COLOR, 2)
    return overlay


def split_pages(
    src: np.ndarray,
    settings: SplitterSettings | None = None,
    token: CancellationToken | None = None,
) -> SplitResult:
    """Find the gutter of a two-page spread and crop both pages.

    Args:
        src: 1/3/4-channel uint8 image
        settings: Splitter settings (defaults when None)
        token: Optional cancellation token

    Returns:
        SplitResult; ``success`` is False with a ``reason`` when the final
        confidence is below ``min_confidence``

    Raises:
        NoSignalFoundError: On low confidence when ``throw_if_low_confidence``
    """
    validate_raster(src, "src")
    settings = settings or SplitterSettings()
    token = ensure_token(token)
    token.raise_if_cancelled("page split")

    bgr = to_bgr(src)
    orig_h, orig_w = bgr.shape[:2]
    scale = 1.0
    analysis = bgr
    if settings.analysis_max_width > 0 and orig_w > settings.analysis_max_width:
        scale = settings.analysis_max_width / orig_w
        size = (settings.analysis_max_width, max(1, int(round(orig_h * scale))))
        analysis = cv2.resize(bgr, size, interpolation=cv2.INTER_AREA)
    token.raise_if_cancelled("page split")

    w = analysis.shape[1]
    ink = build_ink_mask(analysis, settings)
    token.raise_if_cancelled("page split")
    profile = smooth_moving_average(
        np.count_nonzero(ink, axis=0).astype(np.float64), make_odd(max(5, settings.smooth_window_px))
    )

    band_start = int(clamp(round(w * settings.central_band_start), 0, w - 1))
    band_end = int(clamp(round(w * settings.central_band_end), 0, w - 1))
    if band_end <= band_start:
        band_start, band_end = max(0, w // 3), min(w - 1, 2 * w // 3)

    split_a = find_valley(profile, band_start, band_end)
    proj_conf = projection_confidence(profile, band_start, band_end, split_a)
    lab_conf = lab_confidence(analysis, split_a, settings, token) if settings.use_lab_confirmation else 0.0

    weight_sum = settings.weight_projection + settings.weight_lab
    if weight_sum <= 1e-9:
        w_proj, w_lab = 1.0, 0.0
    else:
        w_proj, w_lab = settings.weight_projection / weight_sum, settings.weight_lab / weight_sum
    final_conf = clamp01(w_proj * proj_conf + w_lab * lab_conf)

    split_x = split_a if scale == 1.0 else int(round(split_a / scale))
    result = SplitResult(
        split_x=split_x,
        split_x_analysis=split_a,
        projection_confidence=proj_conf,
        lab_confidence=lab_conf,
        final_confidence=final_conf,
    )
    if settings.produce_debug_overlay:
        result.debug_overlay = _debug_overlay(analysis, split_a, band_start, band_end)

    if final_conf < settings.min_confidence:
        result.reason = (
            f"Low confidence: final={final_conf:.3f}, proj={proj_conf:.3f}, lab={lab_conf:.3f}"
        )
        if settings.throw_if_low_confidence:
            raise NoSignalFoundError("page split", result.reason)
        logger.warning(f"Page split skipped. {result.reason}")
        return result

    pad = max(0, settings.pad_px)
    left_w = int(clamp(split_x + pad, 1, orig_w))
    right_x = int(clamp(split_x - pad, 0, orig_w - 1))
    result.left = src[:, :left_w].copy()
    result.right = src[:, right_x:].copy()
    result.success = True
    logger.info(f"Page split at x={split_x} (confidence {final_conf:.2f})")
    return result
