"""Binarization of scanned pages.

Converts grayscale or colour scans into black-on-white bitonal rasters.
The result is always re-expanded to three channels so every command in
the pipeline hands the same layout to the next one.
"""

import logging

import cv2
import numpy as np

from scanrestore.constants import BLACK, WHITE
from scanrestore.services.config import (
    AdaptiveMethod,
    BinarizeMethod,
    BinarizeParameters,
    PreBinarizationParameters,
    parse_enum,
)
from scanrestore.services.illumination import apply_pre_binarization
from scanrestore.utils.cancellation import CancellationToken, ensure_token
from scanrestore.utils.exceptions import UnsupportedConfigurationError
from scanrestore.utils.raster import (
    channel_count,
    clamp,
    expand_to_bgr,
    make_odd,
    to_gray,
    validate_raster,
)

logger = logging.getLogger(__name__)

# ── Adaptive block sizing ────────────────────────────────────────
_AUTO_BLOCK_DIVISOR = 30  # block = min(W, H) / 30
_MIN_BLOCK_SIZE = 3
_MAX_BLOCK_SIZE = 201


def auto_block_size(width: int, height: int) -> int:
    """Odd adaptive block size scaled to the page, clamped to 3..201."""
    block = int(clamp(min(width, height) // _AUTO_BLOCK_DIVISOR, _MIN_BLOCK_SIZE, _MAX_BLOCK_SIZE))
    return make_odd(block)


def _ink_cleanup(binary: np.ndarray, op_kernel: np.ndarray, iterations: int, close: bool) -> np.ndarray:
    """Open (and optionally close) the ink of a white-background binary image."""
    ink = cv2.bitwise_not(binary)
    ink = cv2.morphologyEx(ink, cv2.MORPH_OPEN, op_kernel, iterations=iterations)
    if close:
        ink = cv2.morphologyEx(ink, cv2.MORPH_CLOSE, op_kernel, iterations=iterations)
    return cv2.bitwise_not(ink)


def threshold_binarize(gray: np.ndarray, threshold: int) -> np.ndarray:
    """Global cutoff: gray > threshold becomes white."""
    _, binary = cv2.threshold(gray, threshold, WHITE, cv2.THRESH_BINARY)
    return binary


def adaptive_binarize(gray: np.ndarray, params: BinarizeParameters) -> np.ndarray:
    """Local mean (or Gaussian-weighted) threshold offset by ``mean_c``."""
    h, w = gray.shape[:2]
    if params.block_size <= 0:
        block = auto_block_size(w, h)
    else:
        block = make_odd(max(_MIN_BLOCK_SIZE, params.block_size))

    use_gaussian = params.use_gaussian or params.adaptive_method == AdaptiveMethod.GAUSSIAN
    method = cv2.ADAPTIVE_THRESH_GAUSSIAN_C if use_gaussian else cv2.ADAPTIVE_THRESH_MEAN_C
    binary = cv2.adaptiveThreshold(gray, WHITE, method, cv2.THRESH_BINARY, block, params.mean_c)

    if params.use_morphology:
        kernel = cv2.getStructuringElement(
            cv2.MORPH_ELLIPSE, (params.morph_kernel, params.morph_kernel)
        )
        binary = _ink_cleanup(binary, kernel, params.morph_iterations, close=False)

    logger.debug(f"Adaptive threshold: block={block}, C={params.mean_c}, gaussian={use_gaussian}")
    return binary


def sauvola_binarize(
    gray: np.ndarray,
    params: BinarizeParameters,
    token: CancellationToken | None = None,
) -> np.ndarray:
    """Sauvola local-contrast threshold.

    T = mean * (1 + k * (std / R - 1)) + pencil_stroke_boost, capped at 255.
    Pixels brighter than T become white.

    Args:
        gray: Single-channel uint8 image
        params: Binarization parameters
        token: Optional cancellation token

    Returns:
        Binary uint8 image (0 ink, 255 paper)
    """
    token = ensure_token(token)
    if params.sauvola_use_clahe:
        grid = params.sauvola_clahe_grid
        clahe = cv2.createCLAHE(clipLimit=params.sauvola_clahe_clip, tileGridSize=(grid, grid))
        gray = clahe.apply(gray)

    window = make_odd(max(_MIN_BLOCK_SIZE, params.sauvola_window))
    f = gray.astype(np.float64)
    ksize = (window, window)
    mean = cv2.boxFilter(f, cv2.CV_64F, ksize, normalize=True, borderType=cv2.BORDER_REFLECT_101)
    sq_mean = cv2.boxFilter(f * f, cv2.CV_64F, ksize, normalize=True, borderType=cv2.BORDER_REFLECT_101)
    token.raise_if_cancelled("sauvola")

    std = np.sqrt(np.maximum(sq_mean - mean * mean, 0.0))
    thresh = mean * (1.0 + params.sauvola_k * (std / params.sauvola_r - 1.0))
    thresh = np.minimum(thresh + params.pencil_stroke_boost, 255.0)

    binary = np.where(f > thresh, WHITE, BLACK).astype(np.uint8)

    radius = params.sauvola_morph_radius
    if radius > 0:
        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (2 * radius + 1, 2 * radius + 1))
        binary = _ink_cleanup(binary, kernel, 1, close=True)

    return binary


def majority_binarize(gray: np.ndarray, threshold: int, offset: int) -> np.ndarray:
    """Vote of three global cutoffs (T - offset, T, T + offset).

    A pixel is white when at least two of the three cutoffs call it white.
    A non-positive threshold selects Otsu's value as the centre cutoff.
    """
    if threshold <= 0:
        threshold, _ = cv2.threshold(gray, 0, WHITE, cv2.THRESH_BINARY | cv2.THRESH_OTSU)
        threshold = int(threshold)

    votes = np.zeros(gray.shape, dtype=np.uint8)
    for cutoff in (threshold - offset, threshold, threshold + offset):
        cutoff = int(clamp(cutoff, 0, 254))
        votes += (gray > cutoff).astype(np.uint8)

    return np.where(votes >= 2, WHITE, BLACK).astype(np.uint8)


def binarize(
    src: np.ndarray,
    method: BinarizeMethod | str | None = None,
    params: BinarizeParameters | None = None,
    pre_params: PreBinarizationParameters | None = None,
    token: CancellationToken | None = None,
) -> np.ndarray:
    """Convert an image to a black-on-white bitonal 3-channel raster.

    Args:
        src: 1/3/4-channel uint8 image
        method: Algorithm; defaults to ``params.method``
        params: Binarization parameters (defaults when None)
        pre_params: Optional illumination pre-stage
        token: Optional cancellation token

    Returns:
        BGR uint8 image whose pixels are 0 or 255; an empty array for
        empty input.

    Raises:
        InvalidInputError: If src is None or not an 8-bit raster
        UnsupportedConfigurationError: For an unknown method
    """
    validate_raster(src, "src", allow_empty=True)
    if src.size == 0:
        return np.empty_like(src)

    params = params or BinarizeParameters()
    if method is None:
        method = params.method
    method = parse_enum(BinarizeMethod, method, "method")
    token = ensure_token(token)
    token.raise_if_cancelled("binarize")

    if channel_count(src) == 4:
        logger.debug("Dropping alpha channel before binarization")

    prepared = apply_pre_binarization(src, pre_params, token)
    gray = to_gray(prepared)
    token.raise_if_cancelled("binarize")

    if method == BinarizeMethod.THRESHOLD:
        binary = threshold_binarize(gray, params.threshold)
    elif method == BinarizeMethod.ADAPTIVE:
        binary = adaptive_binarize(gray, params)
    elif method == BinarizeMethod.SAUVOLA:
        binary = sauvola_binarize(gray, params, token)
    elif method == BinarizeMethod.MAJORITY:
        binary = majority_binarize(gray, params.threshold, params.majority_offset)
    else:
        raise UnsupportedConfigurationError("method", method, [m.value for m in BinarizeMethod])

    token.raise_if_cancelled("binarize")
    logger.info(f"Binarized {gray.shape[1]}x{gray.shape[0]} image with {method.value}")
    return expand_to_bgr(binary)
