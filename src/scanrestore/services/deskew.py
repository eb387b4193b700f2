"""Skew detection and correction.

Four independent estimators measure page skew. Each returns the angle in
degrees to hand to ``rotate_with_canvas`` (OpenCV convention, positive is
counter-clockwise), so a line rising to the right by θ yields about −θ.
NaN means the estimator found nothing usable.
"""

import logging
import math

import cv2
import numpy as np

from scanrestore.constants import (
    BORDER_ANGLE_DEADBAND_DEG,
    MAX_SKEW_DEG,
    ROTATION_DEADBAND_DEG,
    WHITE,
)
from scanrestore.services.config import DeskewAlgorithm, DeskewParameters, parse_enum
from scanrestore.services.rotation import rotate_with_canvas, rotated_canvas_size
from scanrestore.utils.buffer_pool import BufferPool
from scanrestore.utils.cancellation import CancellationToken, ensure_token
from scanrestore.utils.raster import to_gray, validate_raster

logger = logging.getLogger(__name__)

# ── Border contour ───────────────────────────────────────────────
_BORDER_ADAPTIVE_BLOCK = 31
_BORDER_ADAPTIVE_C = 10
_BORDER_CLOSE_ITERATIONS = 2
_BORDER_POLY_EPSILON = 0.02  # fraction of the contour perimeter

# ── PCA / projection ─────────────────────────────────────────────
_PCA_MIN_POINTS = 50
_PROJECTION_MAX_DIM = 1600  # longer masks are downscaled before the sweep

_SCRATCH_POOL = BufferPool()


def normalize_angle(angle: float) -> float:
    """Wrap an angle into (−90, 90]."""
    while angle <= -90.0:
        angle += 180.0
    while angle > 90.0:
        angle -= 180.0
    return angle


def fold_to_axis(angle: float) -> float:
    """Fold an angle in (−90, 90] onto the nearest axis (±45 range)."""
    if angle > MAX_SKEW_DEG:
        return angle - 90.0
    if angle < -MAX_SKEW_DEG:
        return angle + 90.0
    return angle


def _segment_angle(x1: float, y1: float, x2: float, y2: float) -> float:
    return normalize_angle(math.degrees(math.atan2(y2 - y1, x2 - x1)))


def ink_mask(gray: np.ndarray) -> np.ndarray:
    """Otsu ink mask (ink = 255) closed with a 3×3 rectangle."""
    _, mask = cv2.threshold(gray, 0, WHITE, cv2.THRESH_BINARY_INV | cv2.THRESH_OTSU)
    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (3, 3))
    return cv2.morphologyEx(mask, cv2.MORPH_CLOSE, kernel)


# ============================================================================
# Estimators
# ============================================================================


def estimate_by_borders(
    src: np.ndarray,
    params: DeskewParameters | None = None,
    token: CancellationToken | None = None,
) -> float:
    """Angle of the largest outer contour (page edge or frame).

    Args:
        src: 1/3/4-channel uint8 image
        params: Deskew parameters
        token: Optional cancellation token

    Returns:
        Corrective angle in degrees, or NaN when the contour is too small
        or the angle is below the border deadband
    """
    params = params or DeskewParameters()
    token = ensure_token(token)
    gray = cv2.GaussianBlur(to_gray(src), (3, 3), 0)
    binary = cv2.adaptiveThreshold(
        gray,
        WHITE,
        cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
        cv2.THRESH_BINARY_INV,
        _BORDER_ADAPTIVE_BLOCK,
        _BORDER_ADAPTIVE_C,
    )
    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (params.morph_kernel, params.morph_kernel))
    binary = cv2.morphologyEx(binary, cv2.MORPH_CLOSE, kernel, iterations=_BORDER_CLOSE_ITERATIONS)
    token.raise_if_cancelled("deskew by borders")

    contours, _ = cv2.findContours(binary, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    if not contours:
        logger.debug("Border deskew: no contours")
        return math.nan

    largest = max(contours, key=cv2.contourArea)
    h, w = gray.shape[:2]
    area = cv2.contourArea(largest)
    if area < params.min_area_fraction * w * h:
        logger.debug(f"Border deskew: largest contour too small ({area:.0f}px)")
        return math.nan

    epsilon = _BORDER_POLY_EPSILON * cv2.arcLength(largest, True)
    approx = cv2.approxPolyDP(largest, epsilon, True).reshape(-1, 2)
    if len(approx) == 4:
        corners = approx.astype(np.float64)
    else:
        corners = cv2.boxPoints(cv2.minAreaRect(largest)).astype(np.float64)

    best_len = -1.0
    angle = 0.0
    for i in range(len(corners)):
        x1, y1 = corners[i]
        x2, y2 = corners[(i + 1) % len(corners)]
        length = math.hypot(x2 - x1, y2 - y1)
        if length > best_len:
            best_len = length
            angle = _segment_angle(x1, y1, x2, y2)

    angle = fold_to_axis(angle)
    if abs(angle) < BORDER_ANGLE_DEADBAND_DEG:
        return math.nan
    return angle


def estimate_by_hough(
    src: np.ndarray,
    params: DeskewParameters | None = None,
    token: CancellationToken | None = None,
) -> float:
    """Median angle of probabilistic Hough segments.

    Segments shorter than half of ``min_line_length`` are ignored unless
    nothing else is left.
    """
    params = params or DeskewParameters()
    token = ensure_token(token)
    gray = cv2.GaussianBlur(to_gray(src), (3, 3), 0)
    edges = cv2.Canny(gray, params.canny_low, params.canny_high)
    token.raise_if_cancelled("deskew by hough")

    lines = cv2.HoughLinesP(
        edges,
        1,
        np.pi / 180,
        params.hough_threshold,
        minLineLength=params.min_line_length,
        maxLineGap=params.max_line_gap,
    )
    if lines is None or len(lines) == 0:
        logger.debug("Hough deskew: no lines")
        return math.nan

    long_angles = []
    all_angles = []
    half_len = params.min_line_length / 2.0
    for x1, y1, x2, y2 in lines.reshape(-1, 4):
        token.raise_if_cancelled("deskew by hough")
        a = _segment_angle(x1, y1, x2, y2)
        all_angles.append(a)
        if math.hypot(x2 - x1, y2 - y1) >= half_len:
            long_angles.append(a)

    angles = sorted(long_angles or all_angles)
    median = angles[len(angles) // 2]
    if abs(median) > MAX_SKEW_DEG:
        logger.debug(f"Hough deskew: median {median:.2f} outside ±{MAX_SKEW_DEG}")
        return math.nan
    return median


def _row_profile_variance(mask: np.ndarray, angle: float, canvas: tuple[int, int]) -> float:
    """Variance of the row ink counts of ``mask`` rotated by ``angle``."""
    big_w, big_h = canvas
    h, w = mask.shape[:2]
    padded = _SCRATCH_POOL.rent((big_h, big_w))
    rotated = _SCRATCH_POOL.rent((big_h, big_w))
    try:
        x0 = (big_w - w) // 2
        y0 = (big_h - h) // 2
        padded[y0 : y0 + h, x0 : x0 + w] = mask
        matrix = cv2.getRotationMatrix2D((big_w / 2.0, big_h / 2.0), angle, 1.0)
        cv2.warpAffine(
            padded,
            matrix,
            (big_w, big_h),
            dst=rotated,
            flags=cv2.INTER_NEAREST,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=0,
        )
        return float(np.count_nonzero(rotated, axis=1).var())
    finally:
        _SCRATCH_POOL.give_back(padded)
        _SCRATCH_POOL.give_back(rotated)


def projection_sweep(
    mask: np.ndarray,
    angles: np.ndarray,
    token: CancellationToken | None = None,
) -> tuple[float, float]:
    """Score each candidate angle and return ``(best_angle, best_score)``."""
    token = ensure_token(token)
    h, w = mask.shape[:2]
    max_angle = float(np.max(np.abs(angles))) if len(angles) else 0.0
    canvas = rotated_canvas_size(w, h, max_angle if max_angle < 45 else 45.0)
    canvas = (max(canvas[0], w), max(canvas[1], h))

    best_angle = 0.0
    best_score = -1.0
    for a in angles:
        token.raise_if_cancelled("projection sweep")
        score = _row_profile_variance(mask, float(a), canvas)
        if score > best_score:
            best_score = score
            best_angle = float(a)
    return best_angle, best_score


def estimate_by_projection(
    src: np.ndarray,
    params: DeskewParameters | None = None,
    token: CancellationToken | None = None,
) -> float:
    """Angle whose rotation gives the sharpest row projection profile.

    Coarse sweep over ±projection_range, then a fine sweep within one
    coarse step around the coarse optimum.
    """
    params = params or DeskewParameters()
    token = ensure_token(token)
    mask = ink_mask(to_gray(src))
    if not np.any(mask):
        logger.debug("Projection deskew: empty ink mask")
        return math.nan

    h, w = mask.shape[:2]
    scale = _PROJECTION_MAX_DIM / max(h, w)
    if scale < 1.0:
        mask = cv2.resize(mask, None, fx=scale, fy=scale, interpolation=cv2.INTER_NEAREST)

    rng = params.projection_range
    coarse_step = params.projection_coarse_step
    fine_step = params.projection_fine_step
    coarse = np.arange(-rng, rng + coarse_step / 2.0, coarse_step)
    best, _ = projection_sweep(mask, coarse, token)

    fine = np.arange(best - coarse_step, best + coarse_step + fine_step / 2.0, fine_step)
    best, score = projection_sweep(mask, np.round(fine, 6), token)
    logger.debug(f"Projection deskew: best={best:.2f} score={score:.1f}")
    return best


def estimate_by_pca(
    src: np.ndarray,
    params: DeskewParameters | None = None,
    token: CancellationToken | None = None,
) -> float:
    """Direction of the principal axis of the ink point cloud."""
    token = ensure_token(token)
    _, mask = cv2.threshold(to_gray(src), 0, WHITE, cv2.THRESH_BINARY_INV | cv2.THRESH_OTSU)
    ys, xs = np.nonzero(mask)
    if len(xs) < _PCA_MIN_POINTS:
        logger.debug(f"PCA deskew: only {len(xs)} ink points")
        return math.nan
    token.raise_if_cancelled("deskew by pca")

    points = np.column_stack((xs, ys)).astype(np.float64)
    points -= points.mean(axis=0)
    cov = points.T @ points / len(points)
    eigenvalues, eigenvectors = np.linalg.eigh(cov)
    vx, vy = eigenvectors[:, int(np.argmax(eigenvalues))]

    angle = normalize_angle(math.degrees(math.atan2(vy, vx)))
    if abs(angle) > MAX_SKEW_DEG:
        # dominant strokes are vertical, measure the skew against the y axis
        logger.debug(f"PCA deskew: principal axis {angle:.2f} folded to the vertical")
    return fold_to_axis(angle)


_ESTIMATORS = {
    DeskewAlgorithm.BY_BORDERS: estimate_by_borders,
    DeskewAlgorithm.HOUGH: estimate_by_hough,
    DeskewAlgorithm.PROJECTION: estimate_by_projection,
    DeskewAlgorithm.PCA: estimate_by_pca,
}

# Fallback order for AUTO
_AUTO_ORDER = (DeskewAlgorithm.HOUGH, DeskewAlgorithm.PCA, DeskewAlgorithm.PROJECTION)


def estimate_skew(
    src: np.ndarray,
    algorithm: DeskewAlgorithm | str | None = None,
    params: DeskewParameters | None = None,
    token: CancellationToken | None = None,
) -> float:
    """Run one estimator, or the AUTO chain where the first non-NaN wins.

    Args:
        src: 1/3/4-channel uint8 image
        algorithm: Estimator; defaults to ``params.algorithm``
        params: Deskew parameters (defaults when None)
        token: Optional cancellation token

    Returns:
        Corrective angle in degrees, NaN when nothing was found
    """
    validate_raster(src, "src")
    params = params or DeskewParameters()
    algorithm = parse_enum(DeskewAlgorithm, algorithm or params.algorithm, "deskewAlgorithm")
    token = ensure_token(token)

    if algorithm != DeskewAlgorithm.AUTO:
        return _ESTIMATORS[algorithm](src, params, token)

    for candidate in _AUTO_ORDER:
        angle = _ESTIMATORS[candidate](src, params, token)
        if not math.isnan(angle):
            logger.debug(f"Auto deskew: {candidate.value} found {angle:.3f}°")
            return angle
    return math.nan


def corrective_angle(
    src: np.ndarray,
    params: DeskewParameters | None = None,
    token: CancellationToken | None = None,
) -> float:
    """Rotation ``deskew`` would apply; 0.0 for no signal or inside the deadband."""
    params = params or DeskewParameters()
    angle = estimate_skew(src, params.algorithm, params, token)
    deadband = (
        BORDER_ANGLE_DEADBAND_DEG
        if params.algorithm == DeskewAlgorithm.BY_BORDERS
        else ROTATION_DEADBAND_DEG
    )
    if math.isnan(angle) or abs(angle) < deadband:
        return 0.0
    return angle


def deskew(
    src: np.ndarray,
    params: DeskewParameters | None = None,
    token: CancellationToken | None = None,
) -> np.ndarray:
    """Estimate skew and rotate the page straight.

    Returns a copy of ``src`` when no angle was found or it lies inside the
    deadband. Border-based correction fills the grown canvas with black so
    a following border removal sees one continuous frame.
    """
    validate_raster(src, "src")
    params = params or DeskewParameters()
    angle = corrective_angle(src, params, token)
    if angle == 0.0:
        logger.debug("Deskew: no correction needed")
        return src.copy()

    background = (0.0, 0.0, 0.0) if params.algorithm == DeskewAlgorithm.BY_BORDERS else None
    logger.info(f"Deskew ({params.algorithm.value}): rotating by {angle:.3f}°")
    return rotate_with_canvas(src, angle, background, params.crop_mode, token)
