"""Scanner border removal.

Three algorithms strip the dark frame a flatbed leaves around a page:

- AUTO: dark pixels are labeled, edge-touching components that look like
  a frame (large, solid, long, deep or spanning the page) are selected.
- BY_CONTRAST: whole rows/columns that differ from the page centre are
  peeled from each side.
- MANUAL: fixed margins.

Crop is the canonical result. Fill paints the artifacts with the paper
colour and keeps the original size.
"""

import logging

import cv2
import numpy as np

from scanrestore.constants import WHITE
from scanrestore.services.components import ComponentRecord, ComponentSet, label_components, select
from scanrestore.services.config import (
    BorderRemovalAlgorithm,
    BorderRemovalMode,
    BorderRemovalParameters,
)
from scanrestore.utils.cancellation import CancellationToken, ensure_token
from scanrestore.utils.exceptions import UnsupportedConfigurationError
from scanrestore.utils.raster import (
    estimate_black_threshold,
    estimate_page_fill_color,
    sample_corner_background,
    to_bgr,
    validate_raster,
)

logger = logging.getLogger(__name__)

_DEBUG_OVERLAY_ALPHA = 0.3
_DEBUG_OVERLAY_COLOR = (0, 0, 255)


# ============================================================================
# Shared helpers
# ============================================================================


def _edge_distance_grid(record: ComponentRecord, rows: int, cols: int) -> np.ndarray:
    """Distance of each bbox pixel to the nearest image edge."""
    ys = np.arange(record.y, record.y + record.height)
    xs = np.arange(record.x, record.x + record.width)
    dy = np.minimum(ys, rows - 1 - ys)[:, None]
    dx = np.minimum(xs, cols - 1 - xs)[None, :]
    return np.minimum(dy, dx)


def component_depth(
    components: ComponentSet,
    record: ComponentRecord,
    token: CancellationToken | None = None,
) -> int:
    """Deepest inward reach of a component, in pixels from the nearest edge."""
    token = ensure_token(token)
    rows, cols = components.shape
    inside = components.component_mask(record)
    dist = _edge_distance_grid(record, rows, cols)
    depth = 0
    for row_mask, row_dist in zip(inside, dist):
        token.raise_if_cancelled("border depth scan")
        if row_mask.any():
            depth = max(depth, int(row_dist[row_mask].max()))
    return depth


def clean_region_bounds(artifact_mask: np.ndarray) -> tuple[int, int, int, int] | None:
    """Bounds ``(top, bottom, left, right)`` (exclusive end) of the clean region.

    Rows and columns are peeled from each side while they contain only
    artifact pixels. Returns None when nothing clean remains.
    """
    clean = artifact_mask == 0
    rows = np.flatnonzero(clean.any(axis=1))
    cols = np.flatnonzero(clean.any(axis=0))
    if rows.size == 0 or cols.size == 0:
        return None
    return int(rows[0]), int(rows[-1]) + 1, int(cols[0]), int(cols[-1]) + 1


def feathered_fill(
    image: np.ndarray,
    mask: np.ndarray,
    color: tuple[float, float, float],
    feather_px: int,
) -> np.ndarray:
    """Paint ``mask`` with ``color`` and blend a soft seam just outside it."""
    out = image.copy()
    out[mask > 0] = color
    ksize = max(3, (feather_px // 2) * 2 + 1)
    alpha = cv2.GaussianBlur(mask, (ksize, ksize), 0).astype(np.float32) / 255.0
    seam = (alpha > 0) & (mask == 0)
    if np.any(seam):
        a = alpha[seam][:, None]
        fill = np.asarray(color, dtype=np.float32)[None, :]
        blended = fill * a + image[seam].astype(np.float32) * (1.0 - a)
        out[seam] = np.clip(np.rint(blended), 0, 255).astype(np.uint8)
    return out


def telea_hybrid_fill(
    image: np.ndarray,
    mask: np.ndarray,
    color: tuple[float, float, float],
    feather_px: int,
) -> np.ndarray:
    """Flat fill for the mask core, Telea inpainting for its thin outer seam."""
    inner_radius = max(1, feather_px // 2)
    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (2 * inner_radius + 1, 2 * inner_radius + 1))
    inner = cv2.erode(mask, kernel)
    seam = cv2.subtract(mask, inner)

    out = image.copy()
    out[inner > 0] = color
    if np.any(seam):
        out = cv2.inpaint(out, seam, max(3.0, float(feather_px)), cv2.INPAINT_TELEA)
    return out


# ============================================================================
# AUTO
# ============================================================================


def detect_border_artifacts(
    src: np.ndarray,
    params: BorderRemovalParameters,
    token: CancellationToken | None = None,
) -> tuple[np.ndarray, np.ndarray, int]:
    """Select edge-touching dark components that behave like a frame.

    Returns:
        ``(selection_mask, dark_mask, threshold)`` with 0/255 masks
    """
    token = ensure_token(token)
    bgr = to_bgr(src)
    rows, cols = bgr.shape[:2]
    threshold = params.dark_threshold
    if params.auto_threshold:
        threshold = estimate_black_threshold(bgr, params.margin_percent, params.shift_factor)

    gray = cv2.cvtColor(bgr, cv2.COLOR_BGR2GRAY)
    _, dark = cv2.threshold(gray, threshold, WHITE, cv2.THRESH_BINARY_INV)
    token.raise_if_cancelled("border removal")

    components = label_components(dark)
    min_depth_px = int(round(params.min_depth_fraction * min(rows, cols)))

    def is_artifact(rec: ComponentRecord) -> bool:
        if not rec.touches_edge:
            return False
        if rec.area >= params.min_area_px:
            return True
        if rec.solidity >= params.solidity_threshold:
            return True
        spans_h = (rec.touches_top or rec.touches_bottom) and rec.width >= params.min_span_fraction * cols
        spans_v = (rec.touches_left or rec.touches_right) and rec.height >= params.min_span_fraction * rows
        if spans_h or spans_v or rec.touches_opposite_edges:
            return True
        return min_depth_px > 0 and component_depth(components, rec, token) >= min_depth_px

    selection = select(components, is_artifact, token, stage="border removal")
    return selection, dark, threshold


def remove_borders_auto(
    src: np.ndarray,
    params: BorderRemovalParameters,
    token: CancellationToken | None = None,
) -> np.ndarray:
    """Component-based frame removal (crop or fill)."""
    token = ensure_token(token)
    bgr = to_bgr(src)
    selection, dark, threshold = detect_border_artifacts(bgr, params, token)
    if not np.any(selection):
        logger.debug("Border removal: no border artifacts selected")
        return bgr

    mask = selection
    if params.feather_px > 0:
        k = 2 * params.feather_px + 1
        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (k, k))
        mask = cv2.dilate(selection, kernel)

    # the feather must never swallow unselected ink
    other_ink = cv2.bitwise_and(dark, cv2.bitwise_not(selection))
    mask = cv2.bitwise_and(mask, cv2.bitwise_not(other_ink))
    token.raise_if_cancelled("border removal")

    if params.mode == BorderRemovalMode.CROP:
        bounds = clean_region_bounds(mask)
        if bounds is None:
            logger.warning("Border removal: artifacts cover the whole image, leaving it unchanged")
            return bgr
        top, bottom, left, right = bounds
        logger.info(f"Border removal: cropping to x={left}..{right}, y={top}..{bottom}")
        return bgr[top:bottom, left:right].copy()

    background = sample_corner_background(bgr, threshold)
    logger.info(f"Border removal: filling {np.count_nonzero(mask)} px with {background}")
    if params.use_telea_hybrid:
        return telea_hybrid_fill(bgr, mask, background, params.feather_px)
    return feathered_fill(bgr, mask, background, params.feather_px)


# ============================================================================
# BY_CONTRAST
# ============================================================================


def _peel_count(fractions: np.ndarray, thresh_frac: float) -> int:
    """Number of leading entries above ``thresh_frac``."""
    below = np.flatnonzero(fractions <= thresh_frac)
    return int(below[0]) if below.size else len(fractions)


def remove_borders_by_contrast(
    src: np.ndarray,
    params: BorderRemovalParameters,
    token: CancellationToken | None = None,
) -> np.ndarray:
    """Peel rows/columns that contrast with the central page sample."""
    token = ensure_token(token)
    bgr = to_bgr(src)
    gray = cv2.cvtColor(bgr, cv2.COLOR_BGR2GRAY)
    h, w = gray.shape

    sample = min(0.9, max(0.05, params.central_sample))
    cx0 = min(w - 1, max(0, int(round(w * (0.5 - sample / 2.0)))))
    cy0 = min(h - 1, max(0, int(round(h * (0.5 - sample / 2.0)))))
    cx1 = max(cx0 + 1, min(w, int(round(w * (0.5 + sample / 2.0)))))
    cy1 = max(cy0 + 1, min(h, int(round(h * (0.5 + sample / 2.0)))))
    median = float(np.median(gray[cy0:cy1, cx0:cx1]))

    row_counts = np.zeros(h, dtype=np.int64)
    col_counts = np.zeros(w, dtype=np.int64)
    for y in range(h):
        token.raise_if_cancelled("border removal by contrast")
        differs = np.abs(gray[y].astype(np.int16) - median) > params.contrast_thr
        row_counts[y] = np.count_nonzero(differs)
        col_counts += differs

    row_frac = row_counts / float(w)
    col_frac = col_counts / float(h)
    thresh = min(0.99, max(0.01, params.thresh_frac))
    max_frac = min(0.5, max(0.01, params.max_remove_frac))
    max_rows = int(round(max_frac * h))
    max_cols = int(round(max_frac * w))

    top = min(_peel_count(row_frac, thresh), max_rows)
    bottom = min(_peel_count(row_frac[::-1], thresh), max_rows)
    left = min(_peel_count(col_frac, thresh), max_cols)
    right = min(_peel_count(col_frac[::-1], thresh), max_cols)

    if top == bottom == left == right == 0:
        logger.debug("Border removal by contrast: nothing to peel")
        return bgr

    logger.info(f"Border removal by contrast: top={top} bottom={bottom} left={left} right={right}")
    if params.mode == BorderRemovalMode.CROP and top + bottom < h and left + right < w:
        return bgr[top : h - bottom, left : w - right].copy()

    result = bgr.copy()
    result[:top] = WHITE
    result[h - bottom :] = WHITE
    result[:, :left] = WHITE
    result[:, w - right :] = WHITE
    return result


# ============================================================================
# MANUAL
# ============================================================================


def remove_borders_manual(
    src: np.ndarray,
    params: BorderRemovalParameters,
    token: CancellationToken | None = None,
) -> np.ndarray:
    """Cut (or paint) fixed margins; a debug flag only tints them red."""
    ensure_token(token).raise_if_cancelled("manual border removal")
    bgr = to_bgr(src)
    h, w = bgr.shape[:2]
    x, y = params.manual_left, params.manual_top
    roi_w = w - params.manual_left - params.manual_right
    roi_h = h - params.manual_top - params.manual_bottom
    if roi_w <= 0 or roi_h <= 0:
        logger.warning(f"Manual border removal: margins leave no page ({roi_w}x{roi_h})")
        return bgr

    outside = np.full((h, w), WHITE, dtype=np.uint8)
    outside[y : y + roi_h, x : x + roi_w] = 0

    if params.manual_cut_debug:
        overlay = bgr.copy()
        overlay[outside > 0] = _DEBUG_OVERLAY_COLOR
        return cv2.addWeighted(overlay, _DEBUG_OVERLAY_ALPHA, bgr, 1.0 - _DEBUG_OVERLAY_ALPHA, 0)

    if params.mode == BorderRemovalMode.CROP:
        return bgr[y : y + roi_h, x : x + roi_w].copy()

    fill = estimate_page_fill_color(bgr, cv2.bitwise_not(outside))
    result = bgr.copy()
    result[outside > 0] = fill
    return result


_ALGORITHMS = {
    BorderRemovalAlgorithm.AUTO: remove_borders_auto,
    BorderRemovalAlgorithm.BY_CONTRAST: remove_borders_by_contrast,
    BorderRemovalAlgorithm.MANUAL: remove_borders_manual,
}


def remove_borders(
    src: np.ndarray,
    params: BorderRemovalParameters | None = None,
    token: CancellationToken | None = None,
) -> np.ndarray:
    """Remove the scanner frame around a page.

    Args:
        src: 1/3/4-channel uint8 image
        params: Border removal parameters (defaults when None)
        token: Optional cancellation token

    Returns:
        BGR image, cropped in CROP mode; a copy when nothing was found
    """
    validate_raster(src, "src")
    params = params or BorderRemovalParameters()
    handler = _ALGORITHMS.get(params.algorithm)
    if handler is None:
        raise UnsupportedConfigurationError(
            "borderRemovalAlgorithm", params.algorithm, [a.value for a in BorderRemovalAlgorithm]
        )
    return handler(src, params, token)
