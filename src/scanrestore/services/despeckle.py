"""Despeckle: remove isolated noise blobs while keeping text strokes.

The text size reference is the median component height of the page. Small
or very low components are speck candidates. REMOVE_ALL erases every
candidate; PRESERVE_PUNCTUATION keeps candidates that sit next to real
text, on a text line and square-like (dots, periods) or clustered with
other small marks (colons, diacritics).
"""

import logging

import cv2
import numpy as np

from scanrestore.constants import DEBUG_GRAY, WHITE
from scanrestore.services.components import ComponentRecord, ComponentSet, label_with_grouping
from scanrestore.services.config import DespeckleMethod, DespeckleSettings
from scanrestore.utils.cancellation import CancellationToken, ensure_token
from scanrestore.utils.raster import clamp, is_binary_mask, make_odd, to_gray, validate_raster

logger = logging.getLogger(__name__)

# ── Text size reference ──────────────────────────────────────────
_MIN_REFERENCE_HEIGHT = 3  # shorter components don't vote for the median
_DEFAULT_MEDIAN_HEIGHT = 20
_BIG_HEIGHT_FRACTION = 0.6  # of the median height
_BIG_AREA_FACTOR = 4  # x small-area cutoff

# ── Background normalization ─────────────────────────────────────
_BG_KERNEL_DIVISOR = 30
_BG_KERNEL_MIN = 51

_DILATE_KERNELS = {"1x3": (1, 3), "3x1": (3, 1), "3x3": (3, 3)}


def build_ink_mask(src: np.ndarray, token: CancellationToken | None = None) -> np.ndarray:
    """0/255 mask with ink = 255, whatever the input polarity.

    Bitonal input is used as is. Other input is flattened by dividing by a
    morphological background estimate and thresholded with Otsu.
    """
    token = ensure_token(token)
    gray = to_gray(src)
    if is_binary_mask(gray):
        ink = gray.copy()
    else:
        cols = gray.shape[1]
        k = make_odd(int(clamp(cols // _BG_KERNEL_DIVISOR, _BG_KERNEL_MIN, max(_BG_KERNEL_MIN, cols // 10))))
        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (k, k))
        background = cv2.morphologyEx(gray, cv2.MORPH_CLOSE, kernel)
        token.raise_if_cancelled("despeckle")
        flat = cv2.divide(gray, np.maximum(background, 1), scale=255)
        _, ink = cv2.threshold(flat, 0, WHITE, cv2.THRESH_BINARY | cv2.THRESH_OTSU)

    # ink must be the minority
    if np.count_nonzero(ink) >= ink.size / 2.0:
        ink = cv2.bitwise_not(ink)
    return ink


def _dust_preclean(ink: np.ndarray, settings: DespeckleSettings) -> np.ndarray:
    median_k = make_odd(max(1, settings.dust_median_ksize))
    open_k = make_odd(max(1, settings.dust_open_kernel))
    cleaned = ink.copy()
    if median_k > 1:
        cleaned = cv2.medianBlur(cleaned, median_k)
    if open_k > 1:
        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (open_k, open_k))
        cleaned = cv2.morphologyEx(
            cleaned, cv2.MORPH_OPEN, kernel, iterations=max(1, settings.dust_open_iter)
        )
    return cleaned


def median_component_height(components: ComponentSet) -> int:
    heights = sorted(r.height for r in components if r.height >= _MIN_REFERENCE_HEIGHT)
    if not heights:
        return _DEFAULT_MEDIAN_HEIGHT
    return heights[len(heights) // 2]


def _is_dust_shape(components: ComponentSet, rec: ComponentRecord, settings: DespeckleSettings) -> bool:
    """Elongated or ragged blobs are dust, never punctuation."""
    max_aspect = clamp(settings.dust_max_aspect_ratio, 1.0, 20.0)
    min_solidity = clamp(settings.dust_min_solidity, 0.05, 1.0)
    aspect = rec.width / rec.height if rec.height > 0 else max_aspect
    if aspect < 1.0:
        aspect = 1.0 / aspect
    if aspect >= max_aspect:
        return True

    blob = components.component_mask(rec).astype(np.uint8) * WHITE
    contours, _ = cv2.findContours(blob, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    if not contours:
        return False
    hull = cv2.convexHull(max(contours, key=cv2.contourArea))
    hull_area = max(1.0, cv2.contourArea(hull))
    return rec.area / hull_area <= min_solidity


class _RetentionIndex:
    """Text-line rows, big boxes and small-mark neighbourhoods of one page."""

    def __init__(
        self,
        ink: np.ndarray,
        components: ComponentSet,
        small: list[ComponentRecord],
        median_height: int,
        small_area: int,
        settings: DespeckleSettings,
    ) -> None:
        rows, cols = ink.shape[:2]
        row_ink = np.count_nonzero(ink, axis=1)
        self.text_rows = row_ink > max(10, cols // 40)
        self.row_range = max(1, median_height // 3)
        self.cluster_dx = max(3, int(median_height * 0.6))
        self.radius = max(1.0, settings.proximity_radius_fraction * median_height)
        self.squareness = clamp(settings.squareness_tolerance, 0.0, 1.0)
        self.keep_clusters = settings.keep_clusters

        big = [
            r
            for r in components
            if r.height >= median_height * _BIG_HEIGHT_FRACTION or r.area > small_area * _BIG_AREA_FACTOR
        ]
        if big:
            self.big_boxes = np.array([(r.x, r.y, r.x + r.width, r.y + r.height) for r in big])
        else:
            self.big_boxes = np.empty((0, 4))
        self.small_centers = np.array([_int_center(r) for r in small]).reshape(-1, 2)

    def near_big(self, cx: int, cy: int) -> bool:
        if len(self.big_boxes) == 0:
            return False
        b = self.big_boxes
        dx = np.maximum(np.maximum(b[:, 0] - cx, 0), cx - b[:, 2])
        dy = np.maximum(np.maximum(b[:, 1] - cy, 0), cy - b[:, 3])
        return bool(np.min(dx * dx + dy * dy) < self.radius * self.radius)

    def on_text_line(self, cy: int) -> bool:
        lo = max(0, cy - self.row_range)
        hi = min(len(self.text_rows) - 1, cy + self.row_range)
        return bool(self.text_rows[lo : hi + 1].any())

    def clustered(self, index: int) -> bool:
        if not self.keep_clusters or len(self.small_centers) < 2:
            return False
        cx, cy = self.small_centers[index]
        d = np.abs(self.small_centers - (cx, cy))
        near = (d[:, 0] <= self.cluster_dx) & (d[:, 1] <= self.row_range)
        near[index] = False
        return bool(near.any())

    def square_like(self, rec: ComponentRecord) -> bool:
        return abs(rec.width - rec.height) <= max(1, rec.height * self.squareness)


def _int_center(rec: ComponentRecord) -> tuple[int, int]:
    return rec.x + rec.width // 2, rec.y + rec.height // 2


def select_specks(
    ink: np.ndarray,
    settings: DespeckleSettings,
    token: CancellationToken | None = None,
) -> np.ndarray:
    """0/255 mask of the ink pixels that belong to specks.

    Args:
        ink: Ink mask (ink = 255)
        settings: Despeckle settings
        token: Optional cancellation token, polled per component

    Returns:
        Removal mask, always a subset of ``ink``
    """
    token = ensure_token(token)
    grouping = ink
    if settings.use_dilate_before_cc and settings.dilate_iter > 0:
        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, _DILATE_KERNELS[settings.dilate_kernel])
        grouping = cv2.dilate(ink, kernel, iterations=settings.dilate_iter)
    components = label_with_grouping(ink, grouping)
    if len(components) == 0:
        return np.zeros(ink.shape, dtype=np.uint8)

    median_height = median_component_height(components)
    if settings.small_area_relative:
        small_area = max(1, int(round(settings.small_area_multiplier * median_height * median_height)))
    else:
        small_area = max(1, settings.small_area_absolute_px)
    max_dot_height = max(1, int(round(settings.max_dot_height_fraction * median_height)))

    small = [r for r in components if r.area < small_area or r.height <= max_dot_height]
    index = None
    if settings.method == DespeckleMethod.PRESERVE_PUNCTUATION:
        index = _RetentionIndex(ink, components, small, median_height, small_area, settings)

    remove = []
    for i, rec in enumerate(small):
        token.raise_if_cancelled("despeckle")
        if settings.enable_dust_shape_filter and _is_dust_shape(components, rec, settings):
            remove.append(rec.label)
            continue
        if index is None:
            remove.append(rec.label)
            continue

        cx, cy = _int_center(rec)
        near_big = index.near_big(cx, cy)
        on_line = index.on_text_line(cy)
        keep = near_big or (on_line and (index.square_like(rec) or index.clustered(i)))
        if not keep:
            remove.append(rec.label)

    logger.debug(
        f"Despeckle: components={len(components)}, median height={median_height}, "
        f"small area={small_area}, candidates={len(small)}, removed={len(remove)}"
    )
    return cv2.bitwise_and(components.selection_mask(remove), ink)


def despeckle(
    src: np.ndarray,
    settings: DespeckleSettings | None = None,
    token: CancellationToken | None = None,
) -> np.ndarray:
    """Whiten speck pixels of an image.

    Args:
        src: 1/3/4-channel uint8 image
        settings: Despeckle settings (defaults when None)
        token: Optional cancellation token

    Returns:
        Copy of ``src`` with speck pixels set to white (mid-gray and
        enlarged when ``show_debug`` is on)
    """
    validate_raster(src, "src")
    settings = settings or DespeckleSettings()
    token = ensure_token(token)
    token.raise_if_cancelled("despeckle")

    ink = build_ink_mask(src, token)
    if settings.enable_dust_removal:
        ink = _dust_preclean(ink, settings)
    removal = select_specks(ink, settings, token)

    result = src.copy()
    removed = int(np.count_nonzero(removal))
    if removed == 0:
        logger.debug("Despeckle: nothing to remove")
        return result

    if settings.show_debug:
        kernel = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (3, 3))
        result[cv2.dilate(removal, kernel) > 0] = DEBUG_GRAY
    else:
        result[removal > 0] = WHITE
    logger.info(f"Despeckle: cleared {removed} px")
    return result
