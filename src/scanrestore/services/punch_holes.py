"""Punch-hole detection and inpainting.

Holes are only searched in bands along the image edges. Circles come from
the Hough gradient transform, rectangles from adaptive-threshold
contours. Size tolerance is one-sided: a hole is never smaller than its
nominal size, only up to ``size_tolerance`` larger. Every candidate must
differ from the paper around it in the direction given by its density.
"""

import logging
import math
from dataclasses import replace

import cv2
import numpy as np

from scanrestore.constants import WHITE
from scanrestore.services.config import EdgeOffsets, PunchShape, PunchSpec
from scanrestore.utils.cancellation import CancellationToken, ensure_token
from scanrestore.utils.raster import to_bgr, to_gray, validate_raster

logger = logging.getLogger(__name__)

# ── Detection ────────────────────────────────────────────────────
_BLUR_KSIZE = (9, 9)
_BLUR_SIGMA = 2
_HOUGH_PARAM1 = 300  # Canny high threshold for HOUGH_GRADIENT_ALT
_MIN_CENTER_DIST = 10
_CONTRAST_MARGIN = 8.0  # gray levels between hole and surrounding paper
_ANNULUS_INNER = 3  # px beyond the radius
_ANNULUS_OUTER = 6
_RIM_RING = (0.75, 0.95)  # fraction of the radius
_RIM_MIN_SHARE = 0.5  # rim contrast / core contrast
_RECT_ADAPTIVE_BLOCK = 11
_RECT_ADAPTIVE_C = 2
_RECT_MIN_AREA = 10
_RECT_RING_PX = 4

# ── Repair ───────────────────────────────────────────────────────
_CIRCLE_DRAW_SCALE = 1.1
_FEATHER_KSIZE = (15, 15)
_FEATHER_THRESHOLD = 10
_DEFAULT_DIAMETER = 10


def build_search_mask(shape: tuple[int, int], offsets: EdgeOffsets) -> np.ndarray:
    """0/255 mask of the edge bands holes are searched in."""
    h, w = shape
    mask = np.zeros((h, w), dtype=np.uint8)
    inner_w = w - offsets.left - offsets.right
    inner_h = h - offsets.top - offsets.bottom
    if offsets.top > 0 and inner_w > 0:
        mask[: min(offsets.top, h), offsets.left : offsets.left + inner_w] = WHITE
    if offsets.bottom > 0 and inner_w > 0:
        mask[max(0, h - offsets.bottom) :, offsets.left : offsets.left + inner_w] = WHITE
    if offsets.left > 0 and inner_h > 0:
        mask[offsets.top : offsets.top + inner_h, : min(offsets.left, w)] = WHITE
    if offsets.right > 0 and inner_h > 0:
        mask[offsets.top : offsets.top + inner_h, max(0, w - offsets.right) :] = WHITE
    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (3, 3))
    return cv2.dilate(mask, kernel)


def _density_ok(contrast: float, density: float) -> bool:
    """Dark holes (density >= 0.5) must be darker than the paper."""
    if density >= 0.5:
        return contrast > _CONTRAST_MARGIN
    return abs(contrast) > _CONTRAST_MARGIN


def _masked_mean(gray: np.ndarray, mask: np.ndarray) -> float:
    return float(cv2.mean(gray, mask=mask)[0])


def _disc(shape: tuple[int, int], center: tuple[int, int], radius: float) -> np.ndarray:
    mask = np.zeros(shape, dtype=np.uint8)
    cv2.circle(mask, center, max(0, int(round(radius))), WHITE, -1)
    return mask


def _ring(shape: tuple[int, int], center: tuple[int, int], r0: float, r1: float) -> np.ndarray:
    outer = _disc(shape, center, r1)
    return cv2.subtract(outer, _disc(shape, center, r0))


def _accept_circle(gray: np.ndarray, center: tuple[int, int], radius: int, density: float) -> bool:
    """Contrast test plus a rim test that rejects smaller holes.

    A hole smaller than the detected radius leaves paper between its edge
    and the circle, so the rim ring is much brighter than the core.
    """
    shape = gray.shape[:2]
    annulus = _ring(shape, center, radius + _ANNULUS_INNER, radius + _ANNULUS_OUTER)
    background = _masked_mean(gray, annulus)
    contrast = background - _masked_mean(gray, _disc(shape, center, radius))
    if not _density_ok(contrast, density):
        return False

    core = background - _masked_mean(gray, _disc(shape, center, radius * 0.5))
    rim = background - _masked_mean(
        gray, _ring(shape, center, radius * _RIM_RING[0], radius * _RIM_RING[1])
    )
    if core == 0:
        return False
    return rim / core >= _RIM_MIN_SHARE


def detect_circles(
    gray: np.ndarray,
    search_mask: np.ndarray,
    spec: PunchSpec,
    roundness: float,
    token: CancellationToken | None = None,
) -> list[tuple[int, int, int]]:
    """Accepted circular holes as ``(cx, cy, r)``."""
    token = ensure_token(token)
    masked = cv2.bitwise_and(gray, gray, mask=search_mask)
    if not np.any(masked):
        return []

    radius = int(spec.diameter / 2.0)
    min_r = max(1, radius)
    max_r = max(min_r, int(math.ceil(radius * (1.0 + spec.size_tolerance))))
    try:
        circles = cv2.HoughCircles(
            masked,
            cv2.HOUGH_GRADIENT_ALT,
            dp=1,
            minDist=max(_MIN_CENTER_DIST, radius * 2.0),
            param1=_HOUGH_PARAM1,
            param2=roundness,
            minRadius=min_r,
            maxRadius=max_r,
        )
    except cv2.error as e:
        logger.warning(f"Hough circle search failed: {e}")
        return []
    if circles is None:
        return []

    accepted = []
    for cx, cy, r in circles.reshape(-1, 3):
        token.raise_if_cancelled("punch hole detection")
        center = (int(cx), int(cy))
        r_found = int(round(r))
        if not (0 <= center[1] < gray.shape[0] and 0 <= center[0] < gray.shape[1]):
            continue
        if search_mask[center[1], center[0]] == 0:
            continue
        if r_found < min_r:
            continue
        if _accept_circle(gray, center, r_found, spec.density):
            accepted.append((center[0], center[1], r_found))
    return accepted


def detect_rects(
    gray: np.ndarray,
    search_mask: np.ndarray,
    spec: PunchSpec,
    fill_ratio: float,
    token: CancellationToken | None = None,
) -> list[tuple[int, int, int, int]]:
    """Accepted rectangular holes as ``(x, y, w, h)``."""
    token = ensure_token(token)
    h, w = gray.shape[:2]
    masked = cv2.bitwise_and(gray, gray, mask=search_mask)
    binary = cv2.adaptiveThreshold(
        masked,
        WHITE,
        cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
        cv2.THRESH_BINARY_INV,
        _RECT_ADAPTIVE_BLOCK,
        _RECT_ADAPTIVE_C,
    )
    contours, _ = cv2.findContours(binary, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

    max_w = spec.width * (1.0 + spec.size_tolerance)
    max_h = spec.height * (1.0 + spec.size_tolerance)
    accepted = []
    for contour in contours:
        token.raise_if_cancelled("punch hole detection")
        area = cv2.contourArea(contour)
        if area < _RECT_MIN_AREA:
            continue
        x, y, bw, bh = cv2.boundingRect(contour)
        if bw < spec.width or bh < spec.height or bw > max_w or bh > max_h:
            continue
        if area / float(bw * bh) < fill_ratio:
            continue
        cx, cy = x + bw // 2, y + bh // 2
        if search_mask[cy, cx] == 0:
            continue

        inner = np.zeros((h, w), dtype=np.uint8)
        cv2.rectangle(inner, (x, y), (x + bw - 1, y + bh - 1), WHITE, -1)
        bx, by = max(0, x - _RECT_RING_PX), max(0, y - _RECT_RING_PX)
        ex, ey = min(w, x + bw + _RECT_RING_PX), min(h, y + bh + _RECT_RING_PX)
        ring = np.zeros((h, w), dtype=np.uint8)
        ring[by:ey, bx:ex] = WHITE
        ring[inner > 0] = 0
        contrast = _masked_mean(gray, ring) - _masked_mean(gray, inner)
        if _density_ok(contrast, spec.density):
            accepted.append((x, y, bw, bh))
    return accepted


def expand_specs(specs: list[PunchSpec]) -> list[PunchSpec]:
    """Split every BOTH spec into a circle and a rectangle spec."""
    expanded = []
    for spec in specs:
        if spec.shape == PunchShape.BOTH:
            expanded.append(replace(spec, shape=PunchShape.CIRCLE))
            expanded.append(replace(spec, shape=PunchShape.RECT))
        else:
            expanded.append(spec)
    return expanded


def remove_punch_holes(
    src: np.ndarray,
    specs: list[PunchSpec],
    roundness: float = 0.9,
    fill_ratio: float = 0.9,
    offsets: EdgeOffsets | None = None,
    token: CancellationToken | None = None,
) -> np.ndarray:
    """Detect punch holes near the edges and inpaint them.

    Args:
        src: 1/3/4-channel uint8 image
        specs: Hole geometries to search for; a BOTH spec searches
            circles and rectangles
        roundness: HOUGH_GRADIENT_ALT circle perfectness (0..1)
        fill_ratio: Minimum contour area / bbox area for rectangles
        offsets: Edge band widths
        token: Optional cancellation token

    Returns:
        BGR image of the same size; a copy when nothing was found
    """
    token = ensure_token(token)
    token.raise_if_cancelled("punch hole removal")
    validate_raster(src, "src")
    offsets = offsets or EdgeOffsets()

    color = to_bgr(src)
    specs = expand_specs(specs)
    if not specs:
        return color

    gray = cv2.GaussianBlur(to_gray(src), _BLUR_KSIZE, _BLUR_SIGMA)
    search_mask = build_search_mask(gray.shape[:2], offsets)
    if not np.any(search_mask):
        logger.debug("Punch holes: empty search mask")
        return color

    holes = np.zeros(gray.shape[:2], dtype=np.uint8)
    found = 0
    for spec in specs:
        token.raise_if_cancelled("punch hole removal")
        if spec.shape == PunchShape.CIRCLE:
            for cx, cy, r in detect_circles(gray, search_mask, spec, roundness, token):
                cv2.circle(holes, (cx, cy), int(r * _CIRCLE_DRAW_SCALE), WHITE, -1)
                found += 1
        elif spec.shape == PunchShape.RECT:
            for x, y, bw, bh in detect_rects(gray, search_mask, spec, fill_ratio, token):
                cv2.rectangle(holes, (x, y), (x + bw - 1, y + bh - 1), WHITE, -1)
                found += 1

    if found == 0:
        logger.debug("Punch holes: no candidates accepted")
        return color

    feathered = cv2.GaussianBlur(holes, _FEATHER_KSIZE, 0)
    _, feathered = cv2.threshold(feathered, _FEATHER_THRESHOLD, WHITE, cv2.THRESH_BINARY)

    diameters = [s.diameter for s in specs if s.shape == PunchShape.CIRCLE] or [_DEFAULT_DIAMETER]
    inpaint_radius = max(3, int(sum(diameters) / len(diameters) / 2.0))
    logger.info(f"Punch holes: inpainting {found} hole(s), radius {inpaint_radius}")
    return cv2.inpaint(color, feathered, inpaint_radius, cv2.INPAINT_NS)
