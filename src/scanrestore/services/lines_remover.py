"""Scanner stripe removal.

Dirty scanner glass leaves long thin stripes that run along the whole page,
usually close to an edge. Stripes are found on the directional gradient:
a line kernel as long as ``min_length_fraction`` of the page side keeps
only long narrow structures, and only those starting within
``offset_start_px`` of an edge are inpainted. Interior rules and table
lines are left alone.
"""

import logging

import cv2
import numpy as np

from scanrestore.constants import WHITE
from scanrestore.services.config import LineOrientation, LinesRemoveParameters
from scanrestore.utils.cancellation import CancellationToken, ensure_token
from scanrestore.utils.raster import to_bgr, validate_raster

logger = logging.getLogger(__name__)

_PRE_BLUR_KSIZE = (3, 3)
_EDGE_DILATE = (3, 3)
_MIN_LINE_LENGTH_PX = 10
_MIN_CONTOUR_POINTS = 4
_THICKNESS_FACTOR = 3  # stripes up to 3x the nominal width
_THICKNESS_SLACK_PX = 6
_MIN_INPAINT_RADIUS = 3


def _color_mask(bgr: np.ndarray, params: LinesRemoveParameters) -> np.ndarray:
    """0/255 mask of the pixels close to the configured stripe colour."""
    target = np.array(params.line_color_bgr(), dtype=np.int32)
    low = np.clip(target - params.color_tolerance, 0, 255).astype(np.uint8)
    high = np.clip(target + params.color_tolerance, 0, 255).astype(np.uint8)
    mask = cv2.inRange(bgr, low, high)
    # Sobel responds beside the stripe, so widen the colour match
    k = params.line_width_px + 2
    return cv2.dilate(mask, cv2.getStructuringElement(cv2.MORPH_RECT, (k, k)))


def _stripe_mask(
    gray: np.ndarray,
    direction: LineOrientation,
    params: LinesRemoveParameters,
    color_mask: np.ndarray | None,
) -> np.ndarray:
    """0/255 mask of the edge stripes running in ``direction``."""
    rows, cols = gray.shape[:2]
    horizontal = direction == LineOrientation.HORIZONTAL
    width = params.line_width_px

    # horizontal stripes show up in the vertical gradient and vice versa
    dx, dy = (0, 1) if horizontal else (1, 0)
    grad = cv2.Sobel(gray, cv2.CV_16S, dx, dy, ksize=3)
    grad = cv2.convertScaleAbs(grad)
    _, edges = cv2.threshold(grad, 0, WHITE, cv2.THRESH_BINARY | cv2.THRESH_OTSU)
    edges = cv2.dilate(edges, cv2.getStructuringElement(cv2.MORPH_RECT, _EDGE_DILATE))
    if color_mask is not None:
        edges = cv2.bitwise_and(edges, color_mask)

    side = cols if horizontal else rows
    min_len = max(_MIN_LINE_LENGTH_PX, int(round(params.min_length_fraction * side)))
    ksize = (min_len, width) if horizontal else (width, min_len)
    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, ksize)
    lines = cv2.morphologyEx(edges, cv2.MORPH_OPEN, kernel)
    lines = cv2.morphologyEx(lines, cv2.MORPH_CLOSE, kernel)

    contours, _ = cv2.findContours(lines, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    max_thickness = max(width * _THICKNESS_FACTOR, width + _THICKNESS_SLACK_PX)
    edge_tol = max(width * 2, params.offset_start_px + width)
    radius = max(1, width // 2)
    grow = cv2.getStructuringElement(cv2.MORPH_RECT, (2 * radius + 1, 2 * radius + 1))

    mask = np.zeros((rows, cols), dtype=np.uint8)
    for contour in contours:
        if len(contour) < _MIN_CONTOUR_POINTS:
            continue
        x, y, bw, bh = cv2.boundingRect(contour)
        length, thickness = (bw, bh) if horizontal else (bh, bw)
        if length < min_len or thickness > max_thickness:
            continue
        if horizontal:
            near_edge = y <= edge_tol or rows - (y + bh) <= edge_tol
        else:
            near_edge = x <= edge_tol or cols - (x + bw) <= edge_tol
        if not near_edge:
            continue
        stripe = np.zeros_like(mask)
        cv2.drawContours(stripe, [contour], -1, WHITE, -1)
        mask = cv2.bitwise_or(mask, cv2.dilate(stripe, grow))
    return mask


def remove_lines(
    src: np.ndarray,
    params: LinesRemoveParameters | None = None,
    token: CancellationToken | None = None,
) -> np.ndarray:
    """Find long stripes near the page edges and inpaint them.

    Args:
        src: 1/3/4-channel uint8 image
        params: Stripe geometry and search options (defaults when None)
        token: Optional cancellation token

    Returns:
        BGR image of the same size; a copy when no stripe was found
    """
    token = ensure_token(token)
    validate_raster(src, "src")
    params = params or LinesRemoveParameters()

    bgr = to_bgr(src)
    gray = cv2.GaussianBlur(cv2.cvtColor(bgr, cv2.COLOR_BGR2GRAY), _PRE_BLUR_KSIZE, 0)
    color_mask = _color_mask(bgr, params) if params.match_color else None

    if params.orientation == LineOrientation.BOTH:
        directions = [LineOrientation.HORIZONTAL, LineOrientation.VERTICAL]
    else:
        directions = [params.orientation]

    mask = np.zeros(gray.shape[:2], dtype=np.uint8)
    for direction in directions:
        token.raise_if_cancelled("line removal")
        mask = cv2.bitwise_or(mask, _stripe_mask(gray, direction, params, color_mask))

    if not np.any(mask):
        logger.debug("Lines: no edge stripes found")
        return bgr

    token.raise_if_cancelled("line removal")
    radius = max(_MIN_INPAINT_RADIUS, params.line_width_px + 2)
    logger.info(
        f"Lines: inpainting {cv2.countNonZero(mask)} px of {params.orientation.value.lower()} stripes"
    )
    return cv2.inpaint(bgr, mask, radius, cv2.INPAINT_TELEA)
