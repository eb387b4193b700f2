"""
Raster buffer helpers shared by every restoration stage.

A raster is a C-contiguous ``uint8`` numpy array shaped ``(H, W)``,
``(H, W, 3)`` (BGR) or ``(H, W, 4)`` (BGRA). Every helper here returns a
new array and leaves its input untouched.
"""

import logging

import cv2
import numpy as np

from scanrestore.constants import (
    DEFAULT_DARK_THRESHOLD,
    MAX_DARK_THRESHOLD,
    MIN_DARK_THRESHOLD,
    WHITE,
)
from scanrestore.utils.exceptions import InvalidInputError

logger = logging.getLogger(__name__)

_SUPPORTED_CHANNELS = (1, 3, 4)

# ── Page fill colour sampling ─────────────────────────────────────
_FILL_GRID_SIZE = 5  # patches per side
_FILL_INNER_MARGIN = 0.10  # fraction trimmed from each edge
_FILL_PATCH_RADIUS = 20  # patch window is (2R+1)²
_FILL_MAX_PATCH_STD = 12.0  # max σ for a flat paper patch
_FILL_MIN_BRIGHTNESS = 0.70  # fraction of 255
_FILL_MIN_MASK_COVERAGE = 0.30  # page-mask share required per patch


def is_empty(img: np.ndarray | None) -> bool:
    """Return True for None or a zero-sized array."""
    return img is None or img.size == 0


def channel_count(img: np.ndarray) -> int:
    """Number of channels of a raster (1 for 2-D arrays)."""
    return 1 if img.ndim == 2 else img.shape[2]


def validate_raster(
    img: np.ndarray | None,
    name: str = "image",
    allow_empty: bool = False,
) -> None:
    """Check that ``img`` is a supported 8-bit raster.

    Args:
        img: Array to check
        name: Argument name reported in the error
        allow_empty: Accept a zero-sized array

    Raises:
        InvalidInputError: For None, wrong dtype, wrong rank or channel
            count, or an empty buffer when not allowed.
    """
    if img is None:
        raise InvalidInputError(name, reason="image is None")
    if not isinstance(img, np.ndarray):
        raise InvalidInputError(name, type(img).__name__, "expected a numpy array")
    if img.size == 0:
        if allow_empty:
            return
        raise InvalidInputError(name, img.shape, "image is empty")
    if img.dtype != np.uint8:
        raise InvalidInputError(name, str(img.dtype), "only 8-bit images are supported")
    if img.ndim not in (2, 3) or channel_count(img) not in _SUPPORTED_CHANNELS:
        raise InvalidInputError(name, img.shape, "expected 1, 3 or 4 channels")


def to_gray(img: np.ndarray) -> np.ndarray:
    """Convert a 1/3/4-channel raster to a new single-channel array."""
    channels = channel_count(img)
    if channels == 1:
        return img.copy()
    if channels == 3:
        return cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
    return cv2.cvtColor(img, cv2.COLOR_BGRA2GRAY)


def to_bgr(img: np.ndarray) -> np.ndarray:
    """Convert a 1/3/4-channel raster to a new BGR array."""
    channels = channel_count(img)
    if channels == 1:
        return cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)
    if channels == 3:
        return img.copy()
    return cv2.cvtColor(img, cv2.COLOR_BGRA2BGR)


def to_bgra(img: np.ndarray) -> np.ndarray:
    """Convert a 1/3/4-channel raster to a new BGRA array."""
    channels = channel_count(img)
    if channels == 1:
        return cv2.cvtColor(img, cv2.COLOR_GRAY2BGRA)
    if channels == 3:
        return cv2.cvtColor(img, cv2.COLOR_BGR2BGRA)
    return img.copy()


def to_lab(img: np.ndarray) -> np.ndarray:
    """Convert a raster to 8-bit Lab (L scaled to 0..255)."""
    return cv2.cvtColor(to_bgr(img), cv2.COLOR_BGR2LAB)


def lab_lightness(img: np.ndarray) -> np.ndarray:
    """Return the Lab L channel as a new single-channel array."""
    return to_lab(img)[:, :, 0].copy()


def expand_to_bgr(mask: np.ndarray) -> np.ndarray:
    """Re-expand a bitonal single-channel result to 3 channels."""
    if mask.ndim == 3:
        return mask.copy()
    return cv2.cvtColor(mask, cv2.COLOR_GRAY2BGR)


def restore_channels(result: np.ndarray, like: np.ndarray) -> np.ndarray:
    """Convert ``result`` back to the channel layout of ``like``."""
    channels = channel_count(like)
    if channels == 1:
        return to_gray(result)
    if channels == 4:
        return to_bgra(result)
    return to_bgr(result)


def is_binary_mask(mask: np.ndarray) -> bool:
    """True when every pixel of the array is 0 or 255."""
    if mask.size == 0:
        return False
    return bool(np.all((mask == 0) | (mask == WHITE)))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def clamp01(value: float) -> float:
    return clamp(value, 0.0, 1.0)


def make_odd(n: int) -> int:
    """Return ``n`` if odd, else ``n + 1``."""
    return n if n % 2 == 1 else n + 1


def content_bounding_box(mask: np.ndarray) -> tuple[int, int, int, int] | None:
    """Bounding box ``(x, y, w, h)`` of the non-zero pixels, or None."""
    rows = np.flatnonzero(mask.any(axis=1))
    if rows.size == 0:
        return None
    cols = np.flatnonzero(mask.any(axis=0))
    y0, y1 = int(rows[0]), int(rows[-1])
    x0, x1 = int(cols[0]), int(cols[-1])
    return x0, y0, x1 - x0 + 1, y1 - y0 + 1


def estimate_black_threshold(
    img: np.ndarray,
    margin_percent: int = 10,
    shift_factor: float = 0.25,
) -> int:
    """Estimate the gray level separating scanner-black from page content.

    Runs Otsu on the central part of the image (outer ``margin_percent``
    ignored so frames do not bias it), takes the mean of the dark and light
    groups and places the threshold between them, moved towards the dark
    side by ``shift_factor``.

    Args:
        img: Source raster
        margin_percent: Percentage cut from each side before analysis
        shift_factor: 0 = midpoint, larger values move towards the dark mean

    Returns:
        Threshold in 1..250, or 40 when one of the groups is empty.
    """
    if is_empty(img):
        return DEFAULT_DARK_THRESHOLD

    if channel_count(img) == 1:
        luma = img
    else:
        luma = cv2.cvtColor(to_bgr(img), cv2.COLOR_BGR2YCrCb)[:, :, 0]

    h, w = luma.shape[:2]
    mx = int(w * margin_percent / 100.0)
    my = int(h * margin_percent / 100.0)
    cw = max(8, w - 2 * mx)
    ch = max(8, h - 2 * my)
    crop = luma[my : my + ch, mx : mx + cw]
    crop = cv2.GaussianBlur(crop, (3, 3), 0)

    otsu_thr, _ = cv2.threshold(crop, 0, 255, cv2.THRESH_BINARY | cv2.THRESH_OTSU)
    dark = crop[crop <= otsu_thr]
    light = crop[crop > otsu_thr]
    if dark.size == 0 or light.size == 0:
        return DEFAULT_DARK_THRESHOLD

    mean_text = float(dark.mean())
    mean_bg = float(light.mean())
    thr = mean_text + (mean_bg - mean_text) * (0.5 - shift_factor)
    thr = clamp(thr, MIN_DARK_THRESHOLD, MAX_DARK_THRESHOLD)
    return int(round(thr))


def sample_corner_background(
    img: np.ndarray,
    dark_threshold: float | None = None,
) -> tuple[float, float, float]:
    """Mean BGR colour of the image corners that look like paper.

    Corners darker than ``dark_threshold`` (scanner bed, frame) are ignored.
    Falls back to white when no corner qualifies.
    """
    bgr = to_bgr(img)
    rows, cols = bgr.shape[:2]
    if dark_threshold is None:
        dark_threshold = estimate_black_threshold(bgr)

    size = int(clamp(min(rows, cols) // 30, 2, 32))
    size = min(size, rows, cols)
    corners = (
        bgr[:size, :size],
        bgr[:size, cols - size :],
        bgr[rows - size :, :size],
        bgr[rows - size :, cols - size :],
    )

    samples = []
    for patch in corners:
        mean = patch.reshape(-1, 3).mean(axis=0)
        if float(mean.mean()) > dark_threshold:
            samples.append(mean)

    if not samples:
        return (float(WHITE), float(WHITE), float(WHITE))
    b, g, r = np.mean(samples, axis=0)
    return (float(b), float(g), float(r))


def estimate_page_fill_color(
    img: np.ndarray,
    page_mask: np.ndarray | None = None,
) -> tuple[float, float, float]:
    """Estimate the paper colour from flat, bright patches on a grid.

    Args:
        img: Source raster
        page_mask: Optional 0/255 mask, 255 where the page is (no borders)

    Returns:
        BGR colour; the masked mean of the central region when no patch
        qualifies, white for degenerate images.
    """
    bgr = to_bgr(img)
    rows, cols = bgr.shape[:2]
    if rows < 2 or cols < 2:
        return (float(WHITE), float(WHITE), float(WHITE))
    if page_mask is None:
        page_mask = np.full((rows, cols), WHITE, dtype=np.uint8)

    margin_x = int(round(cols * _FILL_INNER_MARGIN))
    margin_y = int(round(rows * _FILL_INNER_MARGIN))
    x0, y0 = margin_x, margin_y
    x1, y1 = cols - margin_x - 1, rows - margin_y - 1
    if x1 <= x0 or y1 <= y0:
        x0, y0, x1, y1 = 0, 0, cols - 1, rows - 1
    roi_w = x1 - x0 + 1
    roi_h = y1 - y0 + 1

    good = []
    for gy in range(_FILL_GRID_SIZE):
        for gx in range(_FILL_GRID_SIZE):
            cx = int(round(x0 + (gx + 0.5) * roi_w / _FILL_GRID_SIZE))
            cy = int(round(y0 + (gy + 0.5) * roi_h / _FILL_GRID_SIZE))
            xs = max(cx - _FILL_PATCH_RADIUS, x0)
            ys = max(cy - _FILL_PATCH_RADIUS, y0)
            xe = min(cx + _FILL_PATCH_RADIUS, x1)
            ye = min(cy + _FILL_PATCH_RADIUS, y1)
            if xe - xs < 1 or ye - ys < 1:
                continue

            patch_mask = page_mask[ys : ye + 1, xs : xe + 1]
            if np.count_nonzero(patch_mask) < patch_mask.size * _FILL_MIN_MASK_COVERAGE:
                continue

            mean, std = cv2.meanStdDev(bgr[ys : ye + 1, xs : xe + 1], mask=patch_mask)
            b, g, r = (float(v) for v in mean[:3, 0])
            brightness = 0.114 * b + 0.587 * g + 0.299 * r
            sigma = float(std[:3, 0].mean())
            if brightness < _FILL_MIN_BRIGHTNESS * WHITE or sigma > _FILL_MAX_PATCH_STD:
                continue
            good.append((b, g, r))

    if good:
        b, g, r = np.mean(good, axis=0)
        return (float(b), float(g), float(r))

    inner_mask = page_mask[y0 : y1 + 1, x0 : x1 + 1]
    if not np.any(inner_mask):
        return (float(WHITE), float(WHITE), float(WHITE))
    mean, _ = cv2.meanStdDev(bgr[y0 : y1 + 1, x0 : x1 + 1], mask=inner_mask)
    return tuple(float(v) for v in mean[:3, 0])
