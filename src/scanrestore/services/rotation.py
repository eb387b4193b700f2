"""Rotation with canvas growth.

The source is pasted in the middle of a canvas large enough to hold it at
any angle, then rotated about the canvas centre so no corner is clipped.
The oversized canvas can be kept, cut back to the original size around the
content, or cropped to the content bounding box.
"""

import logging
import math

import cv2
import numpy as np

from scanrestore.constants import WHITE
from scanrestore.services.config import RotationCropMode
from scanrestore.utils.cancellation import CancellationToken, ensure_token
from scanrestore.utils.raster import (
    channel_count,
    content_bounding_box,
    sample_corner_background,
    to_gray,
    validate_raster,
)

logger = logging.getLogger(__name__)

Color = tuple[float, float, float]


def rotated_canvas_size(width: int, height: int, angle: float) -> tuple[int, int]:
    """Size ``(W', H')`` of the canvas that holds a W×H image rotated by ``angle``."""
    rad = math.radians(angle)
    cos_a = abs(math.cos(rad))
    sin_a = abs(math.sin(rad))
    new_w = int(round(width * cos_a + height * sin_a))
    new_h = int(round(width * sin_a + height * cos_a))
    return max(1, new_w), max(1, new_h)


def _border_value(img: np.ndarray, color: Color) -> float | tuple:
    channels = channel_count(img)
    if channels == 1:
        b, g, r = color
        return float(0.114 * b + 0.587 * g + 0.299 * r)
    if channels == 4:
        return (*color, float(WHITE))
    return color


def paste_centered(src: np.ndarray, width: int, height: int, color: Color) -> np.ndarray:
    """Copy ``src`` into the middle of a new ``width``×``height`` canvas."""
    h, w = src.shape[:2]
    fill = _border_value(src, color)
    canvas = np.empty((height, width) + src.shape[2:], dtype=src.dtype)
    canvas[...] = fill
    x0 = (width - w) // 2
    y0 = (height - h) // 2
    canvas[y0 : y0 + h, x0 : x0 + w] = src
    return canvas


def crop_or_pad_to_original(
    big: np.ndarray,
    width: int,
    height: int,
    center: tuple[float, float] | None = None,
) -> np.ndarray:
    """Cut a ``width``×``height`` window out of ``big`` around ``center``.

    The window is clamped inside ``big``. When ``big`` is smaller than the
    target in a dimension, the result is padded with white.
    """
    big_h, big_w = big.shape[:2]
    if center is None:
        center = (big_w / 2.0, big_h / 2.0)

    x = int(round(center[0] - width / 2.0))
    y = int(round(center[1] - height / 2.0))
    x = max(0, min(x, big_w - width))
    y = max(0, min(y, big_h - height))

    crop = big[y : y + height, x : x + width]
    if crop.shape[0] == height and crop.shape[1] == width:
        return crop.copy()

    padded = np.full((height, width) + big.shape[2:], WHITE, dtype=big.dtype)
    ch, cw = crop.shape[:2]
    oy = (height - ch) // 2
    ox = (width - cw) // 2
    padded[oy : oy + ch, ox : ox + cw] = crop
    return padded


def content_mask(img: np.ndarray, background: Color) -> np.ndarray:
    """Otsu mask of everything that differs from the background side."""
    gray = to_gray(img)
    bg_level = sum(background) / 3.0
    mode = cv2.THRESH_BINARY if bg_level < 128 else cv2.THRESH_BINARY_INV
    _, mask = cv2.threshold(gray, 0, WHITE, mode | cv2.THRESH_OTSU)
    return mask


def rotate_with_canvas(
    src: np.ndarray,
    angle: float,
    background: Color | None = None,
    crop_mode: RotationCropMode = RotationCropMode.KEEP_CANVAS,
    token: CancellationToken | None = None,
) -> np.ndarray:
    """Rotate an image counter-clockwise by ``angle`` degrees without clipping.

    Args:
        src: 1/3/4-channel uint8 image
        angle: Rotation in degrees (OpenCV convention, positive = CCW)
        background: BGR fill for the exposed canvas; sampled from the paper
            corners when None
        crop_mode: What to do with the grown canvas
        token: Optional cancellation token

    Returns:
        The rotated image (a copy when the angle is zero)
    """
    validate_raster(src, "src")
    token = ensure_token(token)
    if angle == 0 or math.isnan(angle):
        return src.copy()

    if background is None:
        background = sample_corner_background(src)

    h, w = src.shape[:2]
    big_w, big_h = rotated_canvas_size(w, h, angle)
    big_w, big_h = max(big_w, w), max(big_h, h)
    canvas = paste_centered(src, big_w, big_h, background)
    token.raise_if_cancelled("rotation")

    matrix = cv2.getRotationMatrix2D((big_w / 2.0, big_h / 2.0), angle, 1.0)
    rotated = cv2.warpAffine(
        canvas,
        matrix,
        (big_w, big_h),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=_border_value(src, background),
    )
    token.raise_if_cancelled("rotation")

    if crop_mode == RotationCropMode.KEEP_CANVAS:
        return rotated

    bbox = content_bounding_box(content_mask(rotated, background))
    if bbox is None:
        logger.debug("No content found after rotation, keeping full canvas")
        if crop_mode == RotationCropMode.ORIGINAL_SIZE:
            return crop_or_pad_to_original(rotated, w, h)
        return rotated

    x, y, bw, bh = bbox
    if crop_mode == RotationCropMode.CONTENT:
        return rotated[y : y + bh, x : x + bw].copy()
    return crop_or_pad_to_original(rotated, w, h, (x + bw / 2.0, y + bh / 2.0))
