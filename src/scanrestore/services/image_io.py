"""Image file loading and encoding.

Pillow decodes and encodes files; the restoration core only ever sees
numpy BGR / gray arrays. TIFF output supports the usual scanner
compressions, CCITT ones only for bitonal pages.
"""

import io
import logging
import os

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from scanrestore.services.config import TiffCompression, parse_enum
from scanrestore.utils.exceptions import ImageIOError, InvalidInputError
from scanrestore.utils.raster import channel_count, is_binary_mask, to_gray, validate_raster

logger = logging.getLogger(__name__)

_PIL_COMPRESSION = {
    TiffCompression.NONE: "raw",
    TiffCompression.CCITT_G3: "group3",
    TiffCompression.CCITT_G4: "group4",
    TiffCompression.LZW: "tiff_lzw",
    TiffCompression.DEFLATE: "tiff_adobe_deflate",
    TiffCompression.JPEG: "jpeg",
    TiffCompression.PACKBITS: "packbits",
}
_BITONAL_ONLY = (TiffCompression.CCITT_G3, TiffCompression.CCITT_G4)


def load_image(path: str) -> np.ndarray:
    """Decode an image file into a uint8 BGR (or gray) array.

    EXIF orientation is applied. Palette, CMYK and 16-bit images are
    converted to RGB first; alpha is kept as BGRA.

    Raises:
        ImageIOError: If the file is missing or cannot be decoded
    """
    if not os.path.isfile(path):
        raise ImageIOError(path, "file not found")
    try:
        with Image.open(path) as img:
            img = ImageOps.exif_transpose(img)
            if img.mode in ("1", "L"):
                return np.array(img.convert("L"), dtype=np.uint8)
            if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
                rgba = np.array(img.convert("RGBA"), dtype=np.uint8)
                return np.ascontiguousarray(rgba[:, :, [2, 1, 0, 3]])
            rgb = np.array(img.convert("RGB"), dtype=np.uint8)
    except (OSError, UnidentifiedImageError) as e:
        raise ImageIOError(path, str(e)) from e
    return np.ascontiguousarray(rgb[:, :, ::-1])


def to_pil(img: np.ndarray) -> Image.Image:
    """Wrap a BGR / BGRA / gray array in a Pillow image (RGB / RGBA / L)."""
    validate_raster(img, "img")
    channels = channel_count(img)
    if channels == 1:
        return Image.fromarray(img, mode="L")
    if channels == 4:
        return Image.fromarray(np.ascontiguousarray(img[:, :, [2, 1, 0, 3]]), mode="RGBA")
    return Image.fromarray(np.ascontiguousarray(img[:, :, ::-1]), mode="RGB")


def _prepare_tiff(img: np.ndarray, compression: TiffCompression) -> Image.Image:
    if compression in _BITONAL_ONLY:
        gray = to_gray(img)
        if not is_binary_mask(gray):
            raise InvalidInputError(
                "compression", compression.value, "CCITT compression requires a bitonal image"
            )
        return Image.fromarray(gray, mode="L").convert("1", dither=Image.Dither.NONE)
    pil = to_pil(img)
    if compression == TiffCompression.JPEG and pil.mode == "RGBA":
        pil = pil.convert("RGB")
    return pil


def encode_image(
    img: np.ndarray,
    fmt: str = "TIFF",
    compression: TiffCompression | str = TiffCompression.LZW,
) -> bytes:
    """Encode an array to PNG or TIFF bytes.

    Args:
        img: uint8 image
        fmt: "PNG" or "TIFF"
        compression: TIFF compression (ignored for PNG)

    Returns:
        Encoded file content
    """
    buffer = io.BytesIO()
    if fmt.upper() == "PNG":
        to_pil(img).save(buffer, format="PNG")
    else:
        compression = parse_enum(TiffCompression, compression, "compression")
        pil = _prepare_tiff(img, compression)
        pil.save(buffer, format="TIFF", compression=_PIL_COMPRESSION[compression])
    return buffer.getvalue()


def save_image(
    img: np.ndarray,
    path: str,
    compression: TiffCompression | str = TiffCompression.LZW,
) -> None:
    """Write an image; the format follows the file extension.

    Raises:
        ImageIOError: If the file cannot be written
        InvalidInputError: For CCITT compression of a non-bitonal image
    """
    fmt = "PNG" if path.lower().endswith(".png") else "TIFF"
    data = encode_image(img, fmt, compression)
    try:
        with open(path, "wb") as f:
            f.write(data)
    except OSError as e:
        raise ImageIOError(path, str(e)) from e
    logger.debug(f"Saved {path} ({len(data)} bytes)")
