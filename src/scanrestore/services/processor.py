"""
ScanRestore - Image Processor Module

This module holds one working page and applies restoration commands to it.
Commands are given by name (or ProcessorCommand) together with either their
typed parameters or the flat string-keyed parameter map, which is parsed
once here before any algorithm runs.
"""

import threading
from typing import Any

import numpy as np

from scanrestore.services.binarizer import binarize
from scanrestore.services.borders import remove_borders
from scanrestore.services.config import (
    BinarizeParameters,
    BinarizeRequest,
    ProcessorCommand,
    TiffCompression,
    parse_command,
    parse_parameters,
)
from scanrestore.services.deskew import deskew
from scanrestore.services.despeckle import despeckle
from scanrestore.services.gutter_splitter import SplitResult, split_pages
from scanrestore.services.illumination import enhance
from scanrestore.services.image_io import encode_image, load_image
from scanrestore.services.lines_remover import remove_lines
from scanrestore.services.punch_holes import remove_punch_holes
from scanrestore.utils.cancellation import CancellationToken, ensure_token
from scanrestore.utils.exceptions import InvalidInputError
from scanrestore.utils.logger import logger
from scanrestore.utils.raster import is_empty, validate_raster


def resolve_parameters(command: ProcessorCommand, params: Any) -> Any:
    """Turn ``params`` into the typed parameters of ``command``.

    Args:
        command: Command the parameters belong to
        params: None (defaults), a flat string-keyed map, or typed parameters

    Returns:
        Typed parameters; a BinarizeRequest for the binarize command
    """
    if params is None or isinstance(params, dict):
        return parse_parameters(command, params)
    if command == ProcessorCommand.BINARIZE and isinstance(params, BinarizeParameters):
        return BinarizeRequest(params=params)
    return params


def run_command(
    src: np.ndarray,
    command: ProcessorCommand | str,
    params: Any = None,
    token: CancellationToken | None = None,
) -> np.ndarray | SplitResult:
    """Apply one command to an image without touching any state.

    Args:
        src: 1/3/4-channel uint8 image
        command: Command name, alias or ProcessorCommand
        params: Typed parameters, a flat parameter map, or None
        token: Optional cancellation token

    Returns:
        The processed image, or a SplitResult for SPLIT_PAGES
    """
    command = parse_command(command)
    params = resolve_parameters(command, params)
    token = ensure_token(token)

    if command == ProcessorCommand.DESKEW:
        return deskew(src, params, token)
    if command == ProcessorCommand.BINARIZE:
        return binarize(src, params=params.params, pre_params=params.pre, token=token)
    if command == ProcessorCommand.BORDER_REMOVE:
        return remove_borders(src, params, token)
    if command == ProcessorCommand.DESPECKLE:
        return despeckle(src, params, token)
    if command == ProcessorCommand.PUNCH_HOLE_REMOVE:
        return remove_punch_holes(
            src,
            params.specs(),
            roundness=params.roundness,
            fill_ratio=params.fill_ratio,
            offsets=params.offsets(),
            token=token,
        )
    if command == ProcessorCommand.LINES_REMOVE:
        return remove_lines(src, params, token)
    if command == ProcessorCommand.ENHANCE:
        return enhance(src, params, token)
    return split_pages(src, params, token)


class ImageProcessor:
    """Working page plus the commands that restore it.

    One instance processes one page at a time: a lock serializes commands,
    and a failed or cancelled command leaves the working image unchanged.
    """

    def __init__(self, token: CancellationToken | None = None) -> None:
        self.token = token or CancellationToken()
        self.source_path: str | None = None
        self.split_results: SplitResult | None = None
        self._image: np.ndarray | None = None
        self._lock = threading.Lock()

    @property
    def image(self) -> np.ndarray | None:
        """Current working image (None before load)."""
        return self._image

    def load(self, path: str) -> np.ndarray:
        """Load a file as the working image.

        Raises:
            ImageIOError: If the file cannot be read
        """
        img = load_image(path)
        with self._lock:
            self._image = img
            self.source_path = path
            self.split_results = None
        logger.info(f"Loaded {path} ({img.shape[1]}x{img.shape[0]})")
        return img

    def set_image(self, img: np.ndarray) -> None:
        validate_raster(img, "img")
        with self._lock:
            self._image = img.copy()
            self.split_results = None

    def cancel(self) -> None:
        """Ask the running command to stop at its next poll."""
        self.token.cancel()

    def process_single(self, src: np.ndarray, command: ProcessorCommand | str, params: Any = None):
        """Run a command on ``src`` with this processor's token; state is untouched."""
        return run_command(src, command, params, self.token)

    def apply_command(self, command: ProcessorCommand | str, params: Any = None) -> np.ndarray:
        """Apply a command to the working image.

        SPLIT_PAGES keeps the working image and stores its outcome in
        ``split_results``.

        Returns:
            The new working image

        Raises:
            InvalidInputError: If no image is loaded
            OperationCancelledError: If the token was cancelled
        """
        command = parse_command(command)
        with self._lock:
            if is_empty(self._image):
                raise InvalidInputError("image", None, "no image loaded")
            result = run_command(self._image, command, params, self.token)
            if isinstance(result, SplitResult):
                self.split_results = result
                logger.debug(f"{command.value}: success={result.success}")
                return self._image
            self._image = result
        logger.debug(f"{command.value} applied")
        return result

    def get_output(
        self,
        compression: TiffCompression | str = TiffCompression.LZW,
        fmt: str = "TIFF",
    ) -> bytes:
        """Encode the working image.

        Raises:
            InvalidInputError: If no image is loaded, or CCITT compression
                is requested for a non-bitonal image
        """
        with self._lock:
            if is_empty(self._image):
                raise InvalidInputError("image", None, "no image loaded")
            return encode_image(self._image, fmt, compression)
