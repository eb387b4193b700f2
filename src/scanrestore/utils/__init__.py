"""
ScanRestore - Utils Package

Utility modules for the application.
"""

from scanrestore.utils.buffer_pool import BufferPool
from scanrestore.utils.cancellation import CancellationToken
from scanrestore.utils.exceptions import (
    ImageIOError,
    InvalidInputError,
    NoSignalFoundError,
    OperationCancelledError,
    ScanRestoreError,
    UnsupportedConfigurationError,
)
from scanrestore.utils.logger import logger

__all__ = [
    "BufferPool",
    "CancellationToken",
    "ImageIOError",
    "InvalidInputError",
    "NoSignalFoundError",
    "OperationCancelledError",
    "ScanRestoreError",
    "UnsupportedConfigurationError",
    "logger",
]
