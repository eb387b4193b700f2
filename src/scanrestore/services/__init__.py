"""
ScanRestore - Services Package

Restoration algorithms, the image processor that dispatches commands to
them, and the batch runner.
"""

from scanrestore.services.batch import BatchReport, BatchRunner
from scanrestore.services.config import ProcessorCommand, parse_parameters
from scanrestore.services.processor import ImageProcessor

__all__ = ["BatchReport", "BatchRunner", "ImageProcessor", "ProcessorCommand", "parse_parameters"]
