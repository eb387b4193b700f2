"""
ScanRestore - Numeric Constants

Simple numeric constants with ZERO internal imports to avoid circular dependencies.
Algorithm-local tuning values live next to the algorithm that uses them.
"""

from typing import Final

# ============================================================================
# Pixel Values
# ============================================================================

WHITE: Final[int] = 255
BLACK: Final[int] = 0
DEBUG_GRAY: Final[int] = 128

# ============================================================================
# Threshold Estimation
# ============================================================================

DEFAULT_DARK_THRESHOLD: Final[int] = 40
MIN_DARK_THRESHOLD: Final[int] = 1
MAX_DARK_THRESHOLD: Final[int] = 250

# ============================================================================
# Angle Deadbands (degrees)
# ============================================================================

ROTATION_DEADBAND_DEG: Final[float] = 0.005
BORDER_ANGLE_DEADBAND_DEG: Final[float] = 0.02
MAX_SKEW_DEG: Final[float] = 45.0

# ============================================================================
# Resource Management (Batch)
# ============================================================================

RESOURCE_TIER_CONSTRAINED_GB: Final[float] = 2.0
RESOURCE_TIER_MODERATE_GB: Final[float] = 6.0
BASE_PROCESS_OVERHEAD_MB: Final[int] = 150
PER_WORKER_COST_MB: Final[int] = 250

# ============================================================================
# Batch Output
# ============================================================================

PROCESSED_SUBFOLDER: Final[str] = "Processed"
BATCH_ERRORS_FILE: Final[str] = "_batch_errors.txt"
SUPPORTED_IMAGE_EXTENSIONS: Final[tuple[str, ...]] = (
    ".jpg",
    ".jpeg",
    ".png",
    ".bmp",
    ".gif",
    ".tif",
    ".tiff",
)
