"""
ScanRestore - Custom Exceptions Module

This module defines custom exception classes for specific error cases
in the restoration core and its command-line shell.
"""


class ScanRestoreError(Exception):
    """Base exception for all ScanRestore errors.

    All custom exceptions should inherit from this class to allow
    catching any ScanRestore-specific error.
    """

    def __init__(self, message: str, details: str | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional technical details for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


class InvalidInputError(ScanRestoreError):
    """Raised when an image buffer or parameter is outside its domain."""

    def __init__(
        self,
        field: str,
        value: object | None = None,
        reason: str | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            field: Name of the argument that failed validation
            value: Optional offending value
            reason: Optional reason for the validation failure
        """
        self.field = field
        self.value = value
        self.reason = reason

        msg = f"Invalid input for '{field}'"
        if reason:
            msg += f": {reason}"

        details = None
        if value is not None:
            details = f"value={value!r}"

        super().__init__(msg, details=details)


class NoSignalFoundError(ScanRestoreError):
    """Raised in strict mode when a detector found nothing usable.

    Outside strict mode detectors resolve this case to a no-op and
    return a copy of their input.
    """

    def __init__(self, stage: str, reason: str | None = None) -> None:
        """Initialize the exception.

        Args:
            stage: Name of the processing stage
            reason: Optional description of what was missing
        """
        self.stage = stage
        self.reason = reason

        msg = f"No usable signal found in {stage}"
        if reason:
            msg += f": {reason}"

        super().__init__(msg)


class OperationCancelledError(ScanRestoreError):
    """Raised when cooperative cancellation is observed mid-operation."""

    def __init__(self, stage: str | None = None) -> None:
        """Initialize the exception.

        Args:
            stage: Optional name of the stage that observed cancellation
        """
        self.stage = stage
        msg = "Operation cancelled"
        if stage:
            msg += f" during {stage}"
        super().__init__(msg)


class UnsupportedConfigurationError(ScanRestoreError):
    """Raised when an enumerated setting has no implemented handler."""

    def __init__(
        self,
        setting_name: str,
        value: object,
        supported: list[str] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            setting_name: Name of the setting
            value: The unsupported value
            supported: Optional list of accepted values
        """
        self.setting_name = setting_name
        self.value = value
        self.supported = supported or []

        msg = f"Unsupported value {value!r} for '{setting_name}'"
        details = None
        if supported:
            details = f"supported={', '.join(supported)}"

        super().__init__(msg, details=details)


class ImageIOError(ScanRestoreError):
    """Raised when an image file cannot be decoded or encoded."""

    def __init__(self, path: str, reason: str | None = None) -> None:
        """Initialize the exception.

        Args:
            path: Path of the image file
            reason: Optional reason for the failure
        """
        self.path = path
        self.reason = reason

        msg = f"Image I/O error: {path}"
        if reason:
            msg += f" - {reason}"

        super().__init__(msg, details=f"path={path}")


# Exception hierarchy summary:
# ScanRestoreError (base)
# ├── InvalidInputError
# ├── NoSignalFoundError
# ├── OperationCancelledError
# ├── UnsupportedConfigurationError
# └── ImageIOError
