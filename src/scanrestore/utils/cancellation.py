"""
Cooperative cancellation for long-running restoration steps.

A CancellationToken wraps a threading.Event. The caller keeps the token
and calls cancel() from any thread; algorithms poll raise_if_cancelled()
once per scan-line, component, candidate or sweep angle.
"""

import threading

from scanrestore.utils.exceptions import OperationCancelledError


class CancellationToken:
    """Thread-safe cancellation flag shared between a caller and a worker."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str | None = None) -> None:
        """Raise OperationCancelledError if cancellation was requested.

        Args:
            stage: Name of the polling stage, reported in the error
        """
        if self._event.is_set():
            raise OperationCancelledError(stage)


class _NeverCancelled(CancellationToken):
    """Token that ignores cancel(); used when the caller supplies none."""

    def cancel(self) -> None:
        pass


NEVER_CANCELLED = _NeverCancelled()


def ensure_token(token: CancellationToken | None) -> CancellationToken:
    """Return the given token, or the shared never-cancelled token."""
    return token if token is not None else NEVER_CANCELLED
