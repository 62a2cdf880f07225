import threading
import time
from typing import Optional

from vsearch_exception_model.exception import OperationCancelledException, TimeoutException


class CancellationToken:
    """
    Cooperative cancellation for long-running scans.

    Code that walks a whole index calls ``check()`` periodically; the call
    raises once ``cancel()`` was invoked from another thread or the optional
    deadline passed.
    """

    def __init__(self, timeout_seconds: Optional[float] = None, operation: Optional[str] = None):
        self._event = threading.Event()
        self._timeout = timeout_seconds
        self._deadline = time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        self.operation = operation

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def check(self) -> None:
        if self._event.is_set():
            raise OperationCancelledException("Operation was cancelled", operation=self.operation)
        if self.expired:
            raise TimeoutException("Operation exceeded its time budget",
                                   operation=self.operation, timeout_seconds=self._timeout)


class _NeverCancelled(CancellationToken):
    def cancel(self) -> None:
        raise RuntimeError("The shared no-op token can't be cancelled")

    def check(self) -> None:
        return None


NEVER_CANCELLED = _NeverCancelled()


def resolve_token(token: Optional[CancellationToken], timeout_seconds: Optional[float] = None,
                  operation: Optional[str] = None) -> CancellationToken:
    """Return ``token`` if given, else a fresh deadline token, else the no-op token."""
    if token is not None:
        return token
    if timeout_seconds is not None:
        return CancellationToken(timeout_seconds, operation)
    return NEVER_CANCELLED
