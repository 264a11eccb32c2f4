"""Cooperative cancellation for long-running stages."""

import threading

__all__ = ["CancellationToken", "is_cancelled"]


class CancellationToken:
    """Thread-safe cancellation flag.

    Stages check it between resampling draws and between curve iterations.
    On cancellation they return their best partial result annotated with
    RunStatus.CANCELLED instead of raising.

    Examples
    --------
    >>> token = CancellationToken()
    >>> worker = threading.Thread(target=pipeline.run, kwargs={"cancel": token})
    >>> worker.start()
    >>> token.cancel()
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __bool__(self) -> bool:
        return self.cancelled


def is_cancelled(token) -> bool:
    """True when `token` is a set CancellationToken; None means never cancelled."""
    return token is not None and token.cancelled
