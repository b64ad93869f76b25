"""Cooperative cancellation for asynchronous synchronization runs."""

import threading

from feedsync.sync.errors import FeedSyncError


class SyncCancelled(FeedSyncError):
    """Raised by collaborators that observe a cancelled token before starting work."""


class CancellationToken:
    """Thread-safe flag checked at every suspension point of a run.

    Cancelling never interrupts an in-flight fetch or store call; the run
    stops at the next checkpoint and returns what it accumulated so far.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise SyncCancelled if cancellation was requested.

        Intended for collaborators (feeds, target stores) whose async methods
        receive the token. The coordinator itself checks ``cancelled``.
        """
        if self._event.is_set():
            raise SyncCancelled("synchronization cancelled")
