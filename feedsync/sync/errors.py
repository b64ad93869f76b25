"""Exception hierarchy for synchronization runs."""


class FeedSyncError(Exception):
    """Base class for all errors raised by feedsync."""


class ConfigurationError(FeedSyncError):
    """Raised when configuration or model metadata is invalid or missing."""


class TransportError(FeedSyncError):
    """Raised when a feed fetch or a target store call fails."""

    def __init__(self, operation: str, model: str, message: str):
        self.operation = operation
        self.model = model
        super().__init__(f"{operation} failed for {model}: {message}")
