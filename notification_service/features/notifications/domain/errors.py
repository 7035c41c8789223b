"""Exceptions raised by the notification reconciliation feature."""


class NotificationEngineError(Exception):
    """Base exception for notification engine operations."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.recoverable = recoverable


class MalformedEventError(NotificationEngineError):
    """A raw event is missing a required field and cannot be folded."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, recoverable=False)
        self.field = field


class PriorityTableError(NotificationEngineError):
    """Priority table configuration is invalid."""

    def __init__(self, message: str):
        super().__init__(message, recoverable=False)


class ReadStateStoreError(NotificationEngineError):
    """Durable read-state storage failed after all retries."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message, recoverable=recoverable)
        self.operation = operation


class EngineClosedError(NotificationEngineError):
    """The engine was used after it was closed."""

    def __init__(self, message: str = "Notification engine is closed"):
        super().__init__(message, recoverable=False)
