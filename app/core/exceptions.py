class CallQueueError(Exception):
    """Base class for all call-queue domain exceptions.

    Every custom exception in this module inherits from here so that a
    single ``except CallQueueError`` clause can catch any domain
    error.
    """

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(detail)


class QueueItemNotFoundError(CallQueueError):
    """Raised when a requested queue item does not exist."""

    def __init__(self, detail: str = "Queue item not found"):
        super().__init__(detail)


class ClientNotFoundError(CallQueueError):
    """Raised when a requested client does not exist."""

    def __init__(self, detail: str = "Client not found"):
        super().__init__(detail)


class DuplicateQueueItemError(CallQueueError):
    """Raised when a lead already has an active queue item for a client.

    Active means ``pending``, ``scheduled`` or ``in_progress``; the
    lead may be queued again once the earlier item is terminal.
    """

    def __init__(self, detail: str = "Lead already has an active queue item"):
        super().__init__(detail)


class InvalidQueueDataError(CallQueueError):
    """Raised when queue item data is invalid."""

    def __init__(self, detail: str = "Invalid queue item data"):
        super().__init__(detail)


class InvalidStatusTransitionError(CallQueueError):
    """Raised when an invalid queue status transition is attempted."""

    def __init__(self, detail: str = "Invalid status transition"):
        super().__init__(detail)


class CallProviderError(CallQueueError):
    """Raised when the voice-call provider rejects or fails a request.

    ``status_code`` carries the provider's HTTP status when there was
    one (``None`` for timeouts and connection errors).
    """

    def __init__(
        self,
        detail: str = "Voice-call provider error",
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(detail)


class ProviderConfigurationError(CallQueueError):
    """Raised when a client has no usable Retell configuration."""

    def __init__(self, detail: str = "Client Retell configuration is incomplete"):
        super().__init__(detail)


class RecordStoreError(CallQueueError):
    """Raised when the backing record store cannot complete a request."""

    def __init__(self, detail: str = "Record store unavailable"):
        super().__init__(detail)
