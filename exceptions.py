# order_sync/exceptions.py

class SyncError(Exception):
    """Base for every fault raised by the sync engine."""


class ConfigurationError(SyncError):
    """A required setting is missing or invalid. Fatal for the component that needs it."""


class OrderDataError(SyncError):
    """The order itself is invalid (e.g. unparseable amount). Skipped, never retried automatically."""
    def __init__(self, message: str, *, order_id: str | None = None):
        super().__init__(message)
        self.order_id = order_id


class RemoteSourceError(SyncError):
    """
    Raised when a call to the remote order source fails at the transport or
    protocol level. Carries the structured response details for the log.
    """
    def __init__(
        self,
        message: str,
        *,
        http_status: int | None = None,
        status_code: int | None = None,
        error_message: str | None = None,
        raw_response_text: str | None = None,
    ):
        super().__init__(message)
        self.http_status = http_status
        self.status_code = status_code
        self.error_message = error_message
        self.raw_response_text = raw_response_text


class SyncCancelled(Exception):
    """Shutdown was requested. Not a failure."""


class IllegalTransition(SyncError):
    def __init__(self, machine: str, current, target):
        super().__init__(f"{machine}: illegal transition {current.name} -> {target.name}")
        self.machine = machine
        self.current = current
        self.target = target
