"""
Error taxonomy for the correction session engine.

Every failure the engine reports to its caller is one of these types:
- InsufficientQuota: the credit gate denied a submission
- OracleUnavailable / MalformedResponse: the grading oracle failed
- AlreadyInFlight: a duplicate request for work that is already running
- InvalidIndex / InvalidVariant: an edit addressed something that doesn't exist
- StoreUnavailable: the quota store could not record a consumption
"""


class CorrectorError(Exception):
    """Base class for all engine errors."""


class InsufficientQuota(CorrectorError):
    """Raised when a standard principal has no submissions left."""

    def __init__(self, principal_id: str, remaining: int = 0):
        self.principal_id = principal_id
        self.remaining = remaining
        super().__init__(
            f"Principal '{principal_id}' has no remaining quota ({remaining} left)"
        )


class OracleError(CorrectorError):
    """Raised when a grading oracle call fails."""

    def __init__(self, message: str, cause: Exception | None = None, retryable: bool = False):
        self.cause = cause
        self.retryable = retryable
        super().__init__(message)


class OracleUnavailable(OracleError):
    """The oracle could not be reached or returned an error."""


class MalformedResponse(OracleError):
    """The oracle answered, but the payload could not be used."""

    def __init__(self, message: str, raw_response: str | None = None, cause: Exception | None = None):
        self.raw_response = raw_response
        super().__init__(message, cause=cause, retryable=False)


class AlreadyInFlight(CorrectorError):
    """Raised when the same operation is requested while it is still running."""

    def __init__(self, operation: str, item_index: int | None = None):
        self.operation = operation
        self.item_index = item_index
        target = f" for item {item_index}" if item_index is not None else ""
        super().__init__(f"{operation} already in flight{target}")


class InvalidIndex(CorrectorError):
    """Raised when an edit targets an item index outside the session."""

    def __init__(self, item_index: int, size: int):
        self.item_index = item_index
        self.size = size
        super().__init__(f"Item index {item_index} out of range (session has {size} items)")


class InvalidVariant(CorrectorError):
    """Raised when a field doesn't exist on the targeted item or header."""

    def __init__(self, field: str, kind: str):
        self.field = field
        self.kind = kind
        super().__init__(f"Field '{field}' does not exist on {kind}")


class StoreUnavailable(CorrectorError):
    """Raised when the quota store cannot commit a consumption."""

    def __init__(self, principal_id: str, cause: Exception | None = None):
        self.principal_id = principal_id
        self.cause = cause
        super().__init__(f"Quota store unavailable while committing for '{principal_id}'")


class NoActiveSession(CorrectorError):
    """Raised when a session command arrives before any exam was graded."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Cannot {operation}: no exam has been graded in this session")
