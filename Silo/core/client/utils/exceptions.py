"""
Exceptions raised by the Silo client core.
"""


class ClientError(Exception):
    """Base exception for client errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


class BackendError(ClientError):
    """A REST or RPC call was rejected or could not be completed."""

    @property
    def status(self):
        return self.details.get("status")

    @property
    def code(self):
        return self.details.get("code")


class AuthenticationError(ClientError):
    """No usable session for a call that needs one."""
    pass


class RealtimeError(ClientError):
    """The realtime websocket failed."""
    pass


class RealtimeDecodeError(ClientError):
    """A realtime push did not match any known row shape."""
    pass


class ValidationError(ClientError):
    """Input rejected before anything was sent to the backend."""
    pass


class SubmissionError(ClientError):
    """An optimistic insert failed and was rolled back."""

    def __init__(self, message: str, details: dict = None, cause: Exception = None):
        super().__init__(message, details)
        self.cause = cause


class SubmissionTimeoutError(SubmissionError):
    """The backend did not answer an insert in time."""
    pass


class SoftDeleteError(ClientError):
    """A soft delete failed and the local flag was reverted."""

    def __init__(self, message: str, details: dict = None, cause: Exception = None):
        super().__init__(message, details)
        self.cause = cause
