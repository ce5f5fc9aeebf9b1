"""
Error taxonomy shared by the scheduling services, the limiters and the API.

Synchronous operations raise these and the API maps them to HTTP responses.
Asynchronous jobs (notifier, reminder sweeps) catch them and record the
failure on the affected row instead of raising.
"""

from typing import Optional


class AgendaError(Exception):
    """Base class for errors with a stable code and HTTP status"""

    code = "internal"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidArgumentError(AgendaError):
    """Caller mistake; not retried"""

    code = "invalid-argument"
    status_code = 400


class NotFoundError(AgendaError):
    code = "not-found"
    status_code = 404


class PreconditionFailedError(AgendaError):
    """Stale, expired or already-used state; caller must request a fresh hold"""

    code = "failed-precondition"
    status_code = 412


class ConflictError(AgendaError):
    """Lost a race for the slot; caller retries with another slot"""

    code = "conflict"
    status_code = 409


class ResourceExhaustedError(AgendaError):
    """Quota, rate or day cap reached; caller backs off"""

    code = "resource-exhausted"
    status_code = 429

    def __init__(
        self, message: str, details: Optional[dict] = None, retry_after: Optional[int] = None
    ):
        super().__init__(message, details)
        self.retry_after = retry_after


class TransportError(AgendaError):
    """Email delivery failed"""

    code = "transport"
    status_code = 502


class InternalError(AgendaError):
    """Transaction or store failure"""

    code = "internal"
    status_code = 500
