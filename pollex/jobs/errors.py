"""Error taxonomy for job coordination.

- ValidationError: bad input, rejected before any state mutation.
- ConflictError: a job is already running (single-flight).
- CancellationError: user cancel or durable cancel intent observed.
- TransportError: network failure, non-2xx, malformed body, client timeout.
"""

from __future__ import annotations

from pollex.config import ERROR_MAX_LENGTH


class PollexError(Exception):
    """Base class for errors surfaced to callers of the coordinator."""


class ValidationError(PollexError):
    pass


class ConflictError(PollexError):
    pass


AlreadyRunningError = ConflictError


class CancellationError(PollexError):
    pass


class TransportError(PollexError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def truncate_error(message: object, max_length: int = ERROR_MAX_LENGTH) -> str:
    text = str(message or "").strip() or "Request failed"
    return text[:max_length]
