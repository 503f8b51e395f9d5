"""Exception types shared by the sync components."""
from typing import Any, Optional


class SyncError(Exception):
    """Base class for errors raised by the sync job."""


class ConfigError(SyncError):
    """Configuration is missing a required field or is malformed."""


class CalendarNotFoundError(SyncError):
    """The configured Outlook calendar name does not exist."""


class AuthenticationError(SyncError):
    """No usable access token could be obtained."""


class BodyFormatError(SyncError):
    """An event body does not follow the structured block grammar."""

    def __init__(self, message: str, line_number: Optional[int] = None):
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)
        self.line_number = line_number


class MergeConflictError(SyncError):
    """Old and new structured data disagree on the shape of a field."""

    def __init__(self, key: str, expected: str, actual: str):
        super().__init__(
            f"field '{key}' is a {actual} but a {expected} was expected"
        )
        self.key = key


TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}
TRANSIENT_REASONS = {'quotaExceeded', 'rateLimitExceeded', 'userRateLimitExceeded'}


class RemoteRequestError(SyncError):
    """HTTP request to a remote API failed."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        reason: Optional[str] = None,
        body: Any = None,
        network_error: bool = False
    ):
        super().__init__(message)
        self.status = status
        self.reason = reason
        self.body = body
        self.network_error = network_error

    @property
    def transient(self) -> bool:
        """Whether repeating the same request may succeed."""
        if self.network_error:
            return True
        if self.reason in TRANSIENT_REASONS:
            return True
        return self.status in TRANSIENT_STATUS_CODES


def is_transient(error: BaseException) -> bool:
    """Retry predicate accepting only transient remote errors."""
    return isinstance(error, RemoteRequestError) and error.transient
