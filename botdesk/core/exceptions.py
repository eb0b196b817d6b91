# botdesk/core/exceptions.py
"""
Errors raised by the flow editor, the conversation engine and the REST client.

Validation errors (limits, lengths) are local: the rejected mutation leaves the
draft untouched and the caller decides what to show. Only persistence and
network failures cross the client boundary.
"""
from typing import List, Optional


class BotDeskError(Exception):
    """Base error for the botdesk client"""
    pass


class LimitExceeded(BotDeskError):
    """An add operation would break a cardinality bound"""

    def __init__(self, what: str, limit: int, message: Optional[str] = None):
        self.what = what
        self.limit = limit
        super().__init__(message or f"Maximum {limit} {what} allowed")


class LabelTooLong(BotDeskError):
    """A text value exceeds its character bound; the value was not applied"""

    def __init__(self, target: str, max_length: int):
        self.target = target
        self.max_length = max_length
        super().__init__(f"Maximum {max_length} characters allowed")


class Violation:
    """One failed save-time check"""

    def __init__(self, scope: str, target: str, message: str):
        self.scope = scope
        self.target = target
        self.message = message

    def __repr__(self):
        return f"Violation(scope={self.scope!r}, target={self.target!r}, message={self.message!r})"

    def __eq__(self, other):
        if not isinstance(other, Violation):
            return NotImplemented
        return (self.scope, self.target, self.message) == (other.scope, other.target, other.message)


class ValidationFailed(BotDeskError):
    """Save-time validation found labels over their limits"""

    def __init__(self, violations: List[Violation]):
        self.violations = list(violations)
        super().__init__(f"{len(self.violations)} value(s) exceed their character limit")


class PersistenceFailed(BotDeskError):
    """The PATCH failed or the backend answered success=false"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ApiError(BotDeskError):
    """Non-2xx or transport failure on a REST call"""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Optional[dict] = None):
        self.status_code = status_code
        self.payload = payload or {}
        super().__init__(message)


class SessionExpired(ApiError):
    """Backend rejected the token (HTTP 401); the session has been invalidated"""

    def __init__(self, session=None, message: str = "Session expired"):
        self.session = session
        super().__init__(message, status_code=401)


class InvalidEvent(BotDeskError):
    """A realtime payload is missing required fields"""
    pass


__all__ = [
    'BotDeskError',
    'LimitExceeded',
    'LabelTooLong',
    'Violation',
    'ValidationFailed',
    'PersistenceFailed',
    'ApiError',
    'SessionExpired',
    'InvalidEvent',
]
