"""Webhook error taxonomy.

Registry operations raise these; delivery failures never do, they are
reported as an ``error_kind`` on the per-subscription result instead.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Machine-readable error kinds."""

    INVALID_URL = "invalid_url"
    INVALID_EVENTS = "invalid_events"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    CIRCUIT_OPEN = "circuit_open"
    DELIVERY_FAILED = "delivery_failed"


class WebhookError(Exception):
    """Base class for webhook configuration errors."""

    kind: ErrorKind

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidUrlError(WebhookError):
    kind = ErrorKind.INVALID_URL

    def __init__(self, message: str = "Invalid webhook URL format"):
        super().__init__(message)


class InvalidEventsError(WebhookError):
    kind = ErrorKind.INVALID_EVENTS

    def __init__(self, message: str = "At least one event type is required"):
        super().__init__(message)


class UnauthorizedError(WebhookError):
    """Ownership check failed. Also used when the resource does not exist."""

    kind = ErrorKind.UNAUTHORIZED

    def __init__(self, message: str = "Inbox not found or unauthorized"):
        super().__init__(message)


class NotFoundError(WebhookError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str = "Webhook not found or unauthorized"):
        super().__init__(message)
