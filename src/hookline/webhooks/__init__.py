"""Webhooks module for outgoing webhook delivery.

Provides:
- Subscription registry with URL/event validation and ownership checks
- Signed delivery with bounded retries and optional circuit breaking
- Delivery logging, counters and stats
"""

from .models import (
    WebhookSubscription,
    DeliveryRecord,
    DeliveryResult,
    GenericPayload,
    RawWirePayload,
    WebhookStats,
)
from .errors import (
    ErrorKind,
    WebhookError,
    InvalidUrlError,
    InvalidEventsError,
    UnauthorizedError,
    NotFoundError,
)
from .store import WebhookStore, InMemoryWebhookStore
from .registry import WebhookRegistry
from .dispatcher import WebhookDispatcher
from .container import WebhookContainer, build_container

__all__ = [
    "WebhookSubscription",
    "DeliveryRecord",
    "DeliveryResult",
    "GenericPayload",
    "RawWirePayload",
    "WebhookStats",
    "ErrorKind",
    "WebhookError",
    "InvalidUrlError",
    "InvalidEventsError",
    "UnauthorizedError",
    "NotFoundError",
    "WebhookStore",
    "InMemoryWebhookStore",
    "WebhookRegistry",
    "WebhookDispatcher",
    "WebhookContainer",
    "build_container",
]
