"""Webhook data models.

Pydantic schemas for subscriptions, delivery records, event payloads and
the request/response bodies of the management API.
"""

from typing import Optional, Any, Dict, List, Literal, Union
from datetime import datetime, timezone
from pydantic import BaseModel, Field
import uuid

from .errors import ErrorKind

WILDCARD_EVENT = "*"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebhookSubscription(BaseModel):
    """A stored rule: owner (+ optional inbox) and event filter -> URL."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str
    inbox_id: Optional[str] = Field(
        None, description="Inbox the webhook is scoped to; None matches every inbox"
    )
    url: str
    events: List[str]
    secret: str
    is_active: bool = True
    success_count: int = 0
    failure_count: int = 0
    last_delivery_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    def matches_event(self, event_type: str) -> bool:
        return event_type in self.events or WILDCARD_EVENT in self.events

    def matches_inbox(self, inbox_id: Optional[str]) -> bool:
        return self.inbox_id is None or self.inbox_id == inbox_id


class DeliveryRecord(BaseModel):
    """Outcome of one delivery attempt sequence. Written once, never updated."""

    delivery_id: str
    webhook_id: str
    event_type: str
    payload: Dict[str, Any]
    success: bool
    attempts: int
    response_status: Optional[int] = None  # 0 means the request never got a response
    response_body: Optional[str] = None
    error: Optional[str] = None
    duration_ms: int = 0
    created_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# Event payloads
# ============================================================================

class GenericPayload(BaseModel):
    """Internal payload, wrapped in the standard envelope before sending."""

    mode: Literal["generic"] = "generic"
    data: Any = None


class RawWirePayload(BaseModel):
    """Already-shaped wire event, sent verbatim."""

    mode: Literal["raw"] = "raw"
    body: Dict[str, Any]


EventPayload = Union[RawWirePayload, GenericPayload]


class DeliveryResult(BaseModel):
    """Per-subscription result returned from ``send_event``."""

    webhook_id: str
    delivery_id: str
    success: bool
    attempts: int
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    response_status: Optional[int] = None


# ============================================================================
# Stats
# ============================================================================

class WebhookSummary(BaseModel):
    id: str
    url: str
    events: List[str]
    inbox_id: Optional[str] = None
    is_active: bool
    created_at: datetime
    last_delivery_at: Optional[datetime] = None


class DeliveryStats(BaseModel):
    """Lifetime counters next to figures recomputed from recent records."""

    total_success: int
    total_failure: int
    recent_deliveries: int
    recent_success: int
    recent_failure: int
    avg_duration_ms: int


class DeliverySummary(BaseModel):
    id: str
    event_type: str
    success: bool
    attempts: int
    response_status: Optional[int] = None
    error: Optional[str] = None
    duration_ms: int
    created_at: datetime


class WebhookStats(BaseModel):
    webhook: WebhookSummary
    stats: DeliveryStats
    recent_deliveries: List[DeliverySummary]


# ============================================================================
# API bodies
# ============================================================================

class WebhookCreateRequest(BaseModel):
    """Request to configure a new webhook."""

    url: str
    events: List[Any] = Field(default_factory=list)
    secret: Optional[str] = None
    inbox_id: Optional[str] = None


class WebhookUpdateRequest(BaseModel):
    url: Optional[str] = None
    events: Optional[List[Any]] = None
    is_active: Optional[bool] = None


class WebhookResponse(BaseModel):
    """Webhook as exposed over the API. The secret is omitted."""

    id: str
    url: str
    events: List[str]
    inbox_id: Optional[str] = None
    is_active: bool
    success_count: int
    failure_count: int
    last_delivery_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_subscription(cls, webhook: WebhookSubscription) -> "WebhookResponse":
        return cls(**webhook.model_dump(exclude={"owner_id", "secret"}))


class WebhookCreatedResponse(WebhookResponse):
    """Creation response; the only time the secret is returned."""

    secret: str
    message: str = "Webhook configured successfully"


class WebhookListResponse(BaseModel):
    webhooks: List[WebhookResponse]
    total: int


class SendEventRequest(BaseModel):
    """Manually send an event to all matching subscriptions."""

    event_type: str
    inbox_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    raw: bool = Field(False, description="Send payload verbatim instead of enveloped")
