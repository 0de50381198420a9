"""Outbound webhook dispatcher.

Sends events to matching subscriptions with signed payloads, bounded
retries on a fixed backoff schedule, and optional circuit breaking per
webhook or per destination host. Each attempt sequence is logged to the
store and reflected in the subscription's counters.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional

import httpx

from ..core.circuit_breaker import CircuitBreakerRegistry
from ..core.observability import ObservabilityHook, LoggingObservabilityHook
from ..core.settings import DeliverySettings
from .errors import ErrorKind
from .models import (
    DeliveryRecord,
    DeliveryResult,
    DeliveryStats,
    DeliverySummary,
    EventPayload,
    GenericPayload,
    RawWirePayload,
    WebhookStats,
    WebhookSubscription,
    WebhookSummary,
    utcnow,
)
from .registry import WebhookRegistry
from .security import canonical_json, generate_webhook_headers

logger = logging.getLogger(__name__)

TRANSPORT_FAILURE_STATUS = 0
TEST_EVENT_TYPE = "webhook.test"


@dataclass
class AttemptOutcome:
    """Result of the HTTP retry loop for one attempt sequence."""

    success: bool = False
    attempts: int = 0
    response_status: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BookkeepingResult:
    """Whether the delivery log and counter updates were persisted."""

    delivery_logged: bool = True
    stats_updated: bool = True
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.delivery_logged and self.stats_updated


def _iso_timestamp(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class WebhookDispatcher:
    """Delivers events to every matching webhook subscription.

    Features:
    - Concurrent fan-out across subscriptions, sequential retries within one
    - HMAC-SHA256 signature over the exact body bytes sent
    - No retry on 4xx (408/429 aside), fixed backoff on 5xx and transport errors
    - Optional circuit breaker keyed per webhook or per host
    - Best-effort delivery log and counters; failures go to the hook

    Example:
        dispatcher = WebhookDispatcher(registry)
        results = await dispatcher.send_event(
            "acct-1", None, "message.sent", {"text": "hi"}
        )
        failed = [r for r in results if not r.success]
    """

    def __init__(
        self,
        registry: WebhookRegistry,
        settings: Optional[DeliverySettings] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        hook: Optional[ObservabilityHook] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize dispatcher.

        Args:
            registry: Subscription registry (its store receives the logs).
            settings: Retry, timeout and breaker settings.
            breakers: Breaker registry, used when settings.breaker_scope is set.
            hook: Receives delivery, circuit and bookkeeping signals.
            transport: Optional httpx transport (tests use MockTransport).
            sleep: Awaitable used for backoff waits.
        """
        self.registry = registry
        self.store = registry.store
        self.settings = settings or DeliverySettings()
        self.breakers = breakers or CircuitBreakerRegistry()
        self.hook = hook or LoggingObservabilityHook()
        self._transport = transport
        self._sleep = sleep

    async def send_event(
        self,
        owner_id: str,
        inbox_id: Optional[str],
        event_type: str,
        payload: Any,
    ) -> List[DeliveryResult]:
        """Send one event to every matching active subscription.

        Args:
            owner_id: Account the event belongs to.
            inbox_id: Inbox the event happened in, if any.
            event_type: Event type, e.g. "message.sent".
            payload: ``RawWirePayload`` to send verbatim, ``GenericPayload``
                (or any other value) to wrap in the standard envelope.

        Returns:
            One result per matched subscription. Delivery failures are
            reported here and never raised.
        """
        event_payload = self._as_event_payload(payload)
        webhooks = await self.registry.list_matching(owner_id, inbox_id, event_type)

        if not webhooks:
            logger.debug(f"No webhooks registered for event: {event_type} (owner={owner_id})")
            return []

        logger.info(f"Dispatching {event_type} to {len(webhooks)} webhook(s) (owner={owner_id})")

        outcomes = await asyncio.gather(
            *(self._deliver_to_webhook(w, event_type, event_payload) for w in webhooks),
            return_exceptions=True,
        )

        results = []
        for webhook, outcome in zip(webhooks, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Delivery to webhook {webhook.id} crashed: {outcome!r}")
                outcome = DeliveryResult(
                    webhook_id=webhook.id,
                    delivery_id=str(uuid.uuid4()),
                    success=False,
                    attempts=0,
                    error=str(outcome) or type(outcome).__name__,
                    error_kind=ErrorKind.DELIVERY_FAILED,
                )
            results.append(outcome)

        return results

    async def send_test_event(self, webhook_id: str, owner_id: str) -> DeliveryResult:
        """Send a test event to one owned webhook, ignoring its event filter.

        Raises:
            NotFoundError: If the webhook is missing or not owned.
        """
        webhook = await self.registry.get(webhook_id, owner_id)
        payload = GenericPayload(data={
            "test": True,
            "message": "This is a test webhook delivery",
            "webhook_id": webhook_id,
        })
        return await self._deliver_to_webhook(webhook, TEST_EVENT_TYPE, payload)

    async def get_stats(self, webhook_id: str, owner_id: str) -> WebhookStats:
        """Lifetime counters plus figures recomputed from recent deliveries.

        Raises:
            NotFoundError: If the webhook is missing or not owned.
        """
        webhook = await self.registry.get(webhook_id, owner_id)
        deliveries = await self.store.list_deliveries(webhook_id, self.settings.recent_window)

        recent_success = sum(1 for d in deliveries if d.success)
        avg_duration = (
            sum(d.duration_ms or 0 for d in deliveries) / len(deliveries)
            if deliveries else 0
        )

        return WebhookStats(
            webhook=WebhookSummary(
                id=webhook.id,
                url=webhook.url,
                events=webhook.events,
                inbox_id=webhook.inbox_id,
                is_active=webhook.is_active,
                created_at=webhook.created_at,
                last_delivery_at=webhook.last_delivery_at,
            ),
            stats=DeliveryStats(
                total_success=webhook.success_count,
                total_failure=webhook.failure_count,
                recent_deliveries=len(deliveries),
                recent_success=recent_success,
                recent_failure=len(deliveries) - recent_success,
                avg_duration_ms=round(avg_duration),
            ),
            recent_deliveries=[
                DeliverySummary(
                    id=d.delivery_id,
                    event_type=d.event_type,
                    success=d.success,
                    attempts=d.attempts,
                    response_status=d.response_status,
                    error=d.error,
                    duration_ms=d.duration_ms,
                    created_at=d.created_at,
                )
                for d in deliveries[:self.settings.recent_deliveries_shown]
            ],
        )

    @staticmethod
    def _as_event_payload(payload: Any) -> EventPayload:
        if isinstance(payload, (RawWirePayload, GenericPayload)):
            return payload
        return GenericPayload(data=payload)

    def _breaker_key(self, webhook: WebhookSubscription) -> Optional[str]:
        scope = self.settings.breaker_scope
        if scope == "webhook":
            return f"webhook:{webhook.id}"
        if scope == "host":
            return f"host:{httpx.URL(webhook.url).host}"
        return None

    async def breaker_keys_for_owner(self, owner_id: str) -> set[str]:
        """Breaker keys the owner's webhooks map to under either scope."""
        keys = set()
        for webhook in await self.registry.list_for_owner(owner_id):
            keys.add(f"webhook:{webhook.id}")
            keys.add(f"host:{httpx.URL(webhook.url).host}")
        return keys

    @staticmethod
    def build_wire_payload(
        payload: EventPayload,
        event_type: str,
        delivery_id: str,
    ) -> dict:
        """The JSON object a subscriber receives."""
        if isinstance(payload, RawWirePayload):
            return payload.body
        return {
            "id": delivery_id,
            "event": event_type,
            "timestamp": _iso_timestamp(utcnow()),
            "data": payload.data,
        }

    async def _deliver_to_webhook(
        self,
        webhook: WebhookSubscription,
        event_type: str,
        payload: EventPayload,
    ) -> DeliveryResult:
        """Run one attempt sequence against a webhook and record it."""
        delivery_id = str(uuid.uuid4())

        breaker_key = self._breaker_key(webhook)
        if breaker_key is not None:
            decision = self.breakers.can_execute(breaker_key)
            if not decision.allowed:
                logger.warning(f"Circuit open for webhook {webhook.id} ({breaker_key}): {decision.reason}")
                self._notify("circuit_rejected", webhook.id, breaker_key, decision.reason)
                return DeliveryResult(
                    webhook_id=webhook.id,
                    delivery_id=delivery_id,
                    success=False,
                    attempts=0,
                    error=decision.reason,
                    error_kind=ErrorKind.CIRCUIT_OPEN,
                )

        wire_payload = self.build_wire_payload(payload, event_type, delivery_id)
        try:
            body = canonical_json(wire_payload)
        except (TypeError, ValueError) as e:
            logger.error(f"Payload for webhook {webhook.id} ({event_type}) is not serialisable: {e}")
            outcome = AttemptOutcome(error=f"Payload could not be serialised: {e}")
            return await self._complete(webhook, delivery_id, event_type, wire_payload, outcome, 0)

        headers = generate_webhook_headers(
            body,
            webhook.secret,
            webhook_id=webhook.id,
            delivery_id=delivery_id,
            event_type=event_type,
            user_agent=self.settings.user_agent,
        )

        started = time.monotonic()
        outcome = await self._attempt_sequence(webhook, body, headers)
        duration_ms = round((time.monotonic() - started) * 1000)

        if breaker_key is not None:
            if outcome.success:
                self.breakers.record_success(breaker_key)
            else:
                self.breakers.record_failure(breaker_key, outcome.error)

        return await self._complete(webhook, delivery_id, event_type, wire_payload, outcome, duration_ms)

    async def _complete(
        self,
        webhook: WebhookSubscription,
        delivery_id: str,
        event_type: str,
        wire_payload: dict,
        outcome: AttemptOutcome,
        duration_ms: int,
    ) -> DeliveryResult:
        """Record a finished attempt sequence and build its result."""
        record = DeliveryRecord(
            delivery_id=delivery_id,
            webhook_id=webhook.id,
            event_type=event_type,
            payload=wire_payload,
            success=outcome.success,
            attempts=outcome.attempts,
            response_status=outcome.response_status,
            response_body=outcome.response_body,
            error=outcome.error,
            duration_ms=duration_ms,
        )
        await self._record_outcome(record)

        self._notify(
            "delivery_completed",
            webhook.id, delivery_id, event_type, outcome.success, outcome.attempts, duration_ms,
        )

        return DeliveryResult(
            webhook_id=webhook.id,
            delivery_id=delivery_id,
            success=outcome.success,
            attempts=outcome.attempts,
            error=outcome.error,
            error_kind=None if outcome.success else ErrorKind.DELIVERY_FAILED,
            response_status=outcome.response_status,
        )

    async def _attempt_sequence(
        self,
        webhook: WebhookSubscription,
        body: bytes,
        headers: dict,
    ) -> AttemptOutcome:
        """POST with retries until success, a 4xx, or attempts run out.

        Each attempt is bounded by ``timeout_seconds`` as a whole, not only
        per connect/read phase.
        """
        outcome = AttemptOutcome()
        max_retries = self.settings.max_retries
        timeout = self.settings.timeout_seconds
        limit = self.settings.response_body_limit

        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            for attempt in range(1, max_retries + 1):
                outcome.attempts = attempt

                try:
                    response = await asyncio.wait_for(
                        client.post(webhook.url, content=body, headers=headers),
                        timeout,
                    )
                except asyncio.TimeoutError:
                    outcome.response_status = TRANSPORT_FAILURE_STATUS
                    outcome.response_body = None
                    outcome.error = f"Timed out after {timeout}s"
                except httpx.HTTPError as e:
                    outcome.response_status = TRANSPORT_FAILURE_STATUS
                    outcome.response_body = None
                    outcome.error = str(e) or type(e).__name__
                else:
                    status = response.status_code
                    outcome.response_status = status
                    outcome.response_body = response.text[:limit]

                    if 200 <= status < 300:
                        outcome.success = True
                        outcome.error = None
                        logger.info(f"Webhook {webhook.id} delivered (attempt {attempt}, HTTP {status})")
                        break

                    outcome.error = f"HTTP {status}"
                    if 400 <= status < 500 and status not in self.settings.retryable_client_statuses:
                        logger.warning(f"Webhook {webhook.id} rejected delivery with HTTP {status}, not retrying")
                        break

                if attempt < max_retries:
                    delay = self.settings.delay_after(attempt)
                    logger.warning(
                        f"Webhook delivery failed for {webhook.id} ({outcome.error}), "
                        f"retrying in {delay}s (attempt {attempt}/{max_retries})"
                    )
                    await self._sleep(delay)
                else:
                    logger.error(
                        f"Webhook delivery failed after {max_retries} attempts "
                        f"for {webhook.id}: {outcome.error}"
                    )

        return outcome

    async def _record_outcome(self, record: DeliveryRecord) -> BookkeepingResult:
        """Write the delivery log and bump counters. Never raises."""
        result = BookkeepingResult()

        try:
            await self.store.insert_delivery(record)
        except Exception as e:
            result.delivery_logged = False
            result.errors.append(f"insert_delivery: {e}")
            logger.error(f"Failed to log delivery {record.delivery_id} for webhook {record.webhook_id}: {e}")
            self._notify("bookkeeping_failed", "insert_delivery", record.webhook_id, record.delivery_id, e)

        try:
            await self.store.increment_counters(
                record.webhook_id,
                record.success,
                datetime.now(timezone.utc),
            )
        except Exception as e:
            result.stats_updated = False
            result.errors.append(f"increment_counters: {e}")
            logger.error(f"Failed to update stats for webhook {record.webhook_id}: {e}")
            self._notify("bookkeeping_failed", "increment_counters", record.webhook_id, record.delivery_id, e)

        return result

    def _notify(self, signal: str, *args: Any) -> None:
        """Forward a signal to the hook. Hook errors are logged, never raised."""
        try:
            getattr(self.hook, signal)(*args)
        except Exception as e:
            logger.error(f"Observability hook {signal} failed: {e}")
