"""Webhook persistence layer.

``WebhookStore`` is the interface the registry and dispatcher talk to; the
surrounding system backs it with its own database. ``InMemoryWebhookStore``
is a complete implementation for development, tests and single-process
deployments.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from datetime import datetime

from .models import WebhookSubscription, DeliveryRecord


class WebhookStore(ABC):
    """Abstract base class for webhook storage backends."""

    @abstractmethod
    async def insert_webhook(self, webhook: WebhookSubscription) -> WebhookSubscription:
        """Persist a new subscription."""
        pass

    @abstractmethod
    async def get_webhook(self, webhook_id: str) -> Optional[WebhookSubscription]:
        pass

    @abstractmethod
    async def list_webhooks(self, owner_id: str) -> List[WebhookSubscription]:
        """All subscriptions of an owner, newest first."""
        pass

    @abstractmethod
    async def update_webhook(
        self,
        webhook_id: str,
        patch: Dict[str, Any],
    ) -> Optional[WebhookSubscription]:
        """Apply a partial update. Returns None if the webhook is gone."""
        pass

    @abstractmethod
    async def delete_webhook(self, webhook_id: str) -> bool:
        """Delete a subscription together with its delivery records."""
        pass

    @abstractmethod
    async def increment_counters(
        self,
        webhook_id: str,
        success: bool,
        delivered_at: datetime,
    ) -> None:
        """Bump success or failure count by one and set last_delivery_at."""
        pass

    @abstractmethod
    async def insert_delivery(self, record: DeliveryRecord) -> None:
        pass

    @abstractmethod
    async def list_deliveries(self, webhook_id: str, limit: int) -> List[DeliveryRecord]:
        """Most recent delivery records for a webhook, newest first."""
        pass

    @abstractmethod
    async def get_inbox_owner(self, inbox_id: str) -> Optional[str]:
        """Owner of an inbox, or None if the inbox does not exist."""
        pass


class InMemoryWebhookStore(WebhookStore):
    """Dict-backed store.

    Every method finishes without awaiting, so counter increments are
    atomic on the event loop.

    Example:
        >>> store = InMemoryWebhookStore()
        >>> store.add_inbox("inbox-1", owner_id="acct-1")
        >>> await store.get_inbox_owner("inbox-1")
        'acct-1'
    """

    def __init__(self):
        self._webhooks: Dict[str, WebhookSubscription] = {}
        self._deliveries: Dict[str, List[DeliveryRecord]] = {}
        self._inboxes: Dict[str, str] = {}

    def add_inbox(self, inbox_id: str, owner_id: str) -> None:
        """Register an inbox and its owning account."""
        self._inboxes[inbox_id] = owner_id

    async def insert_webhook(self, webhook: WebhookSubscription) -> WebhookSubscription:
        self._webhooks[webhook.id] = webhook.model_copy(deep=True)
        self._deliveries.setdefault(webhook.id, [])
        return webhook

    async def get_webhook(self, webhook_id: str) -> Optional[WebhookSubscription]:
        webhook = self._webhooks.get(webhook_id)
        return webhook.model_copy(deep=True) if webhook else None

    async def list_webhooks(self, owner_id: str) -> List[WebhookSubscription]:
        owned = [w for w in reversed(self._webhooks.values()) if w.owner_id == owner_id]
        owned.sort(key=lambda w: w.created_at, reverse=True)
        return [w.model_copy(deep=True) for w in owned]

    async def update_webhook(
        self,
        webhook_id: str,
        patch: Dict[str, Any],
    ) -> Optional[WebhookSubscription]:
        webhook = self._webhooks.get(webhook_id)
        if webhook is None:
            return None

        updated = webhook.model_copy(update=patch, deep=True)
        self._webhooks[webhook_id] = updated
        return updated.model_copy(deep=True)

    async def delete_webhook(self, webhook_id: str) -> bool:
        if webhook_id not in self._webhooks:
            return False
        self._deliveries.pop(webhook_id, None)
        del self._webhooks[webhook_id]
        return True

    async def increment_counters(
        self,
        webhook_id: str,
        success: bool,
        delivered_at: datetime,
    ) -> None:
        webhook = self._webhooks.get(webhook_id)
        if webhook is None:
            raise KeyError(f"Webhook {webhook_id} no longer exists")

        if success:
            webhook.success_count += 1
        else:
            webhook.failure_count += 1
        webhook.last_delivery_at = delivered_at

    async def insert_delivery(self, record: DeliveryRecord) -> None:
        if record.webhook_id not in self._webhooks:
            raise KeyError(f"Webhook {record.webhook_id} no longer exists")
        self._deliveries.setdefault(record.webhook_id, []).append(record)

    async def list_deliveries(self, webhook_id: str, limit: int) -> List[DeliveryRecord]:
        records = self._deliveries.get(webhook_id, [])
        # Ties on created_at keep insertion order, latest first
        newest_first = sorted(reversed(records), key=lambda r: r.created_at, reverse=True)
        return newest_first[:limit]

    async def get_inbox_owner(self, inbox_id: str) -> Optional[str]:
        return self._inboxes.get(inbox_id)
