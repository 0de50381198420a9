"""Webhook subscription registry.

Validates and stores webhook subscriptions, enforces ownership, and answers
the "who wants this event?" query used by the dispatcher.
"""

from typing import Any, Dict, List, Optional
import logging

from pydantic import HttpUrl, TypeAdapter, ValidationError

from .errors import InvalidEventsError, InvalidUrlError, NotFoundError, UnauthorizedError
from .models import WebhookSubscription
from .security import generate_secret
from .store import WebhookStore

logger = logging.getLogger(__name__)

_http_url = TypeAdapter(HttpUrl)


def validate_url(url: Any) -> str:
    """Check that ``url`` is an absolute http(s) URL and return it unchanged.

    Raises:
        InvalidUrlError: If it is not.
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidUrlError()
    try:
        _http_url.validate_python(url)
    except ValidationError:
        raise InvalidUrlError()
    return url


def validate_events(events: Any) -> List[str]:
    """Check that ``events`` is a non-empty list of non-empty strings.

    Raises:
        InvalidEventsError: If it is not.
    """
    if not isinstance(events, (list, tuple, set, frozenset)) or not events:
        raise InvalidEventsError()
    if not all(isinstance(e, str) and e.strip() for e in events):
        raise InvalidEventsError("Event types must be non-empty strings")

    # Drop duplicates, keep the caller's order
    return list(dict.fromkeys(events))


class WebhookRegistry:
    """Store-backed registry for webhook subscriptions.

    Every operation is scoped by owner. Lookups of someone else's webhook
    fail exactly like lookups of a missing one.

    Example:
        registry = WebhookRegistry(InMemoryWebhookStore())
        webhook = await registry.configure(
            "acct-1",
            url="https://example.com/hook",
            events=["message.sent"],
        )
        matches = await registry.list_matching("acct-1", None, "message.sent")
    """

    def __init__(self, store: WebhookStore):
        self.store = store

    async def configure(
        self,
        owner_id: str,
        url: Any,
        events: Any,
        secret: Optional[str] = None,
        inbox_id: Optional[str] = None,
    ) -> WebhookSubscription:
        """Create a new webhook subscription.

        Args:
            owner_id: Account the webhook belongs to.
            url: Destination endpoint.
            events: Event types to subscribe to ("*" for all).
            secret: Signing secret; generated when omitted.
            inbox_id: Restrict the webhook to one inbox of the owner.

        Returns:
            The created subscription, secret included.

        Raises:
            InvalidUrlError, InvalidEventsError, UnauthorizedError
        """
        url = validate_url(url)
        events = validate_events(events)

        if inbox_id is not None:
            await self._check_inbox_owner(inbox_id, owner_id)

        webhook = WebhookSubscription(
            owner_id=owner_id,
            inbox_id=inbox_id,
            url=url,
            events=events,
            secret=secret or generate_secret(),
            is_active=True,
            success_count=0,
            failure_count=0,
        )
        await self.store.insert_webhook(webhook)

        logger.info(
            f"Webhook configured: {webhook.id} (owner={owner_id}, "
            f"inbox={inbox_id}, events={events})"
        )
        return webhook

    async def get(self, webhook_id: str, owner_id: str) -> WebhookSubscription:
        """Get an owned webhook.

        Raises:
            NotFoundError: If missing or owned by someone else.
        """
        webhook = await self.store.get_webhook(webhook_id)
        if webhook is None or webhook.owner_id != owner_id:
            raise NotFoundError()
        return webhook

    async def list_for_owner(self, owner_id: str) -> List[WebhookSubscription]:
        """All webhooks of an owner, newest first."""
        return await self.store.list_webhooks(owner_id)

    async def update(
        self,
        webhook_id: str,
        owner_id: str,
        url: Optional[Any] = None,
        events: Optional[Any] = None,
        is_active: Optional[bool] = None,
    ) -> WebhookSubscription:
        """Partially update an owned webhook. The secret cannot be changed.

        Raises:
            NotFoundError, InvalidUrlError, InvalidEventsError
        """
        webhook = await self.get(webhook_id, owner_id)

        patch: Dict[str, Any] = {}
        if url is not None:
            patch["url"] = validate_url(url)
        if events is not None:
            patch["events"] = validate_events(events)
        if is_active is not None:
            patch["is_active"] = bool(is_active)

        if not patch:
            return webhook

        updated = await self.store.update_webhook(webhook_id, patch)
        if updated is None:
            # Deleted concurrently
            raise NotFoundError()

        logger.info(f"Webhook updated: {webhook_id} ({', '.join(sorted(patch))})")
        return updated

    async def delete(self, webhook_id: str, owner_id: str) -> None:
        """Delete an owned webhook and its delivery history.

        Raises:
            NotFoundError: If missing or owned by someone else.
        """
        await self.get(webhook_id, owner_id)
        await self.store.delete_webhook(webhook_id)
        logger.info(f"Webhook deleted: {webhook_id} (owner={owner_id})")

    async def list_matching(
        self,
        owner_id: str,
        inbox_id: Optional[str],
        event_type: str,
    ) -> List[WebhookSubscription]:
        """Active webhooks of ``owner_id`` that want ``event_type``.

        Inbox-scoped webhooks match only their inbox; webhooks without an
        inbox match every inbox. Both kinds are returned together.
        """
        webhooks = await self.store.list_webhooks(owner_id)
        matching = [
            w for w in webhooks
            if w.is_active and w.matches_inbox(inbox_id) and w.matches_event(event_type)
        ]

        logger.debug(
            f"Webhook match for {event_type} (owner={owner_id}, inbox={inbox_id}): "
            f"{len(matching)}/{len(webhooks)}"
        )
        return matching

    async def _check_inbox_owner(self, inbox_id: str, owner_id: str) -> None:
        inbox_owner = await self.store.get_inbox_owner(inbox_id)
        if inbox_owner is None or inbox_owner != owner_id:
            logger.warning(f"Rejected inbox link {inbox_id} for owner {owner_id}")
            raise UnauthorizedError()
