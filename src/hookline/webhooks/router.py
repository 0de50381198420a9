"""Webhook API routes.

FastAPI router for webhook management, manual event dispatch, delivery
stats and circuit breaker operations. The calling account is taken from
the ``X-User-Id`` header set by the authenticating gateway.
"""

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from typing import List
import logging

from .container import WebhookContainer
from .errors import ErrorKind, NotFoundError, WebhookError
from .models import (
    DeliveryResult,
    GenericPayload,
    RawWirePayload,
    SendEventRequest,
    WebhookCreateRequest,
    WebhookCreatedResponse,
    WebhookListResponse,
    WebhookResponse,
    WebhookStats,
    WebhookUpdateRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

_STATUS_BY_KIND = {
    ErrorKind.INVALID_URL: 400,
    ErrorKind.INVALID_EVENTS: 400,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.NOT_FOUND: 404,
}


def get_container(request: Request) -> WebhookContainer:
    return request.app.state.webhooks


def get_owner(x_user_id: str = Header(..., min_length=1)) -> str:
    return x_user_id


def _http_error(error: WebhookError) -> HTTPException:
    return HTTPException(
        status_code=_STATUS_BY_KIND.get(error.kind, 400),
        detail={"error": error.kind.value, "message": error.message},
    )


# ============================================================================
# Webhook Management Endpoints
# ============================================================================

@router.post("", response_model=WebhookCreatedResponse, status_code=201)
async def configure_webhook(
    body: WebhookCreateRequest,
    owner: str = Depends(get_owner),
    container: WebhookContainer = Depends(get_container),
):
    """Configure a new webhook. The response carries the signing secret."""
    try:
        webhook = await container.registry.configure(
            owner,
            url=body.url,
            events=body.events,
            secret=body.secret,
            inbox_id=body.inbox_id,
        )
    except WebhookError as e:
        raise _http_error(e)

    return WebhookCreatedResponse(**webhook.model_dump(exclude={"owner_id"}))


@router.get("", response_model=WebhookListResponse)
async def list_webhooks(
    owner: str = Depends(get_owner),
    container: WebhookContainer = Depends(get_container),
):
    """List the caller's webhooks."""
    webhooks = await container.registry.list_for_owner(owner)
    return WebhookListResponse(
        webhooks=[WebhookResponse.from_subscription(w) for w in webhooks],
        total=len(webhooks),
    )


@router.post("/events", response_model=List[DeliveryResult])
async def send_event(
    body: SendEventRequest,
    owner: str = Depends(get_owner),
    container: WebhookContainer = Depends(get_container),
):
    """Send an event to all of the caller's matching webhooks.

    Always answers 200 with one result per webhook; check each ``success``.
    """
    payload = RawWirePayload(body=body.payload) if body.raw else GenericPayload(data=body.payload)
    return await container.dispatcher.send_event(owner, body.inbox_id, body.event_type, payload)


# ============================================================================
# Circuit Breaker Endpoints
# ============================================================================

@router.get("/circuits")
async def list_circuits(
    owner: str = Depends(get_owner),
    container: WebhookContainer = Depends(get_container),
):
    """Circuit breaker statuses for the caller's webhooks and their hosts."""
    keys = await container.dispatcher.breaker_keys_for_owner(owner)
    return {
        "circuits": [
            s.to_dict() for s in container.breakers.list_all_statuses() if s.key in keys
        ]
    }


@router.post("/circuits/reset")
async def reset_all_circuits(
    owner: str = Depends(get_owner),
    container: WebhookContainer = Depends(get_container),
):
    """Reset every breaker belonging to the caller's webhooks."""
    keys = await container.dispatcher.breaker_keys_for_owner(owner)
    for key in keys:
        container.breakers.reset(key)
    return {"status": "success", "message": "All circuits reset"}


@router.post("/circuits/{key}/reset")
async def reset_circuit(
    key: str,
    owner: str = Depends(get_owner),
    container: WebhookContainer = Depends(get_container),
):
    keys = await container.dispatcher.breaker_keys_for_owner(owner)
    if key not in keys:
        raise _http_error(NotFoundError("Circuit not found or unauthorized"))
    container.breakers.reset(key)
    return {"status": "success", "message": f"Circuit '{key}' reset"}


# ============================================================================
# Single Webhook Endpoints
# ============================================================================

@router.get("/{webhook_id}", response_model=WebhookResponse)
async def get_webhook(
    webhook_id: str,
    owner: str = Depends(get_owner),
    container: WebhookContainer = Depends(get_container),
):
    try:
        webhook = await container.registry.get(webhook_id, owner)
    except WebhookError as e:
        raise _http_error(e)
    return WebhookResponse.from_subscription(webhook)


@router.patch("/{webhook_id}", response_model=WebhookResponse)
async def update_webhook(
    webhook_id: str,
    body: WebhookUpdateRequest,
    owner: str = Depends(get_owner),
    container: WebhookContainer = Depends(get_container),
):
    """Update url, events or active flag of a webhook."""
    try:
        webhook = await container.registry.update(
            webhook_id,
            owner,
            url=body.url,
            events=body.events,
            is_active=body.is_active,
        )
    except WebhookError as e:
        raise _http_error(e)
    return WebhookResponse.from_subscription(webhook)


@router.delete("/{webhook_id}")
async def delete_webhook(
    webhook_id: str,
    owner: str = Depends(get_owner),
    container: WebhookContainer = Depends(get_container),
):
    """Delete a webhook and its delivery history."""
    try:
        await container.registry.delete(webhook_id, owner)
    except WebhookError as e:
        raise _http_error(e)
    return {"status": "success", "message": "Webhook deleted"}


@router.get("/{webhook_id}/stats", response_model=WebhookStats)
async def get_webhook_stats(
    webhook_id: str,
    owner: str = Depends(get_owner),
    container: WebhookContainer = Depends(get_container),
):
    try:
        return await container.dispatcher.get_stats(webhook_id, owner)
    except WebhookError as e:
        raise _http_error(e)


@router.post("/{webhook_id}/test", response_model=DeliveryResult)
async def test_webhook(
    webhook_id: str,
    owner: str = Depends(get_owner),
    container: WebhookContainer = Depends(get_container),
):
    """Send a test event to a specific webhook.

    Answers 502 when the endpoint did not accept the test delivery.
    """
    try:
        result = await container.dispatcher.send_test_event(webhook_id, owner)
    except WebhookError as e:
        raise _http_error(e)

    if not result.success:
        logger.warning(f"Test delivery to webhook {webhook_id} failed: {result.error}")
        raise HTTPException(status_code=502, detail=f"Test webhook failed: {result.error}")

    return result
