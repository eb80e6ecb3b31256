"""
Webhook operations API routes.

Health, delivery history and administrative controls for a tenant's
subscriptions. Creating, listing and deleting subscriptions lives in the
platform's CRUD service.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status

from hookrelay.dependencies.auth import TokenPayload, get_current_tenant, require_admin
from hookrelay.dependencies.services import get_dispatcher, get_ledger, get_registry
from hookrelay.exceptions import SubscriptionNotFoundError
from hookrelay.models.webhook import WebhookEvent
from hookrelay.schemas import AttemptOut, SubscriptionStats, VerifySignatureRequest
from hookrelay.services.attempt_ledger import AttemptLedger
from hookrelay.services.dispatcher import WebhookDispatcher
from hookrelay.services.registry import SUBSCRIBABLE_EVENTS, WebhookRegistry
from hookrelay.services.signing import verify


router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def _not_found(exc: SubscriptionNotFoundError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=str(exc)
    )


@router.get("/events", response_model=dict)
async def list_events():
    """Catalogue of events a webhook can subscribe to."""
    return {
        "events": [e.value for e in WebhookEvent if e.value in SUBSCRIBABLE_EVENTS]
    }


@router.post("/verify-signature", response_model=dict)
async def verify_signature(request: VerifySignatureRequest):
    """
    Check a signature the same way a receiver should.

    Useful for subscribers testing their verification code.
    """
    return {"valid": verify(request.payload, request.signature, request.secret)}


@router.get("/{subscription_id}/stats", response_model=SubscriptionStats)
async def get_stats(
    subscription_id: str,
    tenant_id: str = Depends(get_current_tenant),
    registry: WebhookRegistry = Depends(get_registry)
):
    """Delivery counters and success rate."""
    try:
        return await registry.get_stats(tenant_id, subscription_id)
    except SubscriptionNotFoundError as e:
        raise _not_found(e)


@router.get("/{subscription_id}/attempts", response_model=list[AttemptOut])
async def get_attempts(
    subscription_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    tenant_id: str = Depends(get_current_tenant),
    registry: WebhookRegistry = Depends(get_registry),
    ledger: AttemptLedger = Depends(get_ledger)
):
    """Most recent delivery attempts, newest first."""
    try:
        await registry.get(tenant_id, subscription_id)
    except SubscriptionNotFoundError as e:
        raise _not_found(e)
    return await ledger.list_attempts(tenant_id, subscription_id, limit=limit)


@router.post("/{subscription_id}/test", response_model=dict, status_code=status.HTTP_202_ACCEPTED)
async def send_test(
    subscription_id: str,
    tenant_id: str = Depends(get_current_tenant),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher)
):
    """Queue a test event for this webhook."""
    try:
        job = await dispatcher.send_test(tenant_id, subscription_id)
    except SubscriptionNotFoundError as e:
        raise _not_found(e)
    return {
        "message": "Test webhook queued",
        "delivery_id": job.delivery_id
    }


@router.post("/{subscription_id}/enable", response_model=dict)
async def enable_webhook(
    subscription_id: str,
    admin: TokenPayload = Depends(require_admin),
    registry: WebhookRegistry = Depends(get_registry)
):
    """Re-activate a webhook, including one disabled by the circuit breaker."""
    try:
        subscription = await registry.enable(admin.org_id, subscription_id)
    except SubscriptionNotFoundError as e:
        raise _not_found(e)
    return {
        "message": "Webhook enabled",
        "status": subscription.status.value
    }


@router.post("/{subscription_id}/disable", response_model=dict)
async def disable_webhook(
    subscription_id: str,
    tenant_id: str = Depends(get_current_tenant),
    registry: WebhookRegistry = Depends(get_registry)
):
    """Pause deliveries to a webhook."""
    try:
        subscription = await registry.disable(tenant_id, subscription_id)
    except SubscriptionNotFoundError as e:
        raise _not_found(e)
    return {
        "message": "Webhook disabled",
        "status": subscription.status.value
    }
