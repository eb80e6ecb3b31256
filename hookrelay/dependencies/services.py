"""
Service dependencies for FastAPI routes.

Services are built from the process-wide session factory and the queue
handle created at startup (see hookrelay.main).
"""
from fastapi import Depends, HTTPException, Request, status

from hookrelay.database import AsyncSessionLocal
from hookrelay.queue import DeliveryQueue
from hookrelay.services.attempt_ledger import AttemptLedger
from hookrelay.services.dispatcher import WebhookDispatcher
from hookrelay.services.registry import WebhookRegistry


def get_registry() -> WebhookRegistry:
    return WebhookRegistry(AsyncSessionLocal)


def get_ledger() -> AttemptLedger:
    return AttemptLedger(AsyncSessionLocal)


def get_delivery_queue(request: Request) -> DeliveryQueue:
    queue = getattr(request.app.state, "delivery_queue", None)
    if queue is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Delivery queue unavailable"
        )
    return queue


def get_dispatcher(
    registry: WebhookRegistry = Depends(get_registry),
    queue: DeliveryQueue = Depends(get_delivery_queue),
) -> WebhookDispatcher:
    return WebhookDispatcher(registry, queue)
