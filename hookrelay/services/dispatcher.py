"""
Webhook Dispatcher

Entry point for business modules: `trigger(tenant_id, event, payload)` finds
matching subscriptions and enqueues one delivery job per subscription. It
never waits for a delivery to happen.
"""
from datetime import datetime, timezone
from typing import Any

from hookrelay.logging_config import get_logger
from hookrelay.models.webhook import WebhookEvent
from hookrelay.queue import DeliveryQueue
from hookrelay.routes.metrics import track_job_enqueued, track_trigger
from hookrelay.schemas import DeliveryJob
from hookrelay.services.filters import matches
from hookrelay.services.registry import WebhookRegistry


class WebhookDispatcher:
    """Fans an event out to the subscriptions that want it."""

    def __init__(self, registry: WebhookRegistry, queue: DeliveryQueue):
        self.registry = registry
        self.queue = queue

    async def trigger(self, tenant_id: str, event: WebhookEvent | str, payload: dict[str, Any]) -> list[DeliveryJob]:
        """
        Enqueue deliveries of `event` to every matching active subscription.

        Args:
            tenant_id: Tenant that produced the event
            event: Event name, e.g. "order.created"
            payload: Business data, delivered as the envelope's "data"

        Returns:
            The jobs that were enqueued (empty if nothing matched)
        """
        event = str(getattr(event, "value", event))
        log = get_logger(tenant_id=tenant_id, event=event)
        track_trigger(event)

        candidates = await self.registry.find_by_event(tenant_id, event)
        if not candidates:
            log.debug("webhook_trigger_no_subscriptions")
            return []

        jobs = []
        for subscription in candidates:
            if not matches(subscription, payload):
                log.debug("webhook_filtered_out", subscription_id=subscription.id)
                continue

            job = DeliveryJob(
                subscription_id=subscription.id,
                tenant_id=tenant_id,
                event=event,
                payload=payload,
                attempt_number=1,
            )
            await self.queue.enqueue(job)
            track_job_enqueued(event)
            jobs.append(job)

        log.info("webhook_triggered", candidates=len(candidates), enqueued=len(jobs))
        return jobs

    async def send_test(self, tenant_id: str, subscription_id: str) -> DeliveryJob:
        """
        Enqueue a test event for one subscription, ignoring its event list
        and filters.

        Raises:
            SubscriptionNotFoundError: unknown subscription for this tenant
        """
        subscription = await self.registry.get(tenant_id, subscription_id)
        job = DeliveryJob(
            subscription_id=subscription.id,
            tenant_id=tenant_id,
            event=WebhookEvent.TEST.value,
            payload={
                "test": True,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "message": "This is a test webhook",
            },
        )
        await self.queue.enqueue(job)
        track_job_enqueued(job.event)
        get_logger(tenant_id=tenant_id, subscription_id=subscription_id).info(
            "webhook_test_enqueued", delivery_id=job.delivery_id
        )
        return job
