"""
Delivery job queue.

The dispatcher and the delivery worker receive a DeliveryQueue handle at
construction time. ArqDeliveryQueue publishes jobs to Redis through arq.
"""
from datetime import timedelta
from typing import Protocol

from arq import ArqRedis, create_pool
from arq.connections import RedisSettings

from hookrelay.config import settings
from hookrelay.logging_config import get_logger
from hookrelay.schemas import DeliveryJob

# Name of the arq task in hookrelay.worker
DELIVER_WEBHOOK_TASK = "deliver_webhook"


class DeliveryQueue(Protocol):
    """Anything that can schedule a delivery job."""

    async def enqueue(self, job: DeliveryJob, delay: timedelta | None = None) -> bool:
        ...


class ArqDeliveryQueue:
    """DeliveryQueue backed by an arq Redis pool."""

    def __init__(self, redis: ArqRedis, queue_name: str | None = None):
        self._redis = redis
        self._queue_name = queue_name or settings.WEBHOOK_QUEUE_NAME

    async def enqueue(self, job: DeliveryJob, delay: timedelta | None = None) -> bool:
        """
        Publish a delivery job, optionally deferred.

        Returns False when a job with the same (delivery, attempt) key already
        exists; Redis errors propagate.
        """
        queued = await self._redis.enqueue_job(
            DELIVER_WEBHOOK_TASK,
            job.model_dump(mode="json"),
            _job_id=job.job_key,
            _queue_name=self._queue_name,
            _defer_by=delay if delay and delay.total_seconds() > 0 else None,
        )

        log = get_logger(
            tenant_id=job.tenant_id,
            subscription_id=job.subscription_id,
            delivery_id=job.delivery_id,
            attempt=job.attempt_number,
        )
        if queued is None:
            log.warning("webhook_job_duplicate", job_id=job.job_key)
            return False

        log.info(
            "webhook_job_enqueued",
            job_id=job.job_key,
            delay_ms=int(delay.total_seconds() * 1000) if delay else 0,
        )
        return True

    async def close(self) -> None:
        await self._redis.aclose()


async def create_delivery_queue(redis_url: str | None = None) -> ArqDeliveryQueue:
    """Open an arq pool for processes that only produce jobs (the API)."""
    redis = await create_pool(
        RedisSettings.from_dsn(redis_url or settings.REDIS_URL),
        default_queue_name=settings.WEBHOOK_QUEUE_NAME,
    )
    return ArqDeliveryQueue(redis)
