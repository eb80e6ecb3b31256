"""
ARQ Background Worker for HookRelay.

Processes webhook delivery jobs from the Redis queue.
Run with: arq hookrelay.worker.WorkerSettings
"""
import asyncio

from arq.connections import RedisSettings

from hookrelay.config import settings
from hookrelay.database import AsyncSessionLocal
from hookrelay.logging_config import configure_logging, logger
from hookrelay.queue import ArqDeliveryQueue
from hookrelay.schemas import DeliveryJob
from hookrelay.sentry_config import capture_exception, configure_sentry
from hookrelay.services.attempt_ledger import AttemptLedger
from hookrelay.services.delivery import DeliveryWorker, create_http_client
from hookrelay.services.registry import WebhookRegistry


async def deliver_webhook(ctx: dict, job_data: dict) -> dict:
    """
    Deliver one webhook attempt.

    Retries are scheduled by DeliveryWorker as new deferred jobs, so this
    task only raises on infrastructure errors (database, Redis).
    """
    job = DeliveryJob.model_validate(job_data)
    worker: DeliveryWorker = ctx["delivery_worker"]

    try:
        result = await worker.deliver(job)
    except Exception:
        logger.exception(
            "webhook_job_crashed",
            tenant_id=job.tenant_id,
            subscription_id=job.subscription_id,
            delivery_id=job.delivery_id,
            attempt=job.attempt_number,
        )
        capture_exception(tenant_id=job.tenant_id, subscription_id=job.subscription_id)
        raise

    return result.model_dump()


async def startup(ctx: dict) -> None:
    """Build the delivery worker once per process."""
    configure_logging()
    configure_sentry()

    http_client = create_http_client()
    ctx["http_client"] = http_client
    ctx["delivery_worker"] = DeliveryWorker(
        subscriptions=WebhookRegistry(AsyncSessionLocal),
        attempts=AttemptLedger(AsyncSessionLocal),
        queue=ArqDeliveryQueue(ctx["redis"], settings.WEBHOOK_QUEUE_NAME),
        http_client=http_client,
    )
    logger.info(
        "webhook_worker_started",
        queue=settings.WEBHOOK_QUEUE_NAME,
        concurrency=settings.WEBHOOK_WORKER_CONCURRENCY,
    )


async def shutdown(ctx: dict) -> None:
    http_client = ctx.get("http_client")
    if http_client is not None:
        await http_client.aclose()
    logger.info("webhook_worker_stopped")


# Register functions for ARQ
ARQ_FUNCTIONS = [
    deliver_webhook,
]


async def main():
    """Run the worker using arq cli."""
    print("Use: arq hookrelay.worker.WorkerSettings")
    print(f"Redis: {settings.REDIS_URL}")


class WorkerSettings:
    """Settings for ARQ worker - use with 'arq hookrelay.worker.WorkerSettings'"""
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    queue_name = settings.WEBHOOK_QUEUE_NAME
    functions = ARQ_FUNCTIONS
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = settings.WEBHOOK_WORKER_CONCURRENCY
    job_timeout = settings.WEBHOOK_JOB_TIMEOUT
    # The engine schedules its own retries with backoff
    max_tries = 1
    keep_result = 3600


if __name__ == "__main__":
    asyncio.run(main())
