"""
Attempt Ledger

Append-only history of delivery attempts. Completing an attempt also folds
its outcome into the owning subscription's health counters and runs the
circuit breaker, all in one transaction.

SECURITY: All queries MUST include tenant_id filter.
Failure to do so will result in data leakage between tenants.
"""
from typing import Protocol

from sqlalchemy import and_, case, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hookrelay.config import settings
from hookrelay.logging_config import get_logger
from hookrelay.models.base import generate_id, utc_now
from hookrelay.models.webhook import AttemptStatus, DeliveryAttempt, WebhookStatus, WebhookSubscription
from hookrelay.schemas import AttemptOutcome, DeliveryJob, SubscriptionHealth


class AttemptRecorder(Protocol):
    """What the delivery worker needs from the ledger."""

    async def record_attempt(self, subscription: WebhookSubscription, job: DeliveryJob) -> str:
        ...

    async def complete_attempt(
        self, attempt_id: str, subscription_id: str, outcome: AttemptOutcome
    ) -> SubscriptionHealth | None:
        ...


class AttemptLedger:
    """Service for recording delivery attempts and subscription health."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        failure_threshold: int | None = None,
    ):
        self.session_factory = session_factory
        self.failure_threshold = settings.WEBHOOK_FAILURE_THRESHOLD if failure_threshold is None else failure_threshold

    async def record_attempt(self, subscription: WebhookSubscription, job: DeliveryJob) -> str:
        """
        Insert a PENDING attempt right before the HTTP call.

        Returns:
            The new attempt id
        """
        attempt = DeliveryAttempt(
            id=generate_id(),
            subscription_id=subscription.id,
            tenant_id=subscription.tenant_id,
            delivery_id=job.delivery_id,
            event=job.event,
            payload=job.payload,
            url=subscription.url,
            status=AttemptStatus.PENDING,
            attempt_number=job.attempt_number,
        )
        async with self.session_factory() as db:
            db.add(attempt)
            await db.commit()
        return attempt.id

    async def complete_attempt(
        self, attempt_id: str, subscription_id: str, outcome: AttemptOutcome
    ) -> SubscriptionHealth | None:
        """
        Write the outcome of an attempt and update subscription health.

        Both statements are single UPDATEs, so concurrent completions for
        the same subscription never lose an increment.

        Returns:
            Health after this outcome, or None if the attempt was already
            completed or the subscription no longer exists
        """
        now = utc_now()
        log = get_logger(subscription_id=subscription_id, attempt_id=attempt_id)

        async with self.session_factory() as db:
            attempt_stmt = (
                update(DeliveryAttempt)
                .where(
                    DeliveryAttempt.id == attempt_id,
                    DeliveryAttempt.completed_at.is_(None)
                )
                .values(
                    status=outcome.status,
                    http_status=outcome.http_status,
                    response_body=outcome.response_body,
                    response_headers=outcome.response_headers,
                    error_message=outcome.error_message,
                    duration_ms=outcome.duration_ms,
                    completed_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(attempt_stmt)
            if result.rowcount == 0:
                await db.rollback()
                log.warning("webhook_attempt_already_completed")
                return None

            row = (await db.execute(self._health_update(subscription_id, outcome, now))).one_or_none()
            await db.commit()

        if row is None:
            log.warning("webhook_subscription_missing_on_completion")
            return None

        status, consecutive_failures = row
        tripped = (
            not outcome.succeeded
            and status == WebhookStatus.DISABLED
            and consecutive_failures == self.failure_threshold
        )
        if tripped:
            log.error(
                "webhook_circuit_breaker_tripped",
                consecutive_failures=consecutive_failures,
            )
        return SubscriptionHealth(
            status=status,
            consecutive_failures=consecutive_failures,
            circuit_tripped=tripped,
        )

    def _health_update(self, subscription_id: str, outcome: AttemptOutcome, now):
        sub = WebhookSubscription
        values = {
            "total_attempts": sub.total_attempts + 1,
            "last_triggered_at": now,
        }
        if outcome.succeeded:
            values.update(
                successful_attempts=sub.successful_attempts + 1,
                consecutive_failures=0,
                last_success_at=now,
            )
        else:
            failures = sub.consecutive_failures + 1
            values.update(
                failed_attempts=sub.failed_attempts + 1,
                consecutive_failures=failures,
                last_failure_at=now,
                # Circuit breaker: only an ACTIVE subscription trips to DISABLED
                status=case(
                    (
                        and_(sub.status == WebhookStatus.ACTIVE, failures >= self.failure_threshold),
                        WebhookStatus.DISABLED.value,
                    ),
                    else_=sub.status,
                ),
            )
        return (
            update(sub)
            .where(sub.id == subscription_id)
            .values(**values)
            .returning(sub.status, sub.consecutive_failures)
            .execution_options(synchronize_session=False)
        )

    async def list_attempts(self, tenant_id: str, subscription_id: str, limit: int = 50) -> list[DeliveryAttempt]:
        """Most recent attempts for a subscription."""
        async with self.session_factory() as db:
            stmt = (
                select(DeliveryAttempt)
                .where(
                    DeliveryAttempt.subscription_id == subscription_id,
                    DeliveryAttempt.tenant_id == tenant_id
                )
                .order_by(DeliveryAttempt.created_at.desc(), DeliveryAttempt.attempt_number.desc())
                .limit(limit)
            )
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def list_delivery(self, tenant_id: str, delivery_id: str) -> list[DeliveryAttempt]:
        """All attempts of one logical delivery, in attempt order."""
        async with self.session_factory() as db:
            stmt = (
                select(DeliveryAttempt)
                .where(
                    DeliveryAttempt.delivery_id == delivery_id,
                    DeliveryAttempt.tenant_id == tenant_id
                )
                .order_by(DeliveryAttempt.attempt_number)
            )
            result = await db.execute(stmt)
            return list(result.scalars().all())
