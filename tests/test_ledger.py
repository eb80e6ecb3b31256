"""Tests for the attempt ledger and circuit breaker."""
import pytest

from hookrelay.models.webhook import AttemptStatus, WebhookStatus
from hookrelay.schemas import AttemptOutcome, DeliveryJob
from hookrelay.services.attempt_ledger import AttemptLedger

from conftest import TENANT_A, TENANT_B

FAILED = AttemptOutcome(status=AttemptStatus.FAILED, http_status=500, error_message="HTTP 500", duration_ms=12)
SUCCEEDED = AttemptOutcome(status=AttemptStatus.SUCCESS, http_status=200, response_body="ok", duration_ms=8)


def job_for(subscription, attempt_number=1, delivery_id=None):
    values = {
        "subscription_id": subscription.id,
        "tenant_id": subscription.tenant_id,
        "event": "order.created",
        "payload": {"order_id": "o1"},
        "attempt_number": attempt_number,
    }
    if delivery_id:
        values["delivery_id"] = delivery_id
    return DeliveryJob(**values)


async def run_attempt(ledger, subscription, outcome, attempt_number=1):
    attempt_id = await ledger.record_attempt(subscription, job_for(subscription, attempt_number))
    return await ledger.complete_attempt(attempt_id, subscription.id, outcome)


class TestAttemptLedger:
    @pytest.mark.asyncio
    async def test_record_creates_pending_attempt(self, registry, ledger, subscription_data):
        subscription = await registry.create(TENANT_A, subscription_data())
        job = job_for(subscription)

        await ledger.record_attempt(subscription, job)

        [attempt] = await ledger.list_attempts(TENANT_A, subscription.id)
        assert attempt.status == AttemptStatus.PENDING
        assert attempt.delivery_id == job.delivery_id
        assert attempt.url == subscription.url
        assert attempt.payload == {"order_id": "o1"}
        assert attempt.completed_at is None

    @pytest.mark.asyncio
    async def test_complete_writes_outcome_and_counters(self, registry, ledger, subscription_data):
        subscription = await registry.create(TENANT_A, subscription_data())

        health = await run_attempt(ledger, subscription, SUCCEEDED)

        assert health.status == WebhookStatus.ACTIVE
        assert health.consecutive_failures == 0
        [attempt] = await ledger.list_attempts(TENANT_A, subscription.id)
        assert attempt.status == AttemptStatus.SUCCESS
        assert attempt.http_status == 200
        assert attempt.completed_at is not None

        stats = await registry.get_stats(TENANT_A, subscription.id)
        assert stats.total_attempts == 1
        assert stats.successful_attempts == 1
        assert stats.success_rate == 100.0
        assert stats.last_success_at is not None

    @pytest.mark.asyncio
    async def test_attempt_completed_only_once(self, registry, ledger, subscription_data):
        subscription = await registry.create(TENANT_A, subscription_data())
        attempt_id = await ledger.record_attempt(subscription, job_for(subscription))

        assert await ledger.complete_attempt(attempt_id, subscription.id, FAILED) is not None
        assert await ledger.complete_attempt(attempt_id, subscription.id, SUCCEEDED) is None

        [attempt] = await ledger.list_attempts(TENANT_A, subscription.id)
        assert attempt.status == AttemptStatus.FAILED
        stats = await registry.get_stats(TENANT_A, subscription.id)
        assert stats.total_attempts == 1

    @pytest.mark.asyncio
    async def test_circuit_trips_on_tenth_consecutive_failure(self, registry, ledger, subscription_data):
        subscription = await registry.create(TENANT_A, subscription_data())

        for _ in range(9):
            health = await run_attempt(ledger, subscription, FAILED)
            assert health.status == WebhookStatus.ACTIVE
            assert health.circuit_tripped is False

        health = await run_attempt(ledger, subscription, FAILED)
        assert health.status == WebhookStatus.DISABLED
        assert health.consecutive_failures == 10
        assert health.circuit_tripped is True

        # In-flight failures after the trip do not trip it again
        health = await run_attempt(ledger, subscription, FAILED)
        assert health.status == WebhookStatus.DISABLED
        assert health.circuit_tripped is False

        stored = await registry.get(TENANT_A, subscription.id)
        assert stored.status == WebhookStatus.DISABLED
        assert stored.failed_attempts == 11

    @pytest.mark.asyncio
    async def test_success_resets_consecutive_failures(self, registry, ledger, subscription_data):
        subscription = await registry.create(TENANT_A, subscription_data())

        for _ in range(9):
            await run_attempt(ledger, subscription, FAILED)
        health = await run_attempt(ledger, subscription, SUCCEEDED)

        assert health.status == WebhookStatus.ACTIVE
        assert health.consecutive_failures == 0
        stored = await registry.get(TENANT_A, subscription.id)
        assert stored.total_attempts == 10
        assert stored.failed_attempts == 9
        assert stored.successful_attempts == 1

    @pytest.mark.asyncio
    async def test_inactive_subscription_is_not_disabled(self, registry, ledger, subscription_data):
        subscription = await registry.create(TENANT_A, subscription_data())
        await registry.disable(TENANT_A, subscription.id)

        for _ in range(10):
            health = await run_attempt(ledger, subscription, FAILED)

        assert health.status == WebhookStatus.INACTIVE
        assert health.circuit_tripped is False

    @pytest.mark.asyncio
    async def test_missing_subscription_returns_none(self, registry, ledger, subscription_data):
        subscription = await registry.create(TENANT_A, subscription_data())
        attempt_id = await ledger.record_attempt(subscription, job_for(subscription))

        assert await ledger.complete_attempt(attempt_id, "no-such-subscription", FAILED) is None

    @pytest.mark.asyncio
    async def test_list_attempts_newest_first_and_limited(self, registry, ledger, subscription_data):
        subscription = await registry.create(TENANT_A, subscription_data())
        for attempt_number in (1, 2, 3):
            await run_attempt(ledger, subscription, FAILED, attempt_number=attempt_number)

        attempts = await ledger.list_attempts(TENANT_A, subscription.id, limit=2)
        assert [a.attempt_number for a in attempts] == [3, 2]

    @pytest.mark.asyncio
    async def test_list_delivery_in_attempt_order(self, registry, ledger, subscription_data):
        subscription = await registry.create(TENANT_A, subscription_data())
        first = job_for(subscription)
        for job in (first, first.next_attempt(), first.next_attempt().next_attempt()):
            attempt_id = await ledger.record_attempt(subscription, job)
            await ledger.complete_attempt(attempt_id, subscription.id, FAILED)

        attempts = await ledger.list_delivery(TENANT_A, first.delivery_id)
        assert [a.attempt_number for a in attempts] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_history_is_tenant_scoped(self, registry, ledger, subscription_data):
        subscription = await registry.create(TENANT_A, subscription_data())
        await run_attempt(ledger, subscription, SUCCEEDED)

        assert await ledger.list_attempts(TENANT_B, subscription.id) == []

    def test_explicit_threshold_kept(self):
        session_factory = object()
        assert AttemptLedger(session_factory, failure_threshold=0).failure_threshold == 0
        assert AttemptLedger(session_factory).failure_threshold == 10
