"""
Webhook Delivery Worker

Handles one delivery job: sign, POST, record the outcome and, on failure,
schedule the next attempt with exponential backoff.
"""
import asyncio
import json
import random
import time
from datetime import datetime, timedelta, timezone

import httpx

from hookrelay.config import settings
from hookrelay.logging_config import get_logger
from hookrelay.models.webhook import AttemptStatus, WebhookStatus, WebhookSubscription
from hookrelay.queue import DeliveryQueue
from hookrelay.routes.metrics import (
    track_attempt,
    track_circuit_trip,
    track_delivery_exhausted,
    track_job_enqueued,
    track_job_skipped,
)
from hookrelay.schemas import AttemptOutcome, DeliveryJob, DeliveryResult
from hookrelay.services.attempt_ledger import AttemptRecorder
from hookrelay.services.registry import SubscriptionLookup
from hookrelay.services.signing import SIGNATURE_ALGORITHM, sign

MAX_RESPONSE_HEADERS = 50
MAX_HEADER_VALUE_LENGTH = 500


def retry_delay(
    attempt_number: int,
    base_ms: int | None = None,
    max_ms: int | None = None,
    jitter: float | None = None,
    rng: random.Random | None = None,
) -> timedelta:
    """
    Backoff before the attempt that follows `attempt_number`.

    min(2^attempt * base * (1 +/- jitter), max): ~2s after the first
    failure, ~4s after the second, never more than an hour.
    """
    base_ms = settings.WEBHOOK_RETRY_BASE_MS if base_ms is None else base_ms
    max_ms = settings.WEBHOOK_RETRY_MAX_MS if max_ms is None else max_ms
    jitter = settings.WEBHOOK_RETRY_JITTER if jitter is None else jitter
    rng = rng or random

    # Exponent is bounded so huge attempt numbers don't build giant ints
    exponential = (2 ** min(attempt_number, 32)) * base_ms
    factor = 1 + rng.uniform(-jitter, jitter) if jitter else 1
    return timedelta(milliseconds=min(exponential * factor, max_ms))


def build_envelope(job: DeliveryJob, sent_at: datetime | None = None) -> dict:
    """The JSON document POSTed to the subscriber."""
    sent_at = sent_at or datetime.now(timezone.utc)
    return {
        "event": job.event,
        "data": job.payload,
        "webhook_id": job.subscription_id,
        "timestamp": sent_at.isoformat(),
        "attempt": job.attempt_number,
    }


def serialize_envelope(envelope: dict) -> bytes:
    """Deterministic encoding; these exact bytes are signed and sent."""
    return json.dumps(
        envelope, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
    ).encode("utf-8")


def build_headers(subscription: WebhookSubscription, job: DeliveryJob, body: bytes) -> dict[str, str]:
    """Standard headers, then the subscription's custom headers, then the signature."""
    headers = {
        "Content-Type": "application/json",
        "User-Agent": settings.WEBHOOK_USER_AGENT,
        "X-Webhook-Event": job.event,
        "X-Webhook-ID": subscription.id,
        "X-Webhook-Attempt": str(job.attempt_number),
    }
    headers.update({str(k): str(v) for k, v in (subscription.headers or {}).items()})

    if subscription.secret:
        headers["X-Webhook-Signature"] = sign(body, subscription.secret)
        headers["X-Webhook-Signature-Algorithm"] = SIGNATURE_ALGORITHM
    return headers


def create_http_client(transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """Shared client for all deliveries of a worker process."""
    return httpx.AsyncClient(
        transport=transport,
        follow_redirects=True,
        max_redirects=settings.WEBHOOK_MAX_REDIRECTS,
        timeout=settings.WEBHOOK_DEFAULT_TIMEOUT_MS / 1000,
    )


def _truncate(text: str | None, limit: int) -> str | None:
    if not text:
        return None
    return text[:limit]


def _truncate_headers(headers: httpx.Headers) -> dict[str, str]:
    truncated = {}
    for key, value in headers.items():
        if len(truncated) >= MAX_RESPONSE_HEADERS:
            break
        truncated[key] = value[:MAX_HEADER_VALUE_LENGTH]
    return truncated


class DeliveryWorker:
    """
    Delivers one job at a time; many instances of `deliver` may run
    concurrently on the same worker object.

    Collaborators are injected:
    - subscriptions: SubscriptionLookup (the registry)
    - attempts: AttemptRecorder (the ledger)
    - queue: DeliveryQueue used to schedule retries
    - http_client: shared httpx.AsyncClient
    """

    def __init__(
        self,
        subscriptions: SubscriptionLookup,
        attempts: AttemptRecorder,
        queue: DeliveryQueue,
        http_client: httpx.AsyncClient,
        response_body_limit: int | None = None,
    ):
        self.subscriptions = subscriptions
        self.attempts = attempts
        self.queue = queue
        self.http_client = http_client
        self.response_body_limit = (
            settings.WEBHOOK_RESPONSE_BODY_LIMIT if response_body_limit is None else response_body_limit
        )

    async def deliver(self, job: DeliveryJob) -> DeliveryResult:
        """Run one attempt of a delivery and decide what happens next."""
        log = get_logger(
            tenant_id=job.tenant_id,
            subscription_id=job.subscription_id,
            delivery_id=job.delivery_id,
            attempt=job.attempt_number,
        )

        subscription = await self.subscriptions.get_for_delivery(job.tenant_id, job.subscription_id)
        if subscription is None:
            log.warning("webhook_not_found")
            track_job_skipped("webhook_not_found")
            return DeliveryResult(success=False, reason="webhook_not_found", attempt=job.attempt_number)

        if subscription.status != WebhookStatus.ACTIVE:
            log.info("webhook_inactive", status=subscription.status.value)
            track_job_skipped("webhook_inactive")
            return DeliveryResult(success=False, reason="webhook_inactive", attempt=job.attempt_number)

        attempt_id = await self.attempts.record_attempt(subscription, job)

        log.info("webhook_sending", url=subscription.url)
        start_time = time.monotonic()
        try:
            body = serialize_envelope(build_envelope(job))
            headers = build_headers(subscription, job, body)
            outcome = await self._post(subscription, body, headers)
        except Exception as e:
            # The attempt row exists; it must still be completed
            log.exception("webhook_attempt_error")
            outcome = AttemptOutcome(
                status=AttemptStatus.FAILED,
                error_message=f"Delivery error: {e.__class__.__name__}: {e}",
                duration_ms=int((time.monotonic() - start_time) * 1000),
            )
        track_attempt(job.tenant_id, outcome.status.value, outcome.duration_ms / 1000)

        health = await self.attempts.complete_attempt(attempt_id, subscription.id, outcome)

        if outcome.succeeded:
            log.info("webhook_delivered", http_status=outcome.http_status, duration_ms=outcome.duration_ms)
            return DeliveryResult(
                success=True,
                attempt=job.attempt_number,
                http_status=outcome.http_status,
                duration_ms=outcome.duration_ms,
            )

        log.warning(
            "webhook_delivery_failed",
            http_status=outcome.http_status,
            error=outcome.error_message,
            duration_ms=outcome.duration_ms,
        )
        failed = DeliveryResult(
            success=False,
            attempt=job.attempt_number,
            http_status=outcome.http_status,
            duration_ms=outcome.duration_ms,
        )

        if health is None:
            # Subscription deleted while the request was in flight
            return failed.model_copy(update={"reason": "webhook_not_found"})

        if health.circuit_tripped:
            track_circuit_trip(job.tenant_id)

        if health.status == WebhookStatus.INACTIVE:
            # Paused by the tenant while the request was in flight
            log.info("webhook_inactive", status=health.status.value)
            return failed.model_copy(update={"reason": "webhook_inactive"})

        if health.status != WebhookStatus.ACTIVE:
            log.error("webhook_circuit_open", status=health.status.value, consecutive_failures=health.consecutive_failures)
            return failed.model_copy(update={"reason": "circuit_open"})

        if job.attempt_number >= subscription.max_retries:
            log.error("webhook_retries_exhausted", max_retries=subscription.max_retries)
            track_delivery_exhausted(job.tenant_id)
            return failed.model_copy(update={"reason": "max_retries_exceeded"})

        delay = retry_delay(job.attempt_number)
        next_job = job.next_attempt()
        await self.queue.enqueue(next_job, delay=delay)
        track_job_enqueued(job.event, retry=True)

        delay_ms = int(delay.total_seconds() * 1000)
        log.info("webhook_retry_scheduled", next_attempt=next_job.attempt_number, delay_ms=delay_ms)
        return failed.model_copy(update={
            "reason": "retry_scheduled",
            "next_attempt": next_job.attempt_number,
            "delay_ms": delay_ms,
        })

    async def _post(self, subscription: WebhookSubscription, body: bytes, headers: dict[str, str]) -> AttemptOutcome:
        """
        POST the envelope; every transport problem becomes a FAILED outcome.

        timeout_ms bounds the whole exchange (connect, redirects, body), not
        each network read.
        """
        start_time = time.monotonic()
        timeout_ms = subscription.timeout_ms or settings.WEBHOOK_DEFAULT_TIMEOUT_MS
        timeout = timeout_ms / 1000

        def elapsed_ms() -> int:
            return int((time.monotonic() - start_time) * 1000)

        try:
            response, raw_body = await asyncio.wait_for(
                self._send(subscription.url, body, headers, timeout),
                timeout=timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            return AttemptOutcome(
                status=AttemptStatus.FAILED,
                error_message=f"Timeout after {timeout_ms}ms: {e.__class__.__name__}",
                duration_ms=elapsed_ms(),
            )
        except httpx.TooManyRedirects as e:
            return AttemptOutcome(
                status=AttemptStatus.FAILED,
                error_message=f"Too many redirects: {e}",
                duration_ms=elapsed_ms(),
            )
        except httpx.RequestError as e:
            return AttemptOutcome(
                status=AttemptStatus.FAILED,
                error_message=f"No response: {e.__class__.__name__}: {e}",
                duration_ms=elapsed_ms(),
            )

        duration_ms = elapsed_ms()
        succeeded = 200 <= response.status_code < 300
        text = raw_body.decode(response.charset_encoding or "utf-8", errors="replace")
        return AttemptOutcome(
            status=AttemptStatus.SUCCESS if succeeded else AttemptStatus.FAILED,
            http_status=response.status_code,
            response_body=_truncate(text, self.response_body_limit),
            response_headers=_truncate_headers(response.headers),
            error_message=None if succeeded else f"HTTP {response.status_code}",
            duration_ms=duration_ms,
        )

    async def _send(
        self, url: str, body: bytes, headers: dict[str, str], timeout: float
    ) -> tuple[httpx.Response, bytes]:
        """Stream the response, keeping at most response_body_limit bytes of body."""
        limit = self.response_body_limit
        chunks = []
        received = 0
        async with self.http_client.stream("POST", url, content=body, headers=headers, timeout=timeout) as response:
            if limit > 0:
                async for chunk in response.aiter_bytes():
                    chunks.append(chunk)
                    received += len(chunk)
                    if received >= limit:
                        break
        return response, b"".join(chunks)[:limit]
