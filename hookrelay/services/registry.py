"""
Webhook Registry

Durable store of webhook subscriptions.

SECURITY: All queries MUST include tenant_id filter.
Failure to do so will result in data leakage between tenants.
"""
import re
from typing import Iterable, Protocol
from urllib.parse import urlparse

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hookrelay.exceptions import InvalidSubscriptionError, SubscriptionNotFoundError
from hookrelay.logging_config import get_logger
from hookrelay.models.webhook import WebhookEvent, WebhookStatus, WebhookSubscription
from hookrelay.schemas import SubscriptionCreate, SubscriptionStats, SubscriptionUpdate, WebhookFilters

SUBSCRIBABLE_EVENTS = frozenset(e.value for e in WebhookEvent if e is not WebhookEvent.TEST)

# RFC 9110 field-name token
_HEADER_NAME = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")

# Columns that are NOT NULL and have no sensible "cleared" value
_REQUIRED_FIELDS = ("name", "url", "events", "max_retries", "timeout_ms")


class SubscriptionLookup(Protocol):
    """What the delivery worker needs from the registry."""

    async def get_for_delivery(self, tenant_id: str, subscription_id: str) -> WebhookSubscription | None:
        ...


def _validate_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidSubscriptionError(f"Webhook URL must be http(s): {url!r}")
    return url


def _validate_events(events: Iterable[str]) -> list[str]:
    events = list(dict.fromkeys(str(getattr(e, "value", e)) for e in events))
    if not events:
        raise InvalidSubscriptionError("A webhook must subscribe to at least one event")
    unknown = [e for e in events if e not in SUBSCRIBABLE_EVENTS]
    if unknown:
        raise InvalidSubscriptionError(f"Unknown webhook events: {', '.join(unknown)}")
    return events


def _validate_headers(headers: dict[str, str] | None) -> dict[str, str]:
    headers = dict(headers or {})
    for name, value in headers.items():
        if not _HEADER_NAME.match(name):
            raise InvalidSubscriptionError(f"Invalid header name: {name!r}")
        # httpx encodes header values as ASCII; CR/LF would split the header
        if not value.isascii() or any(c in value for c in "\r\n\0"):
            raise InvalidSubscriptionError(f"Invalid value for header {name!r}: must be ASCII without line breaks")
    return headers


def _validate_filters(filters: WebhookFilters | None) -> dict:
    if filters is None:
        return {}
    unknown = filters.unknown_operators()
    if unknown:
        raise InvalidSubscriptionError(f"Unknown filter operators: {', '.join(unknown)}")
    return filters.model_dump(exclude_none=True)


class WebhookRegistry:
    """Service for managing webhook subscriptions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(self, tenant_id: str, data: SubscriptionCreate) -> WebhookSubscription:
        """
        Register a new ACTIVE subscription.

        Raises:
            InvalidSubscriptionError: bad URL, unknown events or filter operators
        """
        subscription = WebhookSubscription(
            tenant_id=tenant_id,
            name=data.name,
            description=data.description,
            url=_validate_url(data.url),
            events=_validate_events(data.events),
            status=WebhookStatus.ACTIVE,
            secret=data.secret or None,
            headers=_validate_headers(data.headers),
            filters=_validate_filters(data.filters),
            max_retries=data.max_retries,
            timeout_ms=data.timeout_ms,
        )
        async with self.session_factory() as db:
            db.add(subscription)
            await db.commit()
            await db.refresh(subscription)

        get_logger(tenant_id=tenant_id, subscription_id=subscription.id).info(
            "webhook_subscription_created", events=subscription.events
        )
        return subscription

    async def get(self, tenant_id: str, subscription_id: str) -> WebhookSubscription:
        """Get subscription by ID within tenant, raising if missing."""
        subscription = await self.get_for_delivery(tenant_id, subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(subscription_id, tenant_id)
        return subscription

    async def get_for_delivery(self, tenant_id: str, subscription_id: str) -> WebhookSubscription | None:
        """Get subscription by ID within tenant."""
        async with self.session_factory() as db:
            stmt = select(WebhookSubscription).where(
                WebhookSubscription.id == subscription_id,
                WebhookSubscription.tenant_id == tenant_id
            )
            result = await db.execute(stmt)
            return result.scalar_one_or_none()

    async def list_for_tenant(self, tenant_id: str) -> list[WebhookSubscription]:
        """Get all subscriptions for a tenant, newest first."""
        async with self.session_factory() as db:
            stmt = (
                select(WebhookSubscription)
                .where(WebhookSubscription.tenant_id == tenant_id)
                .order_by(WebhookSubscription.created_at.desc())
            )
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def find_by_event(self, tenant_id: str, event: str) -> list[WebhookSubscription]:
        """
        Active subscriptions of a tenant that listen to `event`.

        Events are a JSON list, so membership is checked after the
        (tenant_id, status) index has narrowed the rows.
        """
        event = str(getattr(event, "value", event))
        async with self.session_factory() as db:
            stmt = select(WebhookSubscription).where(
                WebhookSubscription.tenant_id == tenant_id,
                WebhookSubscription.status == WebhookStatus.ACTIVE
            )
            result = await db.execute(stmt)
            return [s for s in result.scalars().all() if event in (s.events or [])]

    async def update(self, tenant_id: str, subscription_id: str, data: SubscriptionUpdate) -> WebhookSubscription:
        """
        Apply a configuration change. Health counters are never touched here;
        status changes go through enable()/disable().
        """
        changes = data.model_dump(exclude_unset=True, exclude={"status", "filters"})
        nulled = [key for key in _REQUIRED_FIELDS if key in changes and changes[key] is None]
        if nulled:
            raise InvalidSubscriptionError(f"Fields cannot be null: {', '.join(nulled)}")
        if "headers" in changes:
            changes["headers"] = _validate_headers(changes["headers"])
        if "secret" in changes:
            changes["secret"] = changes["secret"] or None
        if "url" in changes:
            _validate_url(changes["url"])
        if "events" in changes:
            changes["events"] = _validate_events(changes["events"])
        if "filters" in data.model_fields_set:
            changes["filters"] = _validate_filters(data.filters)

        async with self.session_factory() as db:
            stmt = select(WebhookSubscription).where(
                WebhookSubscription.id == subscription_id,
                WebhookSubscription.tenant_id == tenant_id
            )
            subscription = (await db.execute(stmt)).scalar_one_or_none()
            if subscription is None:
                raise SubscriptionNotFoundError(subscription_id, tenant_id)
            for key, value in changes.items():
                setattr(subscription, key, value)
            await db.commit()

        if data.status == WebhookStatus.ACTIVE:
            return await self.enable(tenant_id, subscription_id)
        if data.status is not None:
            return await self._set_status(tenant_id, subscription_id, data.status)
        return await self.get(tenant_id, subscription_id)

    async def enable(self, tenant_id: str, subscription_id: str) -> WebhookSubscription:
        """
        Re-activate a subscription, closing the circuit breaker.

        This is the only way out of DISABLED; consecutive_failures restarts at 0.
        """
        subscription = await self._set_status(
            tenant_id, subscription_id, WebhookStatus.ACTIVE, consecutive_failures=0
        )
        get_logger(tenant_id=tenant_id, subscription_id=subscription_id).info("webhook_subscription_enabled")
        return subscription

    async def disable(self, tenant_id: str, subscription_id: str) -> WebhookSubscription:
        """User-initiated pause (INACTIVE)."""
        subscription = await self._set_status(tenant_id, subscription_id, WebhookStatus.INACTIVE)
        get_logger(tenant_id=tenant_id, subscription_id=subscription_id).info("webhook_subscription_deactivated")
        return subscription

    async def _set_status(self, tenant_id: str, subscription_id: str, status: WebhookStatus, **values) -> WebhookSubscription:
        async with self.session_factory() as db:
            stmt = (
                update(WebhookSubscription)
                .where(
                    WebhookSubscription.id == subscription_id,
                    WebhookSubscription.tenant_id == tenant_id
                )
                .values(status=status, **values)
            )
            result = await db.execute(stmt)
            await db.commit()
        if result.rowcount == 0:
            raise SubscriptionNotFoundError(subscription_id, tenant_id)
        return await self.get(tenant_id, subscription_id)

    async def delete(self, tenant_id: str, subscription_id: str) -> None:
        """Remove a subscription and its attempt history."""
        async with self.session_factory() as db:
            stmt = delete(WebhookSubscription).where(
                WebhookSubscription.id == subscription_id,
                WebhookSubscription.tenant_id == tenant_id
            )
            result = await db.execute(stmt)
            await db.commit()
        if result.rowcount == 0:
            raise SubscriptionNotFoundError(subscription_id, tenant_id)

    async def get_stats(self, tenant_id: str, subscription_id: str) -> SubscriptionStats:
        """Health counters and success rate for one subscription."""
        subscription = await self.get(tenant_id, subscription_id)
        return SubscriptionStats(
            total_attempts=subscription.total_attempts,
            successful_attempts=subscription.successful_attempts,
            failed_attempts=subscription.failed_attempts,
            success_rate=subscription.success_rate,
            consecutive_failures=subscription.consecutive_failures,
            status=subscription.status,
            last_triggered_at=subscription.last_triggered_at,
            last_success_at=subscription.last_success_at,
            last_failure_at=subscription.last_failure_at,
        )
