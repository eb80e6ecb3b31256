"""
Webhook models.

WebhookSubscription is a tenant's registered endpoint together with its
delivery policy and health counters. DeliveryAttempt is one HTTP try of one
delivery.

SECURITY: All queries MUST include tenant_id filter.
Failure to do so will result in data leakage between tenants.
"""
import enum
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hookrelay.models.base import Base, TimestampMixin, generate_id


class WebhookStatus(str, enum.Enum):
    """Subscription status enum."""
    ACTIVE = "active"
    INACTIVE = "inactive"  # set by the tenant
    DISABLED = "disabled"  # set by the circuit breaker


class AttemptStatus(str, enum.Enum):
    """Delivery attempt status enum."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    RETRYING = "retrying"


class WebhookEvent(str, enum.Enum):
    """Events a subscription can listen to."""
    # Funnel events
    FUNNEL_CREATED = "funnel.created"
    FUNNEL_UPDATED = "funnel.updated"
    FUNNEL_DELETED = "funnel.deleted"

    # Contact events
    CONTACT_CREATED = "contact.created"
    CONTACT_UPDATED = "contact.updated"
    CONTACT_DELETED = "contact.deleted"
    CONTACT_TAGGED = "contact.tagged"

    # Order events
    ORDER_CREATED = "order.created"
    ORDER_UPDATED = "order.updated"
    ORDER_COMPLETED = "order.completed"
    ORDER_CANCELLED = "order.cancelled"
    ORDER_REFUNDED = "order.refunded"

    # Form events
    FORM_SUBMITTED = "form.submitted"

    # Email events
    EMAIL_SENT = "email.sent"
    EMAIL_OPENED = "email.opened"
    EMAIL_CLICKED = "email.clicked"
    EMAIL_BOUNCED = "email.bounced"
    EMAIL_UNSUBSCRIBED = "email.unsubscribed"

    # Billing subscription events
    SUBSCRIPTION_CREATED = "subscription.created"
    SUBSCRIPTION_UPDATED = "subscription.updated"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    SUBSCRIPTION_PAYMENT_SUCCEEDED = "subscription.payment_succeeded"
    SUBSCRIPTION_PAYMENT_FAILED = "subscription.payment_failed"

    # Affiliate events
    AFFILIATE_CREATED = "affiliate.created"
    AFFILIATE_COMMISSION_EARNED = "affiliate.commission_earned"
    AFFILIATE_COMMISSION_PAID = "affiliate.commission_paid"

    CUSTOM = "custom"

    # Only sent by WebhookDispatcher.send_test
    TEST = "test"


def _enum_column(enum_cls):
    # Store enum values ("active"), not member names ("ACTIVE")
    return SQLEnum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=20,
        values_callable=lambda members: [member.value for member in members],
    )


class WebhookSubscription(Base, TimestampMixin):
    """
    A tenant's registered webhook endpoint.

    Health counters are owned by the attempt ledger and only ever changed
    through single UPDATE statements.
    """
    __tablename__ = "webhook_subscriptions"
    __table_args__ = (
        Index("ix_webhook_subscriptions_tenant_status", "tenant_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    url: Mapped[str] = mapped_column(String(500), nullable=False)
    events: Mapped[list[str]] = mapped_column(nullable=False)
    status: Mapped[WebhookStatus] = mapped_column(
        _enum_column(WebhookStatus),
        nullable=False,
        default=WebhookStatus.ACTIVE
    )
    secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    headers: Mapped[dict[str, str]] = mapped_column(nullable=False, default=dict)
    filters: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    timeout_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=5000)

    # Health counters
    total_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    consecutive_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_triggered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_success_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_failure_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    attempts = relationship(
        "DeliveryAttempt",
        back_populates="subscription",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def success_rate(self) -> float:
        """Percentage of successful attempts, 0 when nothing was sent yet."""
        if not self.total_attempts:
            return 0.0
        return round(self.successful_attempts / self.total_attempts * 100, 2)

    def __repr__(self):
        return f"<WebhookSubscription(id={self.id}, tenant_id={self.tenant_id}, status={self.status})>"


class DeliveryAttempt(Base, TimestampMixin):
    """
    One HTTP try of one delivery.

    Created PENDING right before the request and completed exactly once.
    """
    __tablename__ = "webhook_delivery_attempts"
    __table_args__ = (
        Index("ix_webhook_delivery_attempts_subscription_created", "subscription_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    subscription_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("webhook_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    delivery_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    event: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    url: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[AttemptStatus] = mapped_column(
        _enum_column(AttemptStatus),
        nullable=False,
        default=AttemptStatus.PENDING,
        index=True
    )
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    http_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_headers: Mapped[dict[str, str] | None] = mapped_column(nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    subscription = relationship("WebhookSubscription", back_populates="attempts")

    def __repr__(self):
        return (
            f"<DeliveryAttempt(id={self.id}, subscription_id={self.subscription_id}, "
            f"attempt={self.attempt_number}, status={self.status})>"
        )
