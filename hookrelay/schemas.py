"""
Pydantic schemas for the webhook engine.

Filters and delivery jobs are validated here when they cross a boundary
(database JSON, Redis job payloads, HTTP bodies).
"""
import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from hookrelay.models.webhook import AttemptStatus, WebhookStatus


FILTER_OPERATORS = frozenset({
    "equals",
    "not_equals",
    "greater_than",
    "less_than",
    "contains",
    "starts_with",
    "ends_with",
    "in",
})


class FilterCondition(BaseModel):
    """A single field condition, e.g. {"field": "total", "operator": "greater_than", "value": 100}."""
    field: str
    # Kept as a plain string so stored rows with unknown operators still load
    operator: str
    value: Any = None


class WebhookFilters(BaseModel):
    """Filter rules evaluated against the event payload. All groups must pass."""
    model_config = ConfigDict(populate_by_name=True)

    funnel_ids: list[str] | None = Field(default=None, alias="funnelIds")
    product_ids: list[str] | None = Field(default=None, alias="productIds")
    tags: list[str] | None = None
    conditions: list[FilterCondition] | None = None

    def is_empty(self) -> bool:
        return not (self.funnel_ids or self.product_ids or self.tags or self.conditions)

    def unknown_operators(self) -> list[str]:
        return [c.operator for c in self.conditions or [] if c.operator not in FILTER_OPERATORS]


class DeliveryJob(BaseModel):
    """Payload of one queued delivery attempt."""
    delivery_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    subscription_id: str
    tenant_id: str
    event: str
    payload: dict[str, Any]
    attempt_number: int = Field(default=1, ge=1)

    @property
    def job_key(self) -> str:
        """Queue job id; one job per (delivery, attempt) at most."""
        return f"webhook:{self.delivery_id}:{self.attempt_number}"

    def next_attempt(self) -> "DeliveryJob":
        return self.model_copy(update={"attempt_number": self.attempt_number + 1})


class AttemptOutcome(BaseModel):
    """Result of one HTTP try, written to the ledger."""
    status: AttemptStatus
    http_status: int | None = None
    response_body: str | None = None
    response_headers: dict[str, str] | None = None
    error_message: str | None = None
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == AttemptStatus.SUCCESS


class SubscriptionHealth(BaseModel):
    """Counters returned by the ledger after folding in one outcome."""
    status: WebhookStatus
    consecutive_failures: int
    circuit_tripped: bool = False


class DeliveryResult(BaseModel):
    """Returned by the worker for each job (stored as the arq job result)."""
    success: bool
    reason: str | None = None
    attempt: int | None = None
    http_status: int | None = None
    duration_ms: int | None = None
    next_attempt: int | None = None
    delay_ms: int | None = None


# ============================================
# Registry input
# ============================================

class SubscriptionCreate(BaseModel):
    name: str
    description: str | None = None
    url: str
    events: list[str]
    secret: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    filters: WebhookFilters | None = None
    max_retries: int = Field(default=3, ge=1, le=10)
    timeout_ms: int = Field(default=5000, ge=100, le=60000)


class SubscriptionUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    url: str | None = None
    events: list[str] | None = None
    secret: str | None = None
    headers: dict[str, str] | None = None
    filters: WebhookFilters | None = None
    max_retries: int | None = Field(default=None, ge=1, le=10)
    timeout_ms: int | None = Field(default=None, ge=100, le=60000)
    status: WebhookStatus | None = None


# ============================================
# API responses
# ============================================

class SubscriptionStats(BaseModel):
    total_attempts: int
    successful_attempts: int
    failed_attempts: int
    success_rate: float
    consecutive_failures: int
    status: WebhookStatus
    last_triggered_at: datetime | None = None
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None


class AttemptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    subscription_id: str
    delivery_id: str
    event: str
    url: str
    status: AttemptStatus
    attempt_number: int
    http_status: int | None = None
    response_body: str | None = None
    error_message: str | None = None
    duration_ms: int | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None


class VerifySignatureRequest(BaseModel):
    payload: str
    signature: str
    secret: str
