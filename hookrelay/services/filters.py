"""
Filter evaluation for webhook subscriptions.

`matches` is pure: it decides whether an event payload passes a
subscription's filter rules. Every configured group must pass.
"""
from typing import Any, Mapping

import structlog

from hookrelay.models.webhook import WebhookSubscription
from hookrelay.schemas import FilterCondition, WebhookFilters

logger = structlog.get_logger()

_MISSING = object()


def _lookup(data: Mapping[str, Any], path: str) -> Any:
    """Resolve "customer.email" style paths; returns _MISSING when absent."""
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _first_present(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def evaluate_condition(condition: FilterCondition, data: Mapping[str, Any]) -> bool:
    """Evaluate one field condition against the payload."""
    field_value = _lookup(data, condition.field)
    present = field_value is not _MISSING
    if not present:
        field_value = None
    value = condition.value
    operator = condition.operator

    try:
        if operator == "equals":
            return field_value == value
        if operator == "not_equals":
            return field_value != value
        if operator == "greater_than":
            return present and field_value > value
        if operator == "less_than":
            return present and field_value < value
        if operator == "contains":
            return present and str(value) in str(field_value)
        if operator == "starts_with":
            return present and str(field_value).startswith(str(value))
        if operator == "ends_with":
            return present and str(field_value).endswith(str(value))
        if operator == "in":
            return isinstance(value, (list, tuple)) and field_value in value
    except TypeError:
        # None > 5, "a" < 3, ...
        return False

    # Unknown operators match. New subscriptions cannot be saved with one
    # (see WebhookRegistry), so this only affects legacy rows.
    logger.warning("webhook_filter_unknown_operator", operator=operator, field=condition.field)
    return True


def matches_filters(filters: WebhookFilters | Mapping[str, Any] | None, data: Mapping[str, Any]) -> bool:
    """Return True if the payload passes every configured filter group."""
    if not filters:
        return True
    if not isinstance(filters, WebhookFilters):
        filters = WebhookFilters.model_validate(filters)
    if filters.is_empty():
        return True

    # Allow-lists only apply when the payload carries the field
    if filters.funnel_ids:
        funnel_id = _first_present(data, "funnel_id", "funnelId")
        if funnel_id is not None and funnel_id not in filters.funnel_ids:
            return False

    if filters.product_ids:
        product_id = _first_present(data, "product_id", "productId")
        if product_id is not None and product_id not in filters.product_ids:
            return False

    if filters.tags:
        tags = data.get("tags")
        if tags is not None:
            if isinstance(tags, str):
                tags = [tags]
            if not any(tag in tags for tag in filters.tags):
                return False

    for condition in filters.conditions or []:
        if not evaluate_condition(condition, data):
            return False

    return True


def matches(subscription: WebhookSubscription, data: Mapping[str, Any]) -> bool:
    """Check if event data matches a subscription's filters."""
    return matches_filters(subscription.filters, data)
