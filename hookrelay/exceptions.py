"""
Exceptions raised by the webhook engine.

Routes translate these into HTTP errors; the delivery worker never lets them
reach the code that triggered the event.
"""


class HookRelayError(Exception):
    """Base class for webhook engine errors."""


class SubscriptionNotFoundError(HookRelayError, LookupError):
    """The subscription does not exist for this tenant."""

    def __init__(self, subscription_id: str, tenant_id: str):
        self.subscription_id = subscription_id
        self.tenant_id = tenant_id
        super().__init__(f"Webhook not found: {subscription_id}")


class InvalidSubscriptionError(HookRelayError, ValueError):
    """Subscription configuration failed validation."""
