"""
Sentry configuration for error tracking.

Captures unhandled exceptions from the API and the delivery worker.
"""
import sentry_sdk
from sentry_sdk.integrations.arq import ArqIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from hookrelay.config import settings
from hookrelay.logging_config import logger


def configure_sentry():
    """
    Initialize Sentry with FastAPI, SQLAlchemy and arq integrations.

    Requires SENTRY_DSN environment variable to be set.
    """
    dsn = settings.SENTRY_DSN

    if not dsn:
        logger.warning("sentry_disabled", reason="SENTRY_DSN not set")
        return

    sentry_sdk.init(
        dsn=dsn,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
            ArqIntegration(),
        ],
        # Never ship webhook secrets or payloads
        send_default_pii=False,
        # Sample rate: capture 10% of transactions for performance monitoring
        traces_sample_rate=0.1,
        environment=settings.ENVIRONMENT,
        release=settings.APP_VERSION,
    )

    logger.info("sentry_initialized", environment=settings.ENVIRONMENT)


def capture_exception(exc_info=None, **tags):
    """
    Capture an exception to Sentry with optional tags.

    Usage:
        try:
            # some code
        except Exception:
            capture_exception(tenant_id=tenant_id)
            raise
    """
    if not sentry_sdk.get_client().is_active():
        return
    with sentry_sdk.new_scope() as scope:
        for key, value in tags.items():
            scope.set_tag(key, value)
        sentry_sdk.capture_exception(exc_info)
