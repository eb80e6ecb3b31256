"""
HookRelay - webhook delivery engine

FastAPI application entry point for the operations API. Deliveries run in the
arq worker (hookrelay.worker).
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI

# Import observability modules
from hookrelay.config import settings
from hookrelay.logging_config import configure_logging, logger
from hookrelay.sentry_config import configure_sentry
from hookrelay.middleware.logging import LoggingMiddleware
from hookrelay.queue import create_delivery_queue
from hookrelay.routes.metrics import router as metrics_router

# Import route modules
from hookrelay.routes.webhooks import router as webhooks_router

# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the delivery queue once per process and hand it to the routes."""
    queue = await create_delivery_queue()
    app.state.delivery_queue = queue
    logger.info("delivery_queue_connected", queue=settings.WEBHOOK_QUEUE_NAME)
    try:
        yield
    finally:
        await queue.close()


def create_app(use_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Signed, retrying webhook delivery for the multi-tenant platform",
        lifespan=lifespan if use_lifespan else None,
    )

    # Add logging middleware FIRST (runs before other middleware)
    app.add_middleware(LoggingMiddleware)

    # Include metrics endpoint FIRST (so it's always available)
    app.include_router(metrics_router)

    # Include webhook routes
    app.include_router(webhooks_router)

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "running"
        }

    @app.get("/health")
    async def health():
        """Detailed health check."""
        return {
            "status": "healthy",
            "queue": "connected" if getattr(app.state, "delivery_queue", None) else "unavailable"
        }

    return app


app = create_app()
