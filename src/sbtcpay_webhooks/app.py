"""FastAPI application factory for the webhook gateway."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from sbtcpay_webhooks.common.config import get_settings
from sbtcpay_webhooks.common.exceptions import QueueUnavailableError
from sbtcpay_webhooks.common.logging import setup_logging
from sbtcpay_webhooks.common.schemas import HealthResponse, QueueStatusResponse


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        from sbtcpay_webhooks.deps import get_db, get_executor
        db = get_db()
        await db.init()
        await db.create_all()
        yield
        # Shutdown
        await get_executor().close()
        await db.close()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(version=settings.api_version)

    @app.get("/queue/status", response_model=QueueStatusResponse)
    async def queue_status():
        from sbtcpay_webhooks.deps import get_queue
        try:
            stats = await get_queue().stats()
        except QueueUnavailableError as e:
            raise HTTPException(status_code=503, detail=e.message)
        return QueueStatusResponse(**stats)

    from sbtcpay_webhooks.webhooks.router import router as webhook_router

    app.include_router(webhook_router, prefix=settings.api_prefix, tags=["webhooks"])

    return app
