"""
FastAPI application entry point.
"""

import asyncio
import hashlib
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

import codconfirm.models  # noqa: F401
from codconfirm import __version__
from codconfirm.calls.router import router as calls_router
from codconfirm.calls.scheduler import CallScheduler, CallSchedulerConfig
from codconfirm.commerce.router import get_commerce_client
from codconfirm.commerce.router import router as shopify_router
from codconfirm.commerce.router import webhook_router as shopify_webhook_router
from codconfirm.config import get_settings
from codconfirm.orders.router import router as orders_router
from codconfirm.settings.router import router as settings_router
from codconfirm.shared.database import get_database_manager
from codconfirm.shared.exceptions import NotFoundError, ValidationError
from codconfirm.shared.logging import correlation_id_var, get_logger, setup_logging
from codconfirm.stores.router import router as stores_router
from codconfirm.telephony.factory import get_voice_provider
from codconfirm.telephony.webhooks.router import router as voice_webhooks_router

logger = get_logger(__name__)


def _advisory_lock_id(key: str) -> int:
    """Derive a stable signed bigint lock id from an arbitrary string key."""
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    # 63-bit positive space keeps it a valid signed bigint
    return int.from_bytes(digest, "big", signed=False) & 0x7FFF_FFFF_FFFF_FFFF


async def _scheduler_supervisor(app: FastAPI) -> None:
    """Run scheduler ticks only on the process holding the DB advisory lock.

    Safe under `uvicorn --workers N` and several replicas: the others stay
    on standby until the leader's connection goes away.
    """
    settings = get_settings()
    db_manager = get_database_manager()

    lock_id = _advisory_lock_id(settings.scheduler_lock_key)
    retry_sleep = 5

    logger.info(
        "Scheduler supervisor starting",
        extra={
            "interval_seconds": settings.scheduler_interval_seconds,
            "sync_enabled": settings.scheduler_sync_enabled,
            "lock_id": lock_id,
        },
    )

    cfg = CallSchedulerConfig(
        interval_seconds=settings.scheduler_interval_seconds,
        sync_enabled=settings.scheduler_sync_enabled,
    )

    while True:
        try:
            # Dedicated connection holding the advisory lock
            async with db_manager.engine.connect() as conn:
                res = await conn.execute(
                    text("SELECT pg_try_advisory_lock(:lock_id)"),
                    {"lock_id": lock_id},
                )
                acquired = bool(res.scalar())

                if not acquired:
                    logger.info(
                        "Scheduler leader lock busy; standby",
                        extra={"lock_id": lock_id, "sleep_seconds": retry_sleep},
                    )
                    await asyncio.sleep(retry_sleep)
                    continue

                logger.info("Scheduler leader lock acquired", extra={"lock_id": lock_id})

                provider = get_voice_provider()
                commerce_client = get_commerce_client() if cfg.sync_enabled else None

                while True:
                    correlation_id_var.set(f"tick-{uuid.uuid4().hex[:12]}")
                    try:
                        async with db_manager.session() as session:
                            scheduler = CallScheduler(
                                session=session,
                                provider=provider,
                                business_tz=settings.business_tz,
                                config=cfg,
                                commerce_client=commerce_client,
                            )
                            await scheduler.run_once()
                    except asyncio.CancelledError:
                        raise
                    except Exception:
                        logger.exception("Scheduler tick failed")

                    await asyncio.sleep(cfg.interval_seconds)

        except asyncio.CancelledError:
            logger.info("Scheduler supervisor cancelled; stopping")
            raise
        except Exception:
            logger.exception(
                "Scheduler supervisor error; retrying",
                extra={"sleep_seconds": retry_sleep},
            )
            await asyncio.sleep(retry_sleep)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    settings = get_settings()

    logger.info("Application starting", extra={"env": settings.app_env})

    if settings.db_create_tables:
        await get_database_manager().create_tables()
        logger.info("Database tables ensured")

    if settings.scheduler_enabled:
        app.state.scheduler_task = asyncio.create_task(_scheduler_supervisor(app))
        logger.info("Scheduler enabled; background task created")

    yield

    logger.info("Shutting down application")

    scheduler_task = getattr(app.state, "scheduler_task", None)
    if scheduler_task is not None:
        scheduler_task.cancel()
        try:
            await scheduler_task
        except asyncio.CancelledError:
            pass
        logger.info("Scheduler background task stopped")

    await get_database_manager().close()
    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="COD Confirm API",
        description="Phone confirmation workflow for cash-on-delivery orders",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        correlation_id = request.headers.get("x-correlation-id") or uuid.uuid4().hex
        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)
        response.headers["x-correlation-id"] = correlation_id
        return response

    # Map domain exceptions to HTTP responses
    @app.exception_handler(NotFoundError)
    async def _not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(ValidationError)
    async def _validation(_: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors.append(
                {
                    "field": field,
                    "message": error["msg"],
                    "type": error["type"],
                }
            )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "errors": errors,
                }
            },
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(orders_router)
    app.include_router(calls_router)
    app.include_router(settings_router)
    app.include_router(stores_router)
    app.include_router(shopify_router)
    app.include_router(shopify_webhook_router)
    app.include_router(voice_webhooks_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()
