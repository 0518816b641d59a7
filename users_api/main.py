"""FastAPI users application."""

from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from users_api.api.users_routes import router as users_router
from users_api.config.loader import load_settings, register_reload_handler
from users_api.health import router as health_router
from users_api.logging_config import setup_logging
from users_api.middleware.context_injector import ContextInjector
from users_api.middleware.guard_asgi import GuardMiddleware
from users_api.middleware.pipeline import MiddlewarePipeline
from users_api.middleware.request_guard import RequestGuard
from users_api.store import users as user_store

logger = structlog.get_logger()

_pipeline: MiddlewarePipeline | None = None


def _build_pipeline() -> MiddlewarePipeline:
    """Build the ordered middleware pipeline.

    ContextInjector runs first so guard rejections are logged with a request ID.
    """
    pipeline = MiddlewarePipeline()
    pipeline.add(ContextInjector())  # 0: request ID, log context
    pipeline.add(RequestGuard())     # 1: size, media type, depth, XSS scrub
    return pipeline


def _get_pipeline() -> MiddlewarePipeline | None:
    return _pipeline


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    global _pipeline

    settings = load_settings()
    setup_logging(log_level=settings.log_level, json_format=settings.log_json)
    register_reload_handler()

    user_store.init_user_store(settings.seed_file)
    _pipeline = _build_pipeline()

    logger.info("service_started", port=settings.listen_port, middleware=_pipeline.names)

    yield

    logger.info("service_shutting_down")
    _pipeline = None
    user_store.close_user_store()
    logger.info("service_stopped")


app = FastAPI(title="Users API", lifespan=lifespan)
app.add_middleware(GuardMiddleware, get_pipeline=_get_pipeline)

app.include_router(health_router)
app.include_router(users_router)
