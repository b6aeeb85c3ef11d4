from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from app.api.error_handlers import register_error_handlers
from app.api.router import api_router
from app.api.routers.health import router as health_router
from app.core.logging import configure_logging
from app.core.settings import Settings, get_settings
from app.dependency_injection import build_container
from app.services.contracts import ChatServiceProtocol, DatabaseServiceProtocol, StreamRegistryProtocol
from app.services.stream_registry import DisabledStreamRegistry, RedisStreamRegistry, build_stream_registry

settings = get_settings()
configure_logging(settings.effective_log_level)
logger = logging.getLogger(__name__)


async def _startup_stream_registry(app_settings: Settings) -> StreamRegistryProtocol:
    registry = build_stream_registry(app_settings)
    if not isinstance(registry, RedisStreamRegistry):
        return registry
    try:
        await registry.ping()
    except Exception:
        logger.warning("resumable stream redis unreachable; resumability disabled", exc_info=True)
        await registry.close()
        return DisabledStreamRegistry()
    logger.info("resumable stream redis connection initialized")
    return registry


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("starting chat backend", extra={"app_env": settings.app_env})

    stream_registry = await _startup_stream_registry(settings)
    container = build_container(settings, stream_registry=stream_registry)
    database_service = container.resolve(DatabaseServiceProtocol)
    await database_service.connect()
    logger.info("database connection pool initialized")

    app.state.settings = settings
    app.state.container = container

    try:
        yield
    finally:
        await container.resolve(ChatServiceProtocol).shutdown()
        await stream_registry.close()
        await database_service.disconnect()
        logger.info("chat backend shutdown complete")


def create_app(lifespan_handler=lifespan) -> FastAPI:
    application = FastAPI(
        title="Diligence Chat Backend",
        version="0.1.0",
        docs_url="/docs" if settings.enable_swagger else None,
        redoc_url="/redoc" if settings.enable_swagger else None,
        openapi_url="/openapi.json" if settings.enable_swagger else None,
        lifespan=lifespan_handler,
    )
    register_error_handlers(application)
    application.include_router(health_router)
    application.include_router(api_router, prefix="/api")
    return application


app = create_app()
