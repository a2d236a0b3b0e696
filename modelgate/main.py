"""
ModelGate - Main Application

Semantic modeling and query compilation for BI.

FEATURES:
---------
- Semantic models over configured datasources (tables, fields, relationships)
- Auto-import of physical tables with relationship inference
- Explore queries compiled to dialect-specific SQL
- In-process result cache with admin endpoints
- Calculated fields evaluated over report data
- Structured Logging (request tracing)
"""

import uuid
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request

from modelgate import __version__
from modelgate.adapters.factory import DatabaseGateway
from modelgate.cache import CacheConfig, ResultCache
from modelgate.cache_routes import router as cache_router
from modelgate.core.config import Settings, get_settings
from modelgate.errors import install_error_handlers
from modelgate.modeling.calculated_field_routes import router as calculated_field_router
from modelgate.modeling.calculated_fields import CalculatedFieldStore
from modelgate.modeling.explore import ExploreService
from modelgate.modeling.model_store import ModelStore
from modelgate.modeling.routes import router as modeling_router


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)


# Add request_id filter
class RequestIdFilter(logging.Filter):
    def filter(self, record):
        if not hasattr(record, 'request_id'):
            record.request_id = '-'
        return True


for handler in logging.root.handlers:
    handler.addFilter(RequestIdFilter())

logger = logging.getLogger(__name__)


# =============================================================================
# STARTUP & SHUTDOWN
# =============================================================================

def build_gateway(settings: Settings) -> DatabaseGateway:
    path = settings.resolved_datasources_file()
    gateway = DatabaseGateway.from_catalog(path)
    if not gateway.list_datasources():
        logger.warning(f"No datasources configured in {path}")
    return gateway


def init_services(app: FastAPI, settings: Settings, gateway: Optional[DatabaseGateway] = None) -> None:
    """Build the shared services and attach them to app.state."""
    db_path = str(settings.resolved_db_path())
    gateway = gateway or build_gateway(settings)
    cache = ResultCache(CacheConfig.from_settings(settings))
    store = ModelStore(db_path, gateway=gateway)

    app.state.settings = settings
    app.state.gateway = gateway
    app.state.result_cache = cache
    app.state.model_store = store
    app.state.calculated_field_store = CalculatedFieldStore(db_path)
    app.state.explore_service = ExploreService(store, gateway, cache, settings)

    if not cache.is_enabled():
        logger.warning("Result caching is disabled.")
    logger.info(f"Services initialized (db={db_path}, datasources={len(gateway.list_datasources())})")


def create_app(settings: Optional[Settings] = None, gateway: Optional[DatabaseGateway] = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings to use (default: environment settings)
        gateway: Pre-built gateway (default: loaded from the datasource file)
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_services(app, settings, gateway)
        logger.info("Startup completed successfully")
        yield
        closed = app.state.gateway.close_all()
        logger.info(f"Shutdown complete, closed {closed} connection(s)")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Semantic modeling and query compilation for BI",
        lifespan=lifespan,
    )

    install_error_handlers(app)

    # =========================================================================
    # MIDDLEWARE
    # =========================================================================

    # Request ID middleware for tracing
    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        """Add request ID for tracing and structured logging."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id

        # Add to logging context
        old_factory = logging.getLogRecordFactory()

        def record_factory(*args, **kwargs):
            record = old_factory(*args, **kwargs)
            record.request_id = request_id
            return record

        logging.setLogRecordFactory(record_factory)
        try:
            response = await call_next(request)
        finally:
            logging.setLogRecordFactory(old_factory)

        response.headers["X-Request-ID"] = request_id
        return response

    # =========================================================================
    # ROUTERS
    # =========================================================================

    app.include_router(modeling_router)
    app.include_router(cache_router)
    app.include_router(calculated_field_router)

    @app.get("/v1/health", tags=["Health"])
    def health(request: Request):
        """Public health check endpoint."""
        cache_stats = request.app.state.result_cache.stats()

        return {
            "status": "ok",
            "time": datetime.now(timezone.utc).isoformat(),
            "version": settings.app_version or __version__,
            "cache": {
                "enabled": cache_stats.get("enabled"),
                "entryCount": cache_stats.get("entryCount", 0),
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    server_settings = get_settings()
    uvicorn.run(
        "modelgate.main:app",
        host=server_settings.host,
        port=server_settings.port,
        log_level=server_settings.log_level.lower(),
    )
