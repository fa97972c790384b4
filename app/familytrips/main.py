"""Family Trips API"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __author__, __description__, __version__, config
from .routers import families, gear, monitoring, trips
from .utils.cache import CacheStore, CacheSweeper

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(
    cache: Optional[CacheStore] = None,
    cache_enabled: Optional[bool] = None,
    sweep_interval: Optional[float] = None,
    init_database: bool = True,
) -> FastAPI:
    """Build the application around one explicitly owned response cache.

    The cache lives on ``app.state.response_cache``; its sweeper starts with the
    application and is cancelled on shutdown.
    """
    if cache_enabled is None:
        cache_enabled = config.CACHE_ENABLED
    if cache_enabled and cache is None:
        cache = CacheStore()
    if not cache_enabled:
        cache = None
    if sweep_interval is None:
        sweep_interval = config.CACHE_SWEEP_INTERVAL
    sweeper = CacheSweeper(cache, sweep_interval) if cache is not None else None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if init_database:
            from .database import init_db
            try:
                init_db()
            except Exception as e:
                logger.error(f"Database initialization failed: {e}")
        if sweeper is not None:
            sweeper.start()
        try:
            yield
        finally:
            if sweeper is not None:
                await sweeper.stop()
            if cache is not None:
                cache.clear()

    app = FastAPI(
        title="Family Trips API",
        description=__description__,
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan
    )
    app.state.response_cache = cache
    app.state.cache_sweeper = sweeper

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Global exception handler for Pydantic validation errors."""
        logger.warning(f"Validation error for {request.method} {request.url.path}: {exc.errors()}")
        return JSONResponse(
            status_code=422,
            content={"detail": jsonable_encoder(exc.errors()), "error_type": "validation_error"}
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    app.include_router(monitoring.router, tags=["monitoring"])
    app.include_router(families.router, prefix="/api/families", tags=["families"])
    app.include_router(trips.router, prefix="/api/trips", tags=["trips"])
    app.include_router(gear.router, prefix="/api/gear", tags=["gear"])

    @app.get("/version")
    async def get_version():
        """Get application version and metadata."""
        return {
            "name": "Family Trips",
            "version": __version__,
            "author": __author__,
            "description": __description__,
            "api_version": "v1"
        }

    return app


app = create_app()
