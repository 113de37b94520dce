"""
Main FastAPI application
"""

import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from app.core.config import settings
from app.api.v1.router import api_router
from app.db.base import dispose_engine, get_session_factory
from app.services.container import build_services, close_services

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Generation lifecycle and credit ledger service",
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)

app.include_router(api_router)

# Video thumbnails written by ThumbnailService
app.mount(
    settings.THUMBNAIL_BASE_URL,
    StaticFiles(directory=settings.THUMBNAIL_DIR, check_dir=False),
    name="thumbnails",
)


@app.on_event("startup")
async def startup_event():
    """Startup event handler"""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(get_session_factory())

    thumbnailer = app.state.services.reconciler.thumbnailer
    if thumbnailer is not None and not await thumbnailer.is_available():
        logger.warning("FFmpeg not available, video thumbnails will not be generated")

    if settings.RECONCILE_ON_STARTUP:
        try:
            await app.state.services.jobs.recover_on_startup()
        except Exception as e:
            logger.error(f"Startup reconciliation failed: {e}", exc_info=True)


@app.on_event("shutdown")
async def shutdown_event():
    """Shutdown event handler"""
    logger.info(f"Shutting down {settings.APP_NAME}")
    services = getattr(app.state, "services", None)
    if services is not None:
        await close_services(services)
        app.state.services = None
    await dispose_engine()
