"""
PakStream media core - FastAPI application entry point.
"""
import asyncio
from contextlib import asynccontextmanager, suppress
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.exceptions import HTTPException
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .database import Base, SessionLocal, engine
from .limiter import limiter
from .logging_config import get_logger
from .middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from .responses import api_exception_handler
from .routes import edge_router, events_router, health_router, videos_router
from .routes.events import EventManager
from .services.edge_registry import EdgeRegistry
from .services.metadata_cache import MetadataCache
from .services.queue_journal import QueueJournal
from .services.video_store import VideoStore
from .worker.edge_sync import EdgeSyncService
from .worker.job_queue import JobQueue
from .worker.transcoder import FFmpegTranscoder

logger = get_logger("app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown"""
    state = app.state

    # Startup
    recovered = state.queue.recover()
    if recovered:
        logger.info("startup_recovered_jobs", count=recovered)

    monitor = None
    interval = state.settings.edge_health_interval
    if interval and interval > 0:
        monitor = asyncio.create_task(state.edge_sync.run_health_monitor(interval))

    yield  # App is running

    # Shutdown
    if monitor is not None:
        monitor.cancel()
        with suppress(asyncio.CancelledError):
            await monitor
    await state.queue.shutdown()
    logger.info("shutdown_complete")


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[Callable[[], Session]] = None,
    transcoder=None,
) -> FastAPI:
    """Build the application and wire its components onto ``app.state``."""
    settings = settings or get_settings()

    if session_factory is None:
        # Create tables (in production, use Alembic migrations instead)
        Base.metadata.create_all(bind=engine)
        session_factory = SessionLocal

    for directory in (settings.original_dir, settings.processed_dir, settings.temp_dir):
        directory.mkdir(parents=True, exist_ok=True)

    events = EventManager()
    store = VideoStore(session_factory)
    cache = MetadataCache(store, ttl=settings.cache_ttl_seconds, max_entries=settings.cache_max_entries)
    registry = EdgeRegistry(session_factory)
    edge_sync = EdgeSyncService(
        registry,
        store,
        metadata_timeout=settings.edge_metadata_timeout,
        upload_timeout=settings.edge_upload_timeout,
        health_timeout=settings.edge_health_timeout,
        max_retries=settings.edge_sync_max_retries,
        backoff=settings.edge_sync_backoff,
        batch_size=min(settings.edge_upload_batch_size, settings.edge_receive_max_files),
    )
    queue = JobQueue(
        store,
        transcoder or FFmpegTranscoder(),
        notifier=events,
        edge_sync=edge_sync,
        max_concurrent=settings.max_concurrent_jobs,
        processed_root=str(settings.processed_dir),
        journal=QueueJournal(session_factory) if settings.queue_persistence else None,
        job_timeout=settings.job_timeout_seconds,
    )

    app = FastAPI(
        title=settings.app_name,
        description="Video processing queue and edge distribution",
        version="1.0.0",
        docs_url="/api/docs" if settings.debug else None,
        redoc_url="/api/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.events = events
    app.state.store = store
    app.state.cache = cache
    app.state.edge_registry = registry
    app.state.edge_sync = edge_sync
    app.state.queue = queue

    # Add rate limiter to app state
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(HTTPException, api_exception_handler)

    # Security headers middleware
    app.add_middleware(SecurityHeadersMiddleware)

    # Request logging middleware (only in debug mode)
    if settings.debug:
        app.add_middleware(RequestLoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "Accept",
            "Origin",
            "Range",
            "X-Api-Key",
            "X-Requested-With",
        ],
        expose_headers=["Content-Range", "Accept-Ranges", "Content-Length"],
        max_age=3600,  # Cache preflight requests for 1 hour
    )

    app.include_router(videos_router)
    app.include_router(edge_router)
    app.include_router(events_router)
    app.include_router(health_router)

    @app.get("/")
    def root():
        return {
            "message": settings.app_name,
            "docs": "/api/docs" if settings.debug else "Disabled in production",
        }

    logger.info(
        "app_created",
        environment=settings.environment,
        max_concurrent=queue.max_concurrent,
        persistence=settings.queue_persistence,
    )
    return app


app = create_app()
