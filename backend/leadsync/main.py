"""Main FastAPI application."""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from leadsync.config import settings
from leadsync.database import Base, create_tables
from leadsync.exceptions import LeadSyncError
from leadsync.routers import leads, sync
from leadsync.scheduler import start_scheduler, stop_scheduler
from leadsync.websocket import get_connection_stats, get_socket_app, register_event_handlers

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Lead Sync API",
    description="Multi-tenant sheet-to-lead synchronization, scoring and conversion",
    version="1.0.0",
    redirect_slashes=False
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LeadSyncError)
async def lead_sync_error_handler(request: Request, exc: LeadSyncError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.__class__.__name__}
    )


# ============================================
# ROUTER REGISTRATION
# ============================================

app.include_router(leads.router)
app.include_router(sync.router)

# Mount WebSocket
register_event_handlers()
app.mount("/socket.io", get_socket_app())


# ============================================
# HEALTH
# ============================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
        "registered_tables": len(Base.metadata.tables),
        "scheduler_enabled": settings.ENABLE_SCHEDULER,
        "websocket": get_connection_stats(),
    }


# ============================================
# STARTUP & SHUTDOWN
# ============================================

@app.on_event("startup")
async def startup_event():
    """Run on application startup."""
    logger.info("Starting Lead Sync API...")
    await create_tables()
    logger.info(f"Registered {len(Base.metadata.tables)} SQLAlchemy tables")

    if settings.ENABLE_SCHEDULER:
        start_scheduler()

    logger.info("Application started successfully!")


@app.on_event("shutdown")
async def shutdown_event():
    """Run on application shutdown."""
    logger.info("Shutting down Lead Sync API...")
    stop_scheduler()
