"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.routes import health, imports
from core.config import settings
from core.logging import setup_logging
import logging
from api.middleware import RequestContextMiddleware
from ingestion.scheduler import ImportScheduler

setup_logging(settings.LOG_LEVEL)

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="CSV Import Service",
    description="Streaming, resumable CSV import with adaptive batching",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Initialize Scheduler
scheduler = ImportScheduler()


# Include routers
app.include_router(health.router)
app.include_router(imports.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting CSV Import Service")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down CSV Import Service")
    scheduler.stop()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "CSV Import Service",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "start_import": "POST /imports",
            "progress": "/imports/progress",
            "runs": "/imports/runs",
            "memory": "/imports/memory"
        }
    }
