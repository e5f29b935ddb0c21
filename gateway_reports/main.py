"""
Gateway Request Reports - Main Application
FastAPI Entry Point with APScheduler for Aggregate Rollup
"""

from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import text
from sqlalchemy.orm import Session
import structlog

from gateway_reports import __version__
from gateway_reports import database
from gateway_reports.config import settings
from gateway_reports.database import get_db, init_db
from gateway_reports.middleware import CorrelationIdMiddleware
from gateway_reports.routers.admin import router as admin_router
from gateway_reports.routers.outcomes import router as outcomes_router
from gateway_reports.routers.reports import router as reports_router
from gateway_reports.scheduler import start_scheduler, stop_scheduler
from gateway_reports.services.monitoring import setup_logging
from gateway_reports.services.registry import ReportServices, get_services, init_services

# Structured Logging Setup
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.JSONRenderer()
    ]
)
setup_logging()
logger = structlog.get_logger()

# FastAPI App
app = FastAPI(
    title="Gateway Request Reports",
    description="Time-windowed request outcome reports with coalescing caches and periodic aggregates",
    version=__version__,
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None,
)

app.add_middleware(CorrelationIdMiddleware)

# Register routers
app.include_router(reports_router)
app.include_router(admin_router)
app.include_router(outcomes_router)

# APScheduler instance, set on startup
scheduler: Optional[BackgroundScheduler] = None


@app.on_event("startup")
async def startup_event():
    """Application Startup"""
    global scheduler
    logger.info("startup", environment=settings.environment)

    # Initialize database connection and the report services around it
    init_db()
    init_services(database.SessionLocal)
    logger.info("database_initialized", configured=database.SessionLocal is not None)

    scheduler = start_scheduler(settings.environment)


@app.on_event("shutdown")
async def shutdown_event():
    """Application Shutdown"""
    logger.info("shutdown")
    stop_scheduler(scheduler)


@app.get("/")
async def root():
    """Root Endpoint"""
    return {
        "message": "Gateway Request Reports API",
        "version": __version__,
        "status": "running"
    }


@app.get("/health")
async def health_check(
    db: Optional[Session] = Depends(get_db),
    services: Optional[ReportServices] = Depends(get_services)
):
    """
    Health Check Endpoint
    Reports database reachability, scheduler state and cache statistics
    """
    health_status = {
        "status": "healthy",
        "environment": settings.environment,
        "services": {
            "api": "running",
            "scheduler": "running" if scheduler is not None and scheduler.running else "stopped"
        }
    }

    if db is None:
        health_status["services"]["database"] = "not_configured"
    else:
        try:
            db.execute(text("SELECT 1"))
            health_status["services"]["database"] = "connected"
        except Exception as e:
            logger.error("health_database_check_failed", error=str(e))
            health_status["services"]["database"] = "unreachable"
            health_status["status"] = "degraded"

    if services is not None:
        health_status["caches"] = services.cache_stats()
        health_status["aggregation"] = {
            "sweep_running": services.worker.is_running,
            "last_sweep": services.worker.last_summary,
        }

    return JSONResponse(
        content=health_status,
        status_code=200
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "gateway_reports.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development"
    )
