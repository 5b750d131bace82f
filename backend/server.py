from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import database
from econtract import __version__
from econtract.routes import certificates, contracts, signing, viewer
from econtract.services.container import build_services

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def run_signature_expiry_sweep(services):
    """Expire pending signature requests whose link has lapsed."""
    try:
        expired = await services.contract_service.expire_overdue_signature_requests()
        if expired:
            logger.info(f"Signature expiry sweep expired {len(expired)} contract(s)")
    except Exception as e:
        logger.error(f"Signature expiry sweep failed: {e}")


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting E-Contract API")
    db = None
    if settings.uses_mongo:
        await database.connect(settings.mongo_url, settings.db_name)
        db = database.get_db()

    services = build_services(settings, db)
    app.state.services = services

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            run_signature_expiry_sweep,
            IntervalTrigger(minutes=settings.expiry_sweep_interval_minutes),
            args=[services],
            id="signature_expiry_sweep",
            name="Signature Request Expiry Sweep",
            replace_existing=True
        )
        scheduler.start()
        logger.info("Background job scheduler started")

    yield

    # Shutdown
    logger.info("Shutting down E-Contract API")
    if scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Background job scheduler stopped")
    await services.side_effects.drain()
    failed = services.side_effects.failed_tasks()
    if failed:
        logger.warning(f"{len(failed)} side effect(s) failed during this run")
    if db is not None:
        await database.close()


# Create FastAPI app
app = FastAPI(
    title="E-Contract API",
    description="Contract lifecycle and electronic signature service",
    version=__version__,
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=settings.cors_origin_list,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
# Static paths (/stats, /recent-completed, /bulk) are declared before /{contract_id}
app.include_router(contracts.router)
app.include_router(signing.router)
app.include_router(certificates.router)
app.include_router(viewer.router)


# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": settings.environment,
        "storage_backend": settings.storage_backend,
        "version": __version__,
    }


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=settings.environment == "development"
    )
