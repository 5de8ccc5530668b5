"""FastAPI main application."""
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from soctrainer.routes import alerts, investigation, scenarios, sessions
from soctrainer.services.timer import stop_all_timers
from soctrainer.store import clear_sessions
from soctrainer.settings import settings

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="SOC Trainer API",
    description="Scenario generation and investigation evaluation engine",
    version="1.0.0",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(scenarios.router)
app.include_router(sessions.router)
app.include_router(alerts.router)
app.include_router(investigation.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "SOC Trainer API", "docs": "/docs"}


@app.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@app.on_event("startup")
async def startup_event():
    logger.info(f"[APP] Started (scoring mode: {settings.SCORING_MODE}, SLA timer: {settings.FEATURE_SLA_TIMER})")


@app.on_event("shutdown")
async def shutdown_event():
    """Cancel every running SLA timer and drop the in-memory sessions."""
    logger.info("[APP] Stopping SLA timers...")
    stop_all_timers()
    clear_sessions()
    logger.info("[APP] Sessions cleared")
