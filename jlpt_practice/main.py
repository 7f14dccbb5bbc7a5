"""Main FastAPI application for JLPT practice."""
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.orm import Session

from jlpt_practice.config import settings
from jlpt_practice.context import AppContext
from jlpt_practice.db.database import SessionLocal, get_db
from jlpt_practice.db.init_db import init_db
from jlpt_practice.errors import StorageUnavailable
from jlpt_practice.limiter import limiter
from jlpt_practice.logging_config import get_logger, setup_logging
from jlpt_practice.routers import corpus, mistakes, practice, progress

# Set up logging on module import
log_level = settings.LOG_LEVEL if settings.LOG_LEVEL else None
setup_logging(log_level)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database, services and corpus on startup.

    This function runs once when the application starts, performing:
    - Database table creation and index migrations
    - Application context creation
    - Corpus seeding when the item store is empty
    """
    logger.info("Application startup initiated")
    try:
        init_db()
        logger.info("Database initialization completed successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        raise

    context = AppContext(SessionLocal, settings)
    app.state.context = context

    try:
        seeded = context.sync.ensure_seeded()
        if seeded is not None:
            logger.info(f"Item store seeded from {seeded['source']} corpus")
    except (ValueError, StorageUnavailable) as e:
        # The app still serves; practice reports an unsynced store until a resync succeeds
        logger.error(f"Corpus seeding failed: {e}", exc_info=True)

    yield

    context.close()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="JLPT Practice API",
    description="""
    Practice backend for the Japanese Language Proficiency Test.

    ## Features

    - **Free Practice**: Past-exam questions filtered by level, section, year and session
    - **Vocabulary Drills**: Word and sentence questions with generated distractors
    - **Daily Calendar**: 10 weeks x 7 days of fixed units per level and category
    - **Mistake Log**: Every wrong answer is kept for review
    - **Corpus Resync**: Reload items from a local file or a remote endpoint

    ## Practice Flow

    1. **Start**: POST to `/api/practice/start` with criteria or a calendar day
    2. **Answer**: POST `/api/practice/{session_id}/submit` with an option id
    3. **Continue**: POST `/api/practice/{session_id}/next`
    4. **Finish a day**: POST `/api/practice/{session_id}/complete` to unlock progress
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_tags=[
        {
            "name": "practice",
            "description": "Practice sessions: start, answer, navigate"
        },
        {
            "name": "progress",
            "description": "Daily calendar unlocks and completion"
        },
        {
            "name": "mistakes",
            "description": "Mistake log and question review"
        },
        {
            "name": "sync",
            "description": "Corpus resync"
        },
        {
            "name": "health",
            "description": "Service health and readiness checks"
        }
    ]
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

logger.info("Rate limiting enabled: default 100 requests/minute per IP")

app.include_router(practice.router)
app.include_router(progress.router)
app.include_router(mistakes.router)
app.include_router(corpus.router)


@app.get("/health", tags=["health"])
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint with database verification.

    Returns:
        200 OK: Service is healthy and database is accessible
        503 Service Unavailable: Database connection failed

    Example Response (Healthy):
        {
            "status": "healthy",
            "database": "connected",
            "timestamp": "2026-10-18T10:30:00.000000Z",
            "environment": "production"
        }
    """
    timestamp = datetime.utcnow().isoformat() + "Z"

    try:
        db.execute(text("SELECT 1"))
        logger.debug("Health check passed")

        return {
            "status": "healthy",
            "database": "connected",
            "timestamp": timestamp,
            "environment": settings.ENVIRONMENT
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}", exc_info=True)

        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(e),
                "timestamp": timestamp
            }
        )


@app.get("/readiness", tags=["health"])
async def readiness_check(db: Session = Depends(get_db)):
    """Readiness check for container orchestration.

    Ready once the database answers. ``corpus_loaded`` tells whether practice
    items are available yet.

    Returns:
        200 OK: Service is ready
        503 Service Unavailable: Service is not ready
    """
    try:
        db.execute(text("SELECT 1"))
        context = getattr(app.state, "context", None)
        corpus_loaded = context.store.is_loaded() if context else False
        return {
            "status": "ready",
            "corpus_loaded": corpus_loaded,
            "timestamp": datetime.utcnow().isoformat() + "Z"
        }
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "not ready", "error": str(e)}
        )
