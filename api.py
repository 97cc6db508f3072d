"""
Learner Community FastAPI Application

Main entry point for the community API: buddy pairing, groups,
live training sessions and chat relay.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Common library imports
from common.database import MongoDB
from common.utils import success_response

# App-specific imports
from community.config import settings
from community.database import ensure_indexes
from community.services.chat.relay import ChatRelay

# Import routers
from community.routers import buddies, groups, sessions, chat, overview

# Import service initialization
from community.dependencies import init_all_services, get_channel_provider

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# Database Instance
# =============================================================================
main_db = MongoDB()


# =============================================================================
# Application Lifespan
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Handles startup and shutdown tasks like database connections,
    service initialization and closing open chat conversations.
    """
    # Startup
    logger.info("Starting Community API...")
    settings.validate_required()

    await main_db.connect(
        uri=settings.MONGODB_URI,
        database_name=settings.MONGODB_DATABASE,
    )
    await ensure_indexes(main_db.db)

    init_all_services(db=main_db.db, app_settings=settings)

    if not settings.SLACK_BOT_TOKEN:
        logger.warning("SLACK_BOT_TOKEN is not set; channel operations will fail")

    app.state.chat_relay = ChatRelay(
        get_channel_provider(),
        poll_interval=settings.CHAT_POLL_INTERVAL_SECONDS,
        limit=settings.CHAT_FETCH_LIMIT,
    )

    logger.info("Community API started successfully!")

    yield

    # Shutdown
    logger.info("Shutting down Community API...")
    await app.state.chat_relay.close_all()
    await main_db.disconnect()
    logger.info("Community API shut down complete.")


# =============================================================================
# FastAPI Application
# =============================================================================
app = FastAPI(
    title="Learner Community API",
    description="Buddy pairing, cohorts, live sessions and chat for learners",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.is_development() else None,
    redoc_url="/redoc" if settings.is_development() else None,
)

# =============================================================================
# CORS Middleware
# =============================================================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# =============================================================================
# Include Routers (all under /api/v1/community prefix)
# =============================================================================
API_PREFIX = "/api/v1/community"

app.include_router(buddies.router, prefix=API_PREFIX, tags=["Buddies"])
app.include_router(buddies.admin_router, prefix=API_PREFIX, tags=["Admin"])
app.include_router(groups.router, prefix=API_PREFIX, tags=["Groups"])
app.include_router(groups.admin_router, prefix=API_PREFIX, tags=["Admin"])
app.include_router(sessions.router, prefix=API_PREFIX, tags=["Sessions"])
app.include_router(sessions.admin_router, prefix=API_PREFIX, tags=["Admin"])
app.include_router(chat.router, prefix=API_PREFIX, tags=["Chat"])
app.include_router(overview.router, prefix=API_PREFIX, tags=["Overview"])


# =============================================================================
# Health Check Endpoint
# =============================================================================
@app.get("/health", tags=["Health"])
async def health():
    """
    Health check endpoint.

    Returns the status of the API, the database connection and whether
    the channel provider is configured.
    """
    return success_response({
        "status": "ok",
        "version": "1.0.0",
        "database": main_db.is_connected,
        "channelProvider": bool(settings.SLACK_BOT_TOKEN),
    })


# =============================================================================
# Run with Uvicorn
# =============================================================================
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.is_development(),
    )
