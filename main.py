"""
Video tracking service entry point.

One Python process, one asyncio event loop, one FastAPI app. Handlers are
stateless; the database engine pool and the Prometheus registry are the only
shared state. The lifespan closes the engine on shutdown.

Run with: python main.py [--port PORT] [--dev]
"""

import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path

project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv

# Load .env.local first (if exists), then .env as fallback
# .env.local is gitignored and used for local dev overrides
load_dotenv(project_root / ".env.local")
load_dotenv()

import sentry_sdk
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from core.config import check_required_env_vars, get_allowed_origins, get_log_level
from core.database import close_engine, is_configured
from web_api.routes.admin import router as admin_router
from web_api.routes.video import router as video_router
from web_api.routes.views import router as views_router

logging.basicConfig(
    level=get_log_level(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

if os.environ.get("SENTRY_DSN"):
    sentry_sdk.init(
        dsn=os.environ["SENTRY_DSN"],
        environment=os.environ.get("RAILWAY_ENVIRONMENT", "development"),
        traces_sample_rate=0.0,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan context manager.

    Reports missing configuration on startup and closes database
    connections on shutdown.
    """
    ok, warnings = check_required_env_vars()
    for warning in warnings:
        logger.warning(warning.strip())
    if not ok:
        logger.error("Required environment variables are missing")

    yield

    logger.info("Shutting down, closing database connections")
    await close_engine()


app = FastAPI(
    title="Video Engagement Tracking API",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(video_router)
app.include_router(views_router)
app.include_router(admin_router)


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "healthy", "database_configured": is_configured()}


@app.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus exposition of the ingestion counters."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(description="Video Engagement Tracking Server")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("API_PORT", "8000")),
        help="Port to run the server on (default: 8000)",
    )
    parser.add_argument(
        "--dev",
        action="store_true",
        help="Enable development mode",
    )
    args = parser.parse_args()

    if args.dev:
        os.environ["DEV_MODE"] = "true"

    # Pass app object directly (not string) to avoid module reimport issues
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=args.port,
    )
