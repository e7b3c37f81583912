"""FastAPI app entrypoint for Ads Finder."""

import logging
import os
import time
import traceback
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.base import BaseHTTPMiddleware

from api.logging_config import setup_logging
from api.routers import search
from crawler.config import finder_settings
from crawler.screenshot import AdScreenshotService
from database import engine, get_db, init_db

logger = logging.getLogger("adsfinder.api")

API_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Owns the DB engine and the screenshot browser for the app lifetime."""
    setup_logging()
    logger.info(
        "Ads Finder API starting (graph %s, default country %s)",
        finder_settings.facebook_api_version,
        finder_settings.default_country,
    )
    if not finder_settings.facebook_access_token:
        logger.warning("FACEBOOK_ACCESS_TOKEN is not set; searches will fail")
    await init_db()
    app.state.screenshots = (
        AdScreenshotService() if finder_settings.screenshots_enabled else None
    )
    try:
        yield
    finally:
        if app.state.screenshots is not None:
            await app.state.screenshots.stop()
        await engine.dispose()
        logger.info("Ads Finder API stopped")


app = FastAPI(
    title="Ads Finder Pro API",
    description="Facebook Ads Library search ranked by hotness",
    version=API_VERSION,
    lifespan=lifespan,
    redirect_slashes=False,
)

_cors_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173")
CORS_ORIGINS = [o.strip() for o in _cors_origins.split(",") if o.strip()]


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Logs each request and reports its duration in ``X-Process-Time``."""

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.3f}"
        logger.info(
            "%s %s -> %d (%.2fs)",
            request.method, request.url.path, response.status_code, elapsed,
        )
        return response


app.add_middleware(RequestTimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled %s on %s %s: %s",
        type(exc).__name__, request.method, request.url.path, exc,
    )
    logger.debug(traceback.format_exc())
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(search.router)

# Captured ad snapshots, served to the client by ad id
_screenshots_dir = Path(finder_settings.screenshot_dir)
_screenshots_dir.mkdir(parents=True, exist_ok=True)
app.mount("/screenshots", StaticFiles(directory=str(_screenshots_dir)), name="screenshots")


@app.get("/", include_in_schema=False)
async def root():
    return RedirectResponse(url="/docs")


@app.get("/api/health")
async def health(db: AsyncSession = Depends(get_db)):
    status = {"status": "ok", "service": "adsfinder-api", "version": API_VERSION}
    try:
        await db.execute(text("SELECT 1"))
        status["database"] = "connected"
    except Exception as e:
        status["status"] = "degraded"
        status["database"] = f"error: {e}"

    status["facebook_token"] = bool(finder_settings.facebook_access_token)
    status["apify_token"] = bool(finder_settings.apify_api_token)
    status["screenshots"] = finder_settings.screenshots_enabled
    return status
