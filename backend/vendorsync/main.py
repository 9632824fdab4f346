"""FastAPI application entry point with CORS and routers."""

import json
import logging
import re as _re
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vendorsync.config import settings
from vendorsync.database import init_db
from vendorsync.routers import logs, scrape, vehicles, vendors

logging.getLogger("vendorsync").setLevel(settings.LOG_LEVEL.upper())

_ISO_DT_RE = _re.compile(r'^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?$')


def _add_utc_to_datetimes(obj):
    """Recursively walk a JSON-serializable structure and append +00:00
    to any ISO 8601 datetime strings that lack timezone info.

    SQLite hands back naive datetimes even for timezone-aware columns.
    """
    if isinstance(obj, dict):
        return {k: _add_utc_to_datetimes(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_add_utc_to_datetimes(v) for v in obj]
    elif isinstance(obj, str) and _ISO_DT_RE.match(obj):
        return obj + "+00:00"
    return obj


class UTCJSONResponse(JSONResponse):
    """JSONResponse that adds UTC timezone to all naive datetime strings."""

    def render(self, content) -> bytes:
        patched = _add_utc_to_datetimes(content)
        return json.dumps(
            patched,
            ensure_ascii=False,
            allow_nan=False,
            indent=None,
            separators=(",", ":"),
        ).encode("utf-8")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    # Startup: create tables and seed built-in vendors
    await init_db()
    yield


app = FastAPI(
    title="Vendor Sync API",
    description=(
        "Mirrors partner dealer inventories into the local vehicle table: "
        "vendor sync runs, vendor settings, vehicles and system logs."
    ),
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    default_response_class=UTCJSONResponse,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register API routers
app.include_router(scrape.router)
app.include_router(vendors.router)
app.include_router(vehicles.router)
app.include_router(logs.router)


@app.get("/", tags=["Health"])
async def root():
    """Health check / root endpoint."""
    return {
        "service": "Vendor Sync API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Detailed health check."""
    return {"status": "healthy"}
