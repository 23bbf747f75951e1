"""FastAPI application entry point."""
from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from recall.api import concepts, reviews
from recall.core.logging import configure_logging
from recall.domain.common.errors import (
    InvalidCursorError,
    InvalidStateError,
    NotFoundError,
    TransientStoreError,
)
from recall.persistence.db import init_db

# ------------------------------------------------------------------
# App creation
# ------------------------------------------------------------------
app = FastAPI(
    title="Recall API",
    description="Spaced-repetition review scheduling for concepts and their phrasings",
    version="1.0.0",
)

# CORS: allow everything for local dev (restrict for production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ------------------------------------------------------------------
# Startup: logging + DB schema
# ------------------------------------------------------------------
@app.on_event("startup")
def on_startup():
    configure_logging()
    init_db()


# ------------------------------------------------------------------
# Domain error mapping
# ------------------------------------------------------------------
@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(InvalidCursorError)
async def _invalid_cursor(request: Request, exc: InvalidCursorError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(TransientStoreError)
async def _transient(request: Request, exc: TransientStoreError):
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": str(exc)})


@app.exception_handler(InvalidStateError)
async def _invalid_state(request: Request, exc: InvalidStateError):
    logger.error("Scheduling invariant violated on {} {}: {}", request.method, request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": str(exc)})


# ------------------------------------------------------------------
# Routers
# ------------------------------------------------------------------
app.include_router(concepts.router)
app.include_router(reviews.router)
