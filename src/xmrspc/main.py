"""xmrspc FastAPI Application."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from xmrspc.api.v1.analysis import router as analysis_router
from xmrspc.core.config import get_settings
from xmrspc.core.logging import configure_logging

settings = get_settings()
configure_logging(settings.log_format, settings.log_level)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    logger.info("starting_xmrspc", version=settings.app_version)
    yield
    logger.info("stopping_xmrspc")


app = FastAPI(
    title="xmrspc",
    description="Stateless XMR statistical process control analysis",
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(analysis_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "name": "xmrspc",
        "version": settings.app_version,
        "docs": "/docs",
    }
