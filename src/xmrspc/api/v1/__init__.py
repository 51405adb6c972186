"""xmrspc API v1 endpoints."""

from xmrspc.api.v1.analysis import router as analysis_router

__all__ = [
    "analysis_router",
]
