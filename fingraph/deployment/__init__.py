"""
deployment/ - Deployment Infrastructure

Provides the FastAPI application for the recalculation service.
"""

from .api import (
    create_fastapi_app,
    get_app,
)


__all__ = [
    "create_fastapi_app",
    "get_app",
]
