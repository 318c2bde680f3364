"""API module for HTTP routes.

This module exposes the FastAPI router for the Harbinger engine.
"""

from api.routes import get_engine_service, router, set_engine_service

__all__ = ["router", "get_engine_service", "set_engine_service"]
