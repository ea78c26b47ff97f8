"""
Broker API.

FastAPI router mapping HTTP requests onto the broker engine.
"""

from .router import router

__all__ = ["router"]
