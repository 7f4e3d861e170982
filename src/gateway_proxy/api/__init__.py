"""
API FastAPI de Gateway Proxy.
"""

from .router import api_router

__all__ = ["api_router"]
