"""
API Routes Module
"""
from .health import router as health_router
from .dashboard import router as dashboard_router
from .targets import router as targets_router

__all__ = [
    "health_router",
    "dashboard_router",
    "targets_router",
]
