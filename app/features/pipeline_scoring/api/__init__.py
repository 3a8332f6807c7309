"""
HTTP routers for the pipeline scoring feature.
"""

from .router import cron_router, router

__all__ = ["cron_router", "router"]
