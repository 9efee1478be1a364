"""
FastAPI routers for the channel sync engine
"""

from .sync import router as sync_router

__all__ = ["sync_router"]
