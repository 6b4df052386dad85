"""
FastAPI routers for the clip engine.
"""

from app.routers import clips, health

__all__ = ["health", "clips"]
