"""
HTTP API for the notification feature.
"""

from .router import router

__all__ = ["router"]
