"""
Community Middleware.
"""

from community.middleware.auth import AuthMiddleware

__all__ = [
    "AuthMiddleware",
]
