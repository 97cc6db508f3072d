"""
Community Routers.

All API routers are imported here.
"""

from community.routers import buddies
from community.routers import groups
from community.routers import sessions
from community.routers import chat
from community.routers import overview

__all__ = [
    "buddies",
    "groups",
    "sessions",
    "chat",
    "overview",
]
