"""Training session services."""

from community.services.sessions.session_service import SessionService, compute_session_status

__all__ = [
    "SessionService",
    "compute_session_status",
]
