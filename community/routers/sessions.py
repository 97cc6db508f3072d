"""
FastAPI router for live training session endpoints.
"""

import logging
from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from common.utils import success_response, list_response, ForbiddenException
from community.config import settings
from community.dependencies import (
    require_auth,
    require_admin,
    get_session_service,
)
from community.pipelines.overview import format_session, list_sessions_with_status
from community.schemas.sessions import CreateSessionRequest, UpdateSessionRequest
from community.services.identity.identity_service import is_platform_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])
admin_router = APIRouter(prefix="/admin/sessions", tags=["admin"])

STATUS_PATTERN = "^(upcoming|live|completed)$"


# ─────────────────────────────────────────────────────────────────
# Learner endpoints
# ─────────────────────────────────────────────────────────────────

@router.get("/me")
async def get_my_sessions(
    user: Annotated[dict, Depends(require_auth)],
):
    """Sessions open to the caller that have not ended."""
    sessions = await get_session_service().list_for_user(str(user["_id"]))
    return list_response(list_sessions_with_status(sessions))


@router.get("/{session_id}")
async def get_session(
    session_id: str,
    user: Annotated[dict, Depends(require_auth)],
):
    session_service = get_session_service()
    session = await session_service.get_session(session_id)

    if not is_platform_admin(user) and not await session_service.user_can_access_session(
        session, str(user["_id"])
    ):
        raise ForbiddenException(
            message="You are not invited to this session",
            code="NOT_SESSION_PARTICIPANT",
        )

    return success_response(format_session(session))


# ─────────────────────────────────────────────────────────────────
# Admin endpoints
# ─────────────────────────────────────────────────────────────────

@admin_router.get("")
async def list_sessions(
    admin: Annotated[dict, Depends(require_admin)],
    status: Optional[str] = Query(None, pattern=STATUS_PATTERN),
    start: Optional[datetime] = Query(None, alias="from"),
    end: Optional[datetime] = Query(None, alias="to"),
):
    """List sessions, optionally within a start-time range or by derived status."""
    session_service = get_session_service()

    if start and end:
        sessions = await session_service.list_in_range(start, end)
    else:
        sessions = await session_service.list_all()

    return list_response(list_sessions_with_status(sessions, status))


@admin_router.post("")
async def create_session(
    body: CreateSessionRequest,
    admin: Annotated[dict, Depends(require_admin)],
):
    session = await get_session_service().create_session(
        title=body.title,
        start_time=body.startTime,
        end_time=body.endTime,
        created_by=str(admin["_id"]),
        description=body.description,
        channel_ref=body.channelRef,
        group_id=body.groupId,
        meeting_link=body.meetingLink,
    )
    return success_response(format_session(session), message="Session scheduled")


@admin_router.post("/reminders")
async def dispatch_reminders(
    admin: Annotated[dict, Depends(require_admin)],
):
    """Run the reminder sweep now."""
    stats = await get_session_service().dispatch_reminders(
        window_minutes=settings.REMINDER_WINDOW_MINUTES
    )
    return success_response(stats)


@admin_router.patch("/{session_id}")
async def update_session(
    session_id: str,
    body: UpdateSessionRequest,
    admin: Annotated[dict, Depends(require_admin)],
):
    session = await get_session_service().update_session(
        session_id, body.model_dump(exclude_unset=True)
    )
    return success_response(format_session(session))


@admin_router.delete("/{session_id}")
async def delete_session(
    session_id: str,
    admin: Annotated[dict, Depends(require_admin)],
):
    await get_session_service().delete_session(session_id)
    return success_response(message="Session deleted")
