"""
FastAPI router for community group endpoints.

Provides learner group listings and admin group management, including
CSV membership import.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, UploadFile, File, Form

from common.utils import success_response, list_response, ValidationException
from community.dependencies import (
    require_auth,
    require_admin,
    get_group_service,
    get_membership_importer,
)
from community.pipelines.overview import format_group
from community.schemas.groups import (
    CreateGroupRequest,
    UpdateGroupRequest,
    AddMembersRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/groups", tags=["groups"])
admin_router = APIRouter(prefix="/admin/groups", tags=["admin"])

MAX_CSV_BYTES = 1024 * 1024


# ─────────────────────────────────────────────────────────────────
# Learner endpoints
# ─────────────────────────────────────────────────────────────────

@router.get("/me")
async def get_my_groups(
    user: Annotated[dict, Depends(require_auth)],
):
    """Get the caller's groups."""
    groups = await get_group_service().list_groups_for_user(str(user["_id"]))
    return list_response([format_group(g) for g in groups])


@router.get("/{group_id}/members")
async def get_group_members(
    group_id: str,
    user: Annotated[dict, Depends(require_auth)],
):
    """List members of a group the caller belongs to."""
    group_service = get_group_service()
    await group_service.require_group_access(group_id, user)
    members = await group_service.list_members(group_id)
    return list_response(_format_members(members))


def _format_members(members: list) -> list:
    return [
        {
            **m,
            "joinedAt": m["joinedAt"].isoformat() if m.get("joinedAt") else None,
        }
        for m in members
    ]


# ─────────────────────────────────────────────────────────────────
# Admin endpoints
# ─────────────────────────────────────────────────────────────────

@admin_router.get("")
async def list_groups(
    admin: Annotated[dict, Depends(require_admin)],
    include_archived: bool = Query(False, alias="includeArchived"),
):
    """List groups with member counts."""
    groups = await get_group_service().list_all(include_archived=include_archived)
    return list_response([format_group(g) for g in groups])


@admin_router.post("")
async def create_group(
    body: CreateGroupRequest,
    admin: Annotated[dict, Depends(require_admin)],
):
    group = await get_group_service().create_group(
        name=body.name,
        group_type=body.type,
        start_date=body.startDate,
        end_date=body.endDate,
        created_by=str(admin["_id"]),
    )
    return success_response(format_group(group), message="Group created")


@admin_router.post("/import")
async def import_members(
    admin: Annotated[dict, Depends(require_admin)],
    file: UploadFile = File(..., description="CSV with header email,full_name,role,cohort"),
    group_id: Optional[str] = Form(default=None, alias="groupId"),
):
    """Import memberships from a CSV file."""
    raw = await file.read()
    if len(raw) > MAX_CSV_BYTES:
        raise ValidationException(message="CSV file is too large", code="FILE_TOO_LARGE")

    try:
        content = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationException(message="CSV file must be UTF-8 encoded", code="INVALID_ENCODING")

    report = await get_membership_importer().import_csv(content, group_id=group_id or None)
    return success_response(report)


@admin_router.patch("/{group_id}")
async def update_group(
    group_id: str,
    body: UpdateGroupRequest,
    admin: Annotated[dict, Depends(require_admin)],
):
    group = await get_group_service().update_group(
        group_id,
        name=body.name,
        start_date=body.startDate,
        end_date=body.endDate,
    )
    return success_response(format_group(group))


@admin_router.post("/{group_id}/archive")
async def archive_group(
    group_id: str,
    admin: Annotated[dict, Depends(require_admin)],
):
    group = await get_group_service().archive_group(group_id)
    return success_response(format_group(group))


@admin_router.post("/{group_id}/channel")
async def ensure_group_channel(
    group_id: str,
    admin: Annotated[dict, Depends(require_admin)],
):
    """Create the group's channel if it has none."""
    channel_ref = await get_group_service().ensure_channel(group_id)
    return success_response({"channelRef": channel_ref})


@admin_router.get("/{group_id}/members")
async def admin_list_members(
    group_id: str,
    admin: Annotated[dict, Depends(require_admin)],
):
    members = await get_group_service().list_members(group_id)
    return list_response(_format_members(members))


@admin_router.post("/{group_id}/members")
async def add_members(
    group_id: str,
    body: AddMembersRequest,
    admin: Annotated[dict, Depends(require_admin)],
):
    """Add members by email."""
    report = await get_group_service().add_members_by_email(group_id, body.emails, body.role)
    return success_response(report)


@admin_router.delete("/{group_id}/members/{user_id}")
async def remove_member(
    group_id: str,
    user_id: str,
    admin: Annotated[dict, Depends(require_admin)],
):
    await get_group_service().remove_member(group_id, user_id)
    return success_response(message="Member removed")
