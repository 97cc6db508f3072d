"""
FastAPI router for buddy pairing endpoints.

Learner endpoints act on the caller's own pair; admin endpoints act on
any pair.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from common.utils import success_response, list_response
from community.dependencies import (
    require_auth,
    require_admin,
    get_pairing_service,
    get_identity_service,
)
from community.pipelines.overview import format_pairs
from community.schemas.buddies import (
    CreateInvitationRequest,
    AdminCreatePairRequest,
    RepairPairRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/buddies", tags=["buddies"])
admin_router = APIRouter(prefix="/admin/buddies", tags=["admin"])


async def _format_one(pair: dict, viewer_id: Optional[str] = None) -> dict:
    formatted = await format_pairs(get_identity_service(), [pair], viewer_id)
    return formatted[0]


# ─────────────────────────────────────────────────────────────────
# Learner endpoints
# ─────────────────────────────────────────────────────────────────

@router.get("/me")
async def get_my_buddy(
    user: Annotated[dict, Depends(require_auth)],
):
    """Get the caller's active buddy pair, if any."""
    pairing_service = get_pairing_service()
    user_id = str(user["_id"])

    pair = await pairing_service.get_active_pair_for_user(user_id)
    if not pair:
        return success_response({"buddy": None})

    return success_response({"buddy": await _format_one(pair, user_id)})


@router.get("/pending")
async def get_pending_invitations(
    user: Annotated[dict, Depends(require_auth)],
):
    """Get pending invitations involving the caller."""
    user_id = str(user["_id"])
    pairs = await get_pairing_service().get_pending_for_user(user_id)
    return list_response(await format_pairs(get_identity_service(), pairs, user_id))


@router.get("/search")
async def search_learners(
    user: Annotated[dict, Depends(require_auth)],
    q: str = Query(..., min_length=2, max_length=100),
):
    """Search learners to invite."""
    results = await get_identity_service().search(q)
    return list_response([r for r in results if r["id"] != str(user["_id"])])


@router.post("/invitations")
async def create_invitation(
    body: CreateInvitationRequest,
    user: Annotated[dict, Depends(require_auth)],
):
    """Invite another learner to be the caller's buddy."""
    user_id = str(user["_id"])
    pair = await get_pairing_service().create_invitation(user_id, body.userId)
    return success_response(await _format_one(pair, user_id), message="Invitation sent")


@router.post("/{pair_id}/confirm")
async def confirm_pair(
    pair_id: str,
    user: Annotated[dict, Depends(require_auth)],
):
    """Accept an invitation and open the pair's channel."""
    pair = await get_pairing_service().confirm(pair_id, user)
    return success_response(await _format_one(pair, str(user["_id"])))


@router.post("/{pair_id}/reject")
async def reject_pair(
    pair_id: str,
    user: Annotated[dict, Depends(require_auth)],
):
    """Decline a pending invitation."""
    pair = await get_pairing_service().reject(pair_id, user)
    return success_response(await _format_one(pair, str(user["_id"])))


@router.post("/{pair_id}/archive")
async def archive_pair(
    pair_id: str,
    user: Annotated[dict, Depends(require_auth)],
):
    """End a buddy relationship."""
    pair = await get_pairing_service().archive(pair_id, user)
    return success_response(await _format_one(pair, str(user["_id"])))


# ─────────────────────────────────────────────────────────────────
# Admin endpoints
# ─────────────────────────────────────────────────────────────────

@admin_router.get("")
async def list_pairs(
    admin: Annotated[dict, Depends(require_admin)],
    status: Optional[str] = Query(None, pattern="^(pending|confirmed|archived)$"),
):
    """List all buddy pairs."""
    pairs = await get_pairing_service().list_all(status)
    return list_response(await format_pairs(get_identity_service(), pairs))


@admin_router.post("")
async def create_pair(
    body: AdminCreatePairRequest,
    admin: Annotated[dict, Depends(require_admin)],
):
    """Pair two learners by email."""
    pair = await get_pairing_service().create_by_emails(
        body.emailA, body.emailB, admin, status=body.status
    )
    return success_response(await _format_one(pair), message="Buddy pair created")


@admin_router.post("/{pair_id}/confirm")
async def admin_confirm_pair(
    pair_id: str,
    admin: Annotated[dict, Depends(require_admin)],
):
    pair = await get_pairing_service().confirm(pair_id, admin)
    return success_response(await _format_one(pair))


@admin_router.post("/{pair_id}/archive")
async def admin_archive_pair(
    pair_id: str,
    admin: Annotated[dict, Depends(require_admin)],
):
    pair = await get_pairing_service().archive(pair_id, admin)
    return success_response(await _format_one(pair))


@admin_router.post("/{pair_id}/repair")
async def repair_pair(
    pair_id: str,
    body: RepairPairRequest,
    admin: Annotated[dict, Depends(require_admin)],
):
    """Archive a pair and invite a new partner for the remaining learner."""
    result = await get_pairing_service().repair(
        pair_id, body.newUserEmail, admin, keep_user_id=body.keepUserId
    )
    formatted = await format_pairs(
        get_identity_service(), [result["archivedPair"], result["newPair"]]
    )
    return success_response({"archivedPair": formatted[0], "newPair": formatted[1]})
