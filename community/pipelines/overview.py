"""
Community overview pipeline functions.

Formats pairs, groups and sessions for the API and assembles the
"my community" view and admin listings.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from community.services.groups.group_service import GroupService
from community.services.identity.identity_service import IdentityService
from community.services.pairing.pairing_service import PairingService
from community.services.sessions.session_service import SessionService, compute_session_status

logger = logging.getLogger(__name__)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def format_pair(
    pair: Dict[str, Any],
    identities: Dict[str, Dict[str, Any]],
    viewer_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Format a buddy pair.

    With a viewer, the other party is returned as ``partner``; without one
    (admin listings) both parties are returned.
    """
    user_a = str(pair["userA"])
    user_b = str(pair["userB"])

    formatted = {
        "id": str(pair["_id"]),
        "status": pair["status"],
        "hasChannel": bool(pair.get("channelRef")),
        "channelRef": pair.get("channelRef"),
        "invitedBy": str(pair["invitedBy"]) if pair.get("invitedBy") else None,
        "createdAt": _iso(pair.get("createdAt")),
        "confirmedAt": _iso(pair.get("confirmedAt")),
        "archivedAt": _iso(pair.get("archivedAt")),
    }

    if viewer_id:
        partner_id = user_b if str(viewer_id) == user_a else user_a
        formatted["partner"] = identities.get(partner_id, {"id": partner_id})
        formatted["invitedByMe"] = formatted["invitedBy"] == str(viewer_id)
    else:
        formatted["userA"] = identities.get(user_a, {"id": user_a})
        formatted["userB"] = identities.get(user_b, {"id": user_b})

    return formatted


def format_group(group: Dict[str, Any]) -> Dict[str, Any]:
    formatted = {
        "id": str(group["_id"]),
        "name": group["name"],
        "type": group["type"],
        "startDate": _iso(group.get("startDate")),
        "endDate": _iso(group.get("endDate")),
        "hasChannel": bool(group.get("channelRef")),
        "channelRef": group.get("channelRef"),
        "archived": group.get("archived", False),
        "createdAt": _iso(group.get("createdAt")),
    }
    if "memberCount" in group:
        formatted["memberCount"] = group["memberCount"]
    if "membershipRole" in group:
        formatted["role"] = group["membershipRole"]
    return formatted


def format_session(session: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Format a session with its status derived at ``now``."""
    return {
        "id": str(session["_id"]),
        "title": session["title"],
        "description": session.get("description"),
        "startTime": _iso(session["startTime"]),
        "endTime": _iso(session["endTime"]),
        "status": compute_session_status(session, now),
        "groupId": str(session["groupId"]) if session.get("groupId") else None,
        "meetingLink": session.get("meetingLink"),
        "hasChannel": bool(session.get("channelRef")),
        "channelRef": session.get("channelRef"),
        "reminderSent": bool(session.get("reminderSentFor")),
    }


async def format_pairs(
    identity_service: IdentityService,
    pairs: List[Dict[str, Any]],
    viewer_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Format several pairs with one identity lookup."""
    user_ids = set()
    for pair in pairs:
        user_ids.add(str(pair["userA"]))
        user_ids.add(str(pair["userB"]))

    identities = await identity_service.get_users(user_ids)
    return [format_pair(pair, identities, viewer_id) for pair in pairs]


async def get_my_community(
    pairing_service: PairingService,
    group_service: GroupService,
    session_service: SessionService,
    identity_service: IdentityService,
    user_id: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Everything a learner sees on their community page.

    1. Active buddy pair and pending invitations
    2. Groups the learner belongs to
    3. Sessions open to the learner that have not ended
    """
    now = now or datetime.now(timezone.utc)

    active_pair = await pairing_service.get_active_pair_for_user(user_id)
    pending = await pairing_service.get_pending_for_user(user_id)
    groups = await group_service.list_groups_for_user(user_id)
    sessions = await session_service.list_for_user(user_id, now)

    pairs = [active_pair] if active_pair else []
    pairs.extend(p for p in pending if not active_pair or p["_id"] != active_pair["_id"])
    formatted_pairs = await format_pairs(identity_service, pairs, viewer_id=user_id)

    return {
        "buddy": formatted_pairs[0] if active_pair else None,
        "pendingInvitations": formatted_pairs[1:] if active_pair else formatted_pairs,
        "groups": [format_group(g) for g in groups],
        "sessions": [format_session(s, now) for s in sessions],
    }


def list_sessions_with_status(
    sessions: List[Dict[str, Any]],
    status: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Format sessions, optionally keeping only one derived status."""
    now = now or datetime.now(timezone.utc)
    formatted = [format_session(s, now) for s in sessions]
    if status:
        formatted = [s for s in formatted if s["status"] == status]
    return formatted
