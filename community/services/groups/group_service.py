"""
Community group management service.

Handles cohort/graduate/mentor/custom groups, their memberships and the
lazily created group channel.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Iterable

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from common.channels import ChannelProvider
from common.database.object_ids import to_object_id
from common.utils.dates import as_utc, as_utc_or_none
from common.utils.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from community.database.collections import GROUPS, GROUP_MEMBERSHIPS
from community.services.channel_claims import ChannelClaimGuard
from community.services.identity.identity_service import IdentityService, is_platform_admin

logger = logging.getLogger(__name__)


class GroupService:
    """
    Handles group lifecycle, memberships and group channels.
    """

    GROUP_TYPES = ["cohort", "graduate", "mentor", "custom"]
    MEMBER_ROLES = ["member", "admin"]
    MAX_GROUPS = 500
    MAX_MEMBERS = 1000

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        channel_provider: ChannelProvider,
        identity_service: IdentityService,
        claim_ttl_seconds: int = 60,
        claim_wait_seconds: float = 5.0,
    ):
        """
        Initialize GroupService.

        Args:
            db: MongoDB database connection
            channel_provider: External chat channel provider
            identity_service: Identity lookups
            claim_ttl_seconds: Age after which a stuck channel creation can be retried
            claim_wait_seconds: How long a concurrent ensure_channel waits for the first
        """
        self._db = db
        self._groups_collection = db[GROUPS]
        self._memberships_collection = db[GROUP_MEMBERSHIPS]
        self._channel_provider = channel_provider
        self._identity_service = identity_service
        self._claims = ChannelClaimGuard(
            self._groups_collection,
            ttl_seconds=claim_ttl_seconds,
            wait_seconds=claim_wait_seconds,
        )

    # ─────────────────────────────────────────────────────────────
    # Groups
    # ─────────────────────────────────────────────────────────────

    async def create_group(
        self,
        name: str,
        group_type: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        created_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a group without a channel.

        Args:
            name: Group name
            group_type: One of GROUP_TYPES
            start_date: Optional start of the group
            end_date: Optional end of the group
            created_by: Admin creating the group

        Returns:
            The created group document
        """
        name = (name or "").strip()
        if not name:
            raise ValidationException(message="Group name is required", code="NAME_REQUIRED")

        self._validate_type(group_type)
        start_date = as_utc_or_none(start_date)
        end_date = as_utc_or_none(end_date)
        self._validate_dates(start_date, end_date)

        now = datetime.now(timezone.utc)
        group_doc = {
            "name": name,
            "type": group_type,
            "startDate": start_date,
            "endDate": end_date,
            "channelRef": None,
            "channelClaim": None,
            "archived": False,
            "archivedAt": None,
            "createdBy": ObjectId(str(created_by)) if created_by else None,
            "createdAt": now,
            "updatedAt": now,
        }

        result = await self._groups_collection.insert_one(group_doc)
        group_doc["_id"] = result.inserted_id

        logger.info(f"Group {result.inserted_id} created: {group_type} '{name}'")

        return group_doc

    async def update_group(
        self,
        group_id: str,
        name: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Rename a group or change its dates."""
        group = await self.get_group(group_id)

        updates: Dict[str, Any] = {}
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationException(message="Group name is required", code="NAME_REQUIRED")
            updates["name"] = name
        if start_date is not None:
            updates["startDate"] = as_utc(start_date)
        if end_date is not None:
            updates["endDate"] = as_utc(end_date)

        self._validate_dates(
            updates.get("startDate", group.get("startDate")),
            updates.get("endDate", group.get("endDate")),
        )

        if not updates:
            return group

        updates["updatedAt"] = datetime.now(timezone.utc)
        await self._groups_collection.update_one({"_id": group["_id"]}, {"$set": updates})

        return await self.get_group(group_id)

    async def archive_group(self, group_id: str) -> Dict[str, Any]:
        """Archive a group. Memberships and the channel are preserved."""
        group = await self.get_group(group_id)
        if group.get("archived"):
            return group

        now = datetime.now(timezone.utc)
        await self._groups_collection.update_one(
            {"_id": group["_id"]},
            {"$set": {"archived": True, "archivedAt": now, "updatedAt": now}},
        )

        logger.info(f"Group {group_id} archived")

        return await self.get_group(group_id)

    async def ensure_channel(self, group_id: str) -> str:
        """
        Return the group's channel, creating it on first use.

        Only the caller that wins the channel claim talks to the provider.
        A concurrent caller waits for the winner and returns its channel.

        Raises:
            NotFoundException: Unknown group
            ValidationException: Group is archived
            ConflictException: Another caller is still creating the channel
            RemoteServiceException: Channel creation failed
        """
        group = await self.get_group(group_id)
        if group.get("channelRef"):
            return group["channelRef"]

        if group.get("archived"):
            raise ValidationException(
                message="Archived groups cannot get a channel",
                code="GROUP_ARCHIVED",
            )

        token = await self._claims.claim(group["_id"], {"archived": False})
        if token is None:
            current = await self._claims.wait_for_channel(group["_id"])
            if current and current.get("channelRef"):
                return current["channelRef"]
            raise ConflictException(
                message="Group channel is being created, try again shortly",
                code="CHANNEL_CREATION_IN_PROGRESS",
            )

        try:
            channel_id = await self._channel_provider.create_channel(
                f"{group['type']}-{group['name']}", private=False
            )
        except Exception as e:
            await self._claims.release(group["_id"], token)
            logger.error(f"Channel creation failed for group {group_id}: {e}")
            raise

        result = await self._groups_collection.update_one(
            {"_id": group["_id"], "channelRef": None, "channelClaim.token": token},
            {
                "$set": {
                    "channelRef": channel_id,
                    "channelClaim": None,
                    "updatedAt": datetime.now(timezone.utc),
                }
            },
        )

        if result.modified_count == 0:
            logger.warning(f"Group {group_id} lost its channel claim; channel {channel_id} left unused")
            current = await self.get_group(group_id)
            if current.get("channelRef"):
                return current["channelRef"]
            raise ConflictException(
                message="Group changed during channel creation",
                code="GROUP_CHANGED",
            )

        logger.info(f"Group {group_id} channel created: {channel_id}")

        member_ids = await self._member_user_ids(group["_id"])
        await self._invite_members(channel_id, member_ids)

        return channel_id

    # ─────────────────────────────────────────────────────────────
    # Memberships
    # ─────────────────────────────────────────────────────────────

    async def add_member(self, group_id: str, user_id: str, role: str = "member") -> bool:
        """
        Add a user to a group.

        Returns:
            True if a membership was created, False if the user was already a member
        """
        group = await self.get_group(group_id)
        self._require_active(group)
        self._validate_role(role)
        return await self._insert_membership(group, ObjectId(str(user_id)), role)

    async def add_members_by_email(
        self,
        group_id: str,
        emails: List[str],
        role: str = "member",
    ) -> Dict[str, Any]:
        """
        Resolve emails and add each user to the group.

        Args:
            group_id: Target group
            emails: Emails to add
            role: Membership role for every added user

        Returns:
            dict with added, skipped and errors ({row, email, reason})
        """
        group = await self.get_group(group_id)
        self._require_active(group)
        self._validate_role(role)

        resolved = await self._identity_service.find_by_emails(emails)
        report: Dict[str, Any] = {"added": 0, "skipped": 0, "errors": []}

        for row, email in enumerate(emails, start=1):
            normalized = (email or "").strip().lower()
            if not normalized:
                report["errors"].append({"row": row, "email": email, "reason": "missing email"})
                continue

            identity = resolved.get(normalized)
            if not identity:
                report["errors"].append({"row": row, "email": email, "reason": "user not found"})
                continue

            if await self._insert_membership(group, ObjectId(identity["id"]), role):
                report["added"] += 1
            else:
                report["skipped"] += 1

        logger.info(
            f"Added members to group {group_id}: "
            f"{report['added']} added, {report['skipped']} skipped, {len(report['errors'])} errors"
        )

        return report

    async def remove_member(self, group_id: str, user_id: str) -> bool:
        """Remove a membership and kick the user from the channel (best effort)."""
        group = await self.get_group(group_id)
        user_oid = to_object_id(user_id, "Member not found", "MEMBER_NOT_FOUND")

        result = await self._memberships_collection.delete_one({
            "groupId": group["_id"],
            "userId": user_oid,
        })
        if result.deleted_count == 0:
            raise NotFoundException(message="Member not found", code="MEMBER_NOT_FOUND")

        logger.info(f"User {user_id} removed from group {group_id}")

        if group.get("channelRef"):
            external_id = await self._identity_service.get_external_id(str(user_oid))
            if external_id:
                removed = await self._channel_provider.remove_member(group["channelRef"], external_id)
                if not removed:
                    logger.warning(f"Could not remove user {user_id} from channel {group['channelRef']}")

        return True

    async def is_member(self, group_id: ObjectId, user_id: str) -> bool:
        membership = await self._memberships_collection.find_one({
            "groupId": group_id,
            "userId": ObjectId(str(user_id)),
        })
        return membership is not None

    async def user_has_group_access(self, group_id: str, user: Dict[str, Any]) -> bool:
        """Check if user is a member of the group or a platform admin."""
        if is_platform_admin(user):
            return True
        return await self.is_member(to_object_id(group_id), str(user["_id"]))

    async def require_group_access(self, group_id: str, user: Dict[str, Any]) -> None:
        if not await self.user_has_group_access(group_id, user):
            raise ForbiddenException(
                message="You are not a member of this group",
                code="NOT_GROUP_MEMBER",
            )

    # ─────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────

    async def get_group(self, group_id: str) -> Dict[str, Any]:
        """Get group by ID."""
        oid = to_object_id(group_id, "Group not found", "GROUP_NOT_FOUND")
        group = await self._groups_collection.find_one({"_id": oid})
        if not group:
            raise NotFoundException(message="Group not found", code="GROUP_NOT_FOUND")
        return group

    async def find_active_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        """Find a non-archived group by exact name."""
        name = (name or "").strip()
        if not name:
            return None
        return await self._groups_collection.find_one({"name": name, "archived": False})

    async def list_groups_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        """Get non-archived groups the user is a member of."""
        memberships = await self._memberships_collection.find(
            {"userId": ObjectId(str(user_id))}
        ).to_list(length=self.MAX_GROUPS)

        if not memberships:
            return []

        roles = {m["groupId"]: m.get("role", "member") for m in memberships}
        groups = await self._groups_collection.find({
            "_id": {"$in": list(roles.keys())},
            "archived": False,
        }).sort("name", 1).to_list(length=self.MAX_GROUPS)

        for group in groups:
            group["membershipRole"] = roles.get(group["_id"], "member")

        return groups

    async def list_group_ids_for_user(self, user_id: str) -> List[ObjectId]:
        memberships = await self._memberships_collection.find(
            {"userId": ObjectId(str(user_id))},
            {"groupId": 1},
        ).to_list(length=self.MAX_GROUPS)
        return [m["groupId"] for m in memberships]

    async def list_all(self, include_archived: bool = False) -> List[Dict[str, Any]]:
        """List groups for admins with member counts."""
        query: Dict[str, Any] = {} if include_archived else {"archived": False}
        groups = await self._groups_collection.find(query).sort("createdAt", -1).to_list(
            length=self.MAX_GROUPS
        )

        if not groups:
            return []

        counts = await self._memberships_collection.aggregate([
            {"$match": {"groupId": {"$in": [g["_id"] for g in groups]}}},
            {"$group": {"_id": "$groupId", "count": {"$sum": 1}}},
        ]).to_list(length=len(groups))
        count_map = {c["_id"]: c["count"] for c in counts}

        for group in groups:
            group["memberCount"] = count_map.get(group["_id"], 0)

        return groups

    async def list_members(self, group_id: str) -> List[Dict[str, Any]]:
        """Get group members with identity details."""
        group = await self.get_group(group_id)

        memberships = await self._memberships_collection.find(
            {"groupId": group["_id"]}
        ).sort("joinedAt", 1).to_list(length=self.MAX_MEMBERS)

        identities = await self._identity_service.get_users(
            [str(m["userId"]) for m in memberships]
        )

        members = []
        for membership in memberships:
            identity = identities.get(str(membership["userId"]))
            members.append({
                "userId": str(membership["userId"]),
                "email": identity["email"] if identity else "",
                "displayName": identity["displayName"] if identity else "Unknown",
                "role": membership.get("role", "member"),
                "joinedAt": membership.get("joinedAt"),
            })

        return members

    # ─────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────

    async def _insert_membership(self, group: Dict[str, Any], user_oid: ObjectId, role: str) -> bool:
        try:
            await self._memberships_collection.insert_one({
                "groupId": group["_id"],
                "userId": user_oid,
                "role": role,
                "joinedAt": datetime.now(timezone.utc),
            })
        except DuplicateKeyError:
            return False

        if group.get("channelRef"):
            await self._invite_members(group["channelRef"], [user_oid])

        return True

    async def _member_user_ids(self, group_oid: ObjectId) -> List[ObjectId]:
        memberships = await self._memberships_collection.find(
            {"groupId": group_oid},
            {"userId": 1},
        ).to_list(length=self.MAX_MEMBERS)
        return [m["userId"] for m in memberships]

    async def _invite_members(self, channel_id: str, user_ids: Iterable[ObjectId]) -> None:
        """Best-effort: invite users that have a provider identity."""
        external_ids = await self._identity_service.get_external_ids(
            [str(uid) for uid in user_ids]
        )
        for user_id, external_id in external_ids.items():
            invited = await self._channel_provider.invite_member(channel_id, external_id)
            if not invited:
                logger.warning(f"Could not invite user {user_id} to channel {channel_id}")

    def _validate_type(self, group_type: str) -> None:
        if group_type not in self.GROUP_TYPES:
            raise ValidationException(
                message=f"Group type must be one of {', '.join(self.GROUP_TYPES)}",
                code="INVALID_GROUP_TYPE",
            )

    def _validate_role(self, role: str) -> None:
        if role not in self.MEMBER_ROLES:
            raise ValidationException(
                message=f"Role must be one of {', '.join(self.MEMBER_ROLES)}",
                code="INVALID_ROLE",
            )

    @staticmethod
    def _validate_dates(start_date: Optional[datetime], end_date: Optional[datetime]) -> None:
        if start_date and end_date and as_utc(start_date) > as_utc(end_date):
            raise ValidationException(
                message="Start date must be on or before end date",
                code="INVALID_DATE_RANGE",
            )

    @staticmethod
    def _require_active(group: Dict[str, Any]) -> None:
        if group.get("archived"):
            raise ValidationException(
                message="Group is archived",
                code="GROUP_ARCHIVED",
            )
