"""
Buddy pairing service.

Owns the buddy pair lifecycle: invitation, confirmation (which creates the
pair's private chat channel), archival and re-pairing.

Every user holds at most one non-archived pair. The ``buddyslots``
collection has one document per engaged user keyed by user id, so the
unique ``_id`` index rejects a second concurrent reservation.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from common.channels import ChannelProvider
from common.database.object_ids import to_object_id
from common.utils.exceptions import (
    APIException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    RemoteServiceException,
    ValidationException,
)
from community.database.collections import BUDDY_PAIRS, BUDDY_SLOTS
from community.services.channel_claims import ChannelClaimGuard
from community.services.identity.identity_service import IdentityService, is_platform_admin

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ["pending", "confirmed"]
CREATABLE_STATUSES = ["pending", "confirmed"]


class PairingService:
    """
    Manages buddy pairs and their private channels.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        channel_provider: ChannelProvider,
        identity_service: IdentityService,
        claim_ttl_seconds: int = 60,
        claim_wait_seconds: float = 5.0,
    ):
        """
        Initialize PairingService.

        Args:
            db: MongoDB database connection
            channel_provider: External chat channel provider
            identity_service: Identity lookups
            claim_ttl_seconds: Age after which a stuck confirmation can be retried
            claim_wait_seconds: How long a concurrent confirm waits for the first
        """
        self._db = db
        self._pairs_collection = db[BUDDY_PAIRS]
        self._slots_collection = db[BUDDY_SLOTS]
        self._channel_provider = channel_provider
        self._identity_service = identity_service
        self._claims = ChannelClaimGuard(
            self._pairs_collection,
            ttl_seconds=claim_ttl_seconds,
            wait_seconds=claim_wait_seconds,
        )

    # ─────────────────────────────────────────────────────────────
    # Authorization
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def user_can_access_pair(pair: Dict[str, Any], user: Dict[str, Any]) -> bool:
        """Check if user may act on a pair. True if party to it or platform admin."""
        if is_platform_admin(user):
            return True
        user_oid = ObjectId(str(user["_id"]))
        return user_oid in (pair.get("userA"), pair.get("userB"))

    def require_pair_access(self, pair: Dict[str, Any], user: Dict[str, Any]) -> None:
        if not self.user_can_access_pair(pair, user):
            raise ForbiddenException(
                message="You are not part of this buddy pair",
                code="NOT_PAIR_MEMBER",
            )

    # ─────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────

    async def create_invitation(
        self,
        from_user_id: str,
        to_user_id: str,
        invited_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a pending buddy pair.

        Args:
            from_user_id: Inviting learner (stored as userA)
            to_user_id: Invited learner (stored as userB)
            invited_by: Actor creating the invitation (defaults to from_user_id)

        Returns:
            The created pair document

        Raises:
            ValidationException: If both ids are the same user
            NotFoundException: If either user is unknown
            ConflictException: If either user already has a non-archived pair
        """
        if str(from_user_id) == str(to_user_id):
            raise ValidationException(
                message="You cannot pair with yourself",
                code="SELF_PAIRING",
            )

        identities = await self._identity_service.get_users([from_user_id, to_user_id])
        for user_id in (from_user_id, to_user_id):
            if str(user_id) not in identities:
                raise NotFoundException(message="User not found", code="USER_NOT_FOUND")

        user_a = ObjectId(str(from_user_id))
        user_b = ObjectId(str(to_user_id))
        pair_id = ObjectId()
        now = datetime.now(timezone.utc)

        await self._reserve_slots(pair_id, [user_a, user_b], now)

        pair_doc = {
            "_id": pair_id,
            "userA": user_a,
            "userB": user_b,
            "status": "pending",
            "channelRef": None,
            "archivedChannelRef": None,
            "invitedBy": ObjectId(str(invited_by or from_user_id)),
            "confirmedAt": None,
            "archivedAt": None,
            "archivedBy": None,
            "channelClaim": None,
            "createdAt": now,
            "updatedAt": now,
        }

        try:
            await self._pairs_collection.insert_one(pair_doc)
        except Exception:
            await self._release_slots(pair_id, [user_a, user_b])
            raise

        logger.info(f"Buddy invitation {pair_id} created: {user_a} -> {user_b}")

        return pair_doc

    async def confirm(self, pair_id: str, acting_user: Dict[str, Any]) -> Dict[str, Any]:
        """
        Confirm a pending pair and create its private channel.

        The pair only becomes confirmed once the provider returned a channel
        id; status and channelRef are written together. Confirming an
        already confirmed pair returns it unchanged.

        Raises:
            NotFoundException: Unknown pair
            ForbiddenException: Actor is not party to the pair
            ConflictException: Pair is archived or another confirmation
                is still running
            RemoteServiceException: Channel creation failed (pair stays pending)
        """
        pair = await self.get_pair(pair_id)
        self.require_pair_access(pair, acting_user)

        if pair["status"] == "confirmed":
            return pair

        if pair["status"] == "archived":
            raise ConflictException(
                message="Buddy pair is archived",
                code="PAIR_ARCHIVED",
            )

        token = await self._claims.claim(pair["_id"], {"status": "pending"})
        if token is None:
            current = await self._claims.wait_for_channel(pair["_id"])
            if current and current.get("status") == "confirmed":
                return current
            raise ConflictException(
                message="Buddy pair confirmation already in progress",
                code="CONFIRMATION_IN_PROGRESS",
            )

        identities = await self._identity_service.get_users(
            [str(pair["userA"]), str(pair["userB"])]
        )
        name_a = identities.get(str(pair["userA"]), {}).get("displayName", "buddy")
        name_b = identities.get(str(pair["userB"]), {}).get("displayName", "buddy")

        try:
            channel_id = await self._channel_provider.create_channel(
                f"buddy-{name_a}-{name_b}", private=True
            )
        except Exception as e:
            await self._claims.release(pair["_id"], token)
            logger.error(f"Channel creation failed for pair {pair['_id']}: {e}")
            raise

        now = datetime.now(timezone.utc)
        result = await self._pairs_collection.update_one(
            {"_id": pair["_id"], "status": "pending", "channelClaim.token": token},
            {
                "$set": {
                    "status": "confirmed",
                    "channelRef": channel_id,
                    "channelClaim": None,
                    "confirmedAt": now,
                    "updatedAt": now,
                }
            },
        )

        if result.modified_count == 0:
            logger.warning(
                f"Pair {pair['_id']} changed during confirmation; channel {channel_id} left unused"
            )
            raise ConflictException(
                message="Buddy pair changed during confirmation",
                code="PAIR_CHANGED",
            )

        logger.info(f"Buddy pair {pair['_id']} confirmed with channel {channel_id}")

        await self._invite_members(channel_id, [pair["userA"], pair["userB"]])

        return await self.get_pair(str(pair["_id"]))

    async def archive(self, pair_id: str, acting_user: Dict[str, Any]) -> Dict[str, Any]:
        """
        Archive a pair and free both users for new pairings.

        The channel and its history stay with the provider; the id is kept
        as ``archivedChannelRef`` and is never handed to another pair.
        """
        pair = await self.get_pair(pair_id)
        self.require_pair_access(pair, acting_user)

        if pair["status"] == "archived":
            return pair

        now = datetime.now(timezone.utc)
        await self._pairs_collection.update_one(
            {"_id": pair["_id"], "status": {"$ne": "archived"}},
            {
                "$set": {
                    "status": "archived",
                    "channelRef": None,
                    "archivedChannelRef": pair.get("channelRef"),
                    "channelClaim": None,
                    "archivedAt": now,
                    "archivedBy": ObjectId(str(acting_user["_id"])),
                    "updatedAt": now,
                }
            },
        )

        await self._release_slots(pair["_id"], [pair["userA"], pair["userB"]])

        logger.info(f"Buddy pair {pair['_id']} archived by {acting_user['_id']}")

        return await self.get_pair(str(pair["_id"]))

    async def reject(self, pair_id: str, acting_user: Dict[str, Any]) -> Dict[str, Any]:
        """Decline a pending invitation."""
        pair = await self.get_pair(pair_id)
        self.require_pair_access(pair, acting_user)

        if pair["status"] != "pending":
            raise ValidationException(
                message=f"Invitation already {pair['status']}",
                code="INVITATION_ALREADY_PROCESSED",
            )

        return await self.archive(pair_id, acting_user)

    async def repair(
        self,
        pair_id: str,
        new_user_email: str,
        acting_user: Dict[str, Any],
        keep_user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Replace one partner of a pair.

        Archives the pair, then invites the new partner for the remaining
        user. The two steps are not atomic: if the invitation fails the
        original pair stays archived and the raised error says so.

        Args:
            pair_id: Pair to dissolve
            new_user_email: Email of the new partner
            acting_user: Actor (party to the pair or admin)
            keep_user_id: Partner who stays; defaults to the actor when
                they are party to the pair, else userA

        Returns:
            dict with archivedPair and newPair
        """
        pair = await self.get_pair(pair_id)
        self.require_pair_access(pair, acting_user)

        if pair["status"] == "archived":
            raise ConflictException(
                message="Buddy pair is already archived",
                code="PAIR_ARCHIVED",
            )

        party_ids = {str(pair["userA"]), str(pair["userB"])}
        if keep_user_id is None:
            actor_id = str(acting_user["_id"])
            keep_user_id = actor_id if actor_id in party_ids else str(pair["userA"])
        elif str(keep_user_id) not in party_ids:
            raise ValidationException(
                message="The remaining user must be part of the pair",
                code="INVALID_REMAINING_USER",
            )

        new_partner = await self._identity_service.find_by_email(new_user_email)
        if not new_partner:
            raise NotFoundException(
                message=f"No user with email {new_user_email}",
                code="USER_NOT_FOUND",
            )

        if new_partner["id"] in party_ids:
            raise ValidationException(
                message="New partner must not already be part of this pair",
                code="SAME_PARTNER",
            )

        if await self._slots_collection.find_one({"_id": ObjectId(new_partner["id"])}):
            raise ConflictException(
                message="New partner already has a buddy",
                code="ALREADY_PAIRED",
            )

        archived = await self.archive(pair_id, acting_user)

        try:
            new_pair = await self.create_invitation(
                keep_user_id,
                new_partner["id"],
                invited_by=str(acting_user["_id"]),
            )
        except APIException as e:
            logger.warning(f"Re-pairing of {pair_id} stopped after archive: {e.detail}")
            raise ConflictException(
                message="Pair was archived but the new invitation failed",
                code="REPAIR_INCOMPLETE",
                details={"archivedPairId": str(archived["_id"]), "cause": e.detail},
            )

        return {"archivedPair": archived, "newPair": new_pair}

    async def create_by_emails(
        self,
        email_a: str,
        email_b: str,
        acting_user: Dict[str, Any],
        status: str = "pending",
    ) -> Dict[str, Any]:
        """Admin shortcut: pair two learners by email, optionally confirming at once."""
        if status not in CREATABLE_STATUSES:
            raise ValidationException(
                message=f"Status must be one of {', '.join(CREATABLE_STATUSES)}",
                code="INVALID_STATUS",
            )

        resolved = await self._identity_service.find_by_emails([email_a, email_b])
        missing = [e for e in (email_a, email_b) if e.strip().lower() not in resolved]
        if missing:
            raise NotFoundException(
                message=f"No user with email {missing[0]}",
                code="USER_NOT_FOUND",
                details={"emails": missing},
            )

        user_a = resolved[email_a.strip().lower()]
        user_b = resolved[email_b.strip().lower()]

        pair = await self.create_invitation(
            user_a["id"], user_b["id"], invited_by=str(acting_user["_id"])
        )

        if status == "confirmed":
            try:
                pair = await self.confirm(str(pair["_id"]), acting_user)
            except RemoteServiceException:
                logger.warning(f"Pair {pair['_id']} created but left pending: channel creation failed")
                raise

        return pair

    # ─────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────

    async def get_pair(self, pair_id: str) -> Dict[str, Any]:
        """Get pair by ID."""
        oid = to_object_id(pair_id, "Buddy pair not found", "PAIR_NOT_FOUND")
        pair = await self._pairs_collection.find_one({"_id": oid})
        if not pair:
            raise NotFoundException(message="Buddy pair not found", code="PAIR_NOT_FOUND")
        return pair

    async def get_active_pair_for_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Get the user's pending or confirmed pair, if any."""
        user_oid = ObjectId(str(user_id))
        return await self._pairs_collection.find_one({
            "$or": [{"userA": user_oid}, {"userB": user_oid}],
            "status": {"$in": ACTIVE_STATUSES},
        })

    async def get_pending_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        """Get pending invitations involving the user."""
        user_oid = ObjectId(str(user_id))
        cursor = self._pairs_collection.find({
            "$or": [{"userA": user_oid}, {"userB": user_oid}],
            "status": "pending",
        }).sort("createdAt", -1)
        return await cursor.to_list(length=50)

    async def list_all(self, status: Optional[str] = None, limit: int = 500) -> List[Dict[str, Any]]:
        """List pairs for admins with optional status filter."""
        query: Dict[str, Any] = {}
        if status:
            query["status"] = status

        cursor = self._pairs_collection.find(query).sort("createdAt", -1)
        return await cursor.to_list(length=limit)

    # ─────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────

    async def _reserve_slots(
        self,
        pair_id: ObjectId,
        user_ids: List[ObjectId],
        now: datetime,
    ) -> None:
        reserved: List[ObjectId] = []
        for user_id in user_ids:
            try:
                await self._slots_collection.insert_one(
                    {"_id": user_id, "pairId": pair_id, "createdAt": now}
                )
            except DuplicateKeyError:
                await self._release_slots(pair_id, reserved)
                raise ConflictException(
                    message="User already has an active buddy pair",
                    code="ALREADY_PAIRED",
                    details={"userId": str(user_id)},
                )
            reserved.append(user_id)

    async def _release_slots(self, pair_id: ObjectId, user_ids: List[ObjectId]) -> None:
        if not user_ids:
            return
        await self._slots_collection.delete_many(
            {"_id": {"$in": list(user_ids)}, "pairId": pair_id}
        )

    async def _invite_members(self, channel_id: str, user_ids: List[ObjectId]) -> None:
        """Best-effort: invite users that have a provider identity."""
        external_ids = await self._identity_service.get_external_ids(
            [str(uid) for uid in user_ids]
        )
        for user_id, external_id in external_ids.items():
            invited = await self._channel_provider.invite_member(channel_id, external_id)
            if not invited:
                logger.warning(f"Could not invite user {user_id} to channel {channel_id}")
