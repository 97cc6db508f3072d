"""
Identity lookup service.

Read-only view over the platform's users collection. Resolves emails,
ids and free-text queries to ``{id, email, displayName}`` identities and
maps internal users to their channel provider identity. Users without a
stored provider id are looked up by email through the channel provider.
"""

import logging
import re
from typing import Optional, List, Dict, Any, Iterable

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from common.channels import ChannelProvider
from community.database.collections import USERS

logger = logging.getLogger(__name__)


def display_name_for(user: Dict[str, Any]) -> str:
    """Display name from profile, falling back to the email's local part."""
    if user.get("displayName"):
        return user["displayName"]

    profile = user.get("profile") or {}
    full_name = " ".join(
        part for part in (profile.get("firstName"), profile.get("lastName")) if part
    ).strip()
    if full_name:
        return full_name

    email = user.get("email") or ""
    return email.split("@")[0] if email else "Learner"


def is_platform_admin(user: Optional[Dict[str, Any]]) -> bool:
    """True if the user document carries the platform admin role."""
    return bool(user) and user.get("role") == "admin"


class IdentityService:
    """
    Resolves users from the identity store.
    """

    SEARCH_LIMIT = 10

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        channel_provider: Optional[ChannelProvider] = None,
    ):
        """
        Initialize IdentityService.

        Args:
            db: MongoDB database connection
            channel_provider: Used to find provider users by email when the
                user document has no ``slackUserId``
        """
        self._db = db
        self._users_collection = db[USERS]
        self._channel_provider = channel_provider

    @staticmethod
    def to_identity(user: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": str(user["_id"]),
            "email": user.get("email", ""),
            "displayName": display_name_for(user),
        }

    async def get_user_document(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Get the raw user document, or None if the id is unknown."""
        if not ObjectId.is_valid(str(user_id)):
            return None
        return await self._users_collection.find_one({"_id": ObjectId(str(user_id))})

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Get an identity by user id."""
        user = await self.get_user_document(user_id)
        return self.to_identity(user) if user else None

    async def get_users(self, user_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        """Get identities for several users, keyed by user id."""
        object_ids = [ObjectId(str(uid)) for uid in user_ids if ObjectId.is_valid(str(uid))]
        if not object_ids:
            return {}

        cursor = self._users_collection.find({"_id": {"$in": object_ids}})
        users = await cursor.to_list(length=len(object_ids))
        return {str(u["_id"]): self.to_identity(u) for u in users}

    async def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        """Resolve a single email (case-insensitive) to an identity."""
        email = (email or "").strip().lower()
        if not email:
            return None

        user = await self._users_collection.find_one({"email": email})
        return self.to_identity(user) if user else None

    async def find_by_emails(self, emails: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        """Resolve several emails, keyed by the normalized email."""
        normalized = sorted({(e or "").strip().lower() for e in emails if e and e.strip()})
        if not normalized:
            return {}

        cursor = self._users_collection.find({"email": {"$in": normalized}})
        users = await cursor.to_list(length=len(normalized))
        return {u["email"].lower(): self.to_identity(u) for u in users if u.get("email")}

    async def search(self, query: str, limit: int = SEARCH_LIMIT) -> List[Dict[str, Any]]:
        """Search users by email or name fragment."""
        query = (query or "").strip()
        if not query:
            return []

        pattern = {"$regex": re.escape(query), "$options": "i"}
        cursor = self._users_collection.find({
            "$or": [
                {"email": pattern},
                {"displayName": pattern},
                {"profile.firstName": pattern},
                {"profile.lastName": pattern},
            ]
        }).limit(limit)

        users = await cursor.to_list(length=limit)
        return [self.to_identity(u) for u in users]

    async def get_external_id(self, user_id: str) -> Optional[str]:
        """Map an internal user id to the channel provider's user id."""
        user = await self.get_user_document(user_id)
        if not user:
            return None
        return user.get("slackUserId") or await self._lookup_external_id(user)

    async def get_external_ids(self, user_ids: Iterable[str]) -> Dict[str, str]:
        """Map several users to provider ids. Users without a mapping are left out."""
        object_ids = [ObjectId(str(uid)) for uid in user_ids if ObjectId.is_valid(str(uid))]
        if not object_ids:
            return {}

        cursor = self._users_collection.find(
            {"_id": {"$in": object_ids}},
            {"slackUserId": 1, "email": 1},
        )
        users = await cursor.to_list(length=len(object_ids))

        mapping: Dict[str, str] = {}
        for user in users:
            external_id = user.get("slackUserId") or await self._lookup_external_id(user)
            if external_id:
                mapping[str(user["_id"])] = external_id

        missing = len(object_ids) - len(mapping)
        if missing:
            logger.debug(f"{missing} users have no channel provider identity")
        return mapping

    async def _lookup_external_id(self, user: Dict[str, Any]) -> Optional[str]:
        if not self._channel_provider or not user.get("email"):
            return None
        return await self._channel_provider.lookup_user_by_email(user["email"])
