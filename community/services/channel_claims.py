"""
Channel creation claims.

Pairs and groups get their provider channel through a claim on the
entity document: only the caller that atomically sets ``channelClaim``
while ``channelRef`` is still empty may call the provider. Everyone else
waits for the holder's result. Claims expire so a crashed holder does
not block the entity forever.
"""

import asyncio
import logging
import secrets
from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any

from bson import ObjectId
from pymongo import ReturnDocument

logger = logging.getLogger(__name__)


class ChannelClaimGuard:
    """
    Compare-and-set guard around ``channelRef`` of one collection.
    """

    def __init__(
        self,
        collection,
        ttl_seconds: int = 60,
        wait_seconds: float = 5.0,
        poll_seconds: float = 0.25,
    ):
        """
        Initialize ChannelClaimGuard.

        Args:
            collection: Motor collection holding the entities
            ttl_seconds: Age after which a claim may be taken over
            wait_seconds: How long ``wait_for_channel`` waits
            poll_seconds: Re-read interval while waiting
        """
        self._collection = collection
        self._ttl = timedelta(seconds=ttl_seconds)
        self._wait_seconds = wait_seconds
        self._poll_seconds = poll_seconds

    async def claim(
        self,
        entity_id: ObjectId,
        precondition: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """
        Try to claim channel creation for an entity.

        Args:
            entity_id: Entity to claim
            precondition: Extra filter the entity must match (e.g. status)

        Returns:
            Claim token if this caller won, None otherwise
        """
        now = datetime.now(timezone.utc)
        token = secrets.token_hex(8)

        query: Dict[str, Any] = {
            "_id": entity_id,
            "channelRef": None,
            "$or": [
                {"channelClaim": None},
                {"channelClaim.claimedAt": {"$lt": now - self._ttl}},
            ],
        }
        if precondition:
            query.update(precondition)

        claimed = await self._collection.find_one_and_update(
            query,
            {"$set": {"channelClaim": {"token": token, "claimedAt": now}}},
            return_document=ReturnDocument.AFTER,
        )

        if not claimed:
            return None

        logger.debug(f"Channel claim {token} taken for {entity_id}")
        return token

    async def release(self, entity_id: ObjectId, token: str) -> None:
        """Drop a claim after the provider call failed."""
        await self._collection.update_one(
            {"_id": entity_id, "channelClaim.token": token},
            {"$set": {"channelClaim": None}},
        )

    async def wait_for_channel(self, entity_id: ObjectId) -> Optional[Dict[str, Any]]:
        """
        Wait for another caller's claim to resolve.

        Returns:
            The entity once it has a ``channelRef`` or its claim was
            released, None if the holder is still working after the wait
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._wait_seconds

        while True:
            entity = await self._collection.find_one({"_id": entity_id})
            if entity is None:
                return None
            if entity.get("channelRef") or not entity.get("channelClaim"):
                return entity
            if loop.time() >= deadline:
                return None
            await asyncio.sleep(self._poll_seconds)
