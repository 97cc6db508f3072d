"""
Index definitions for community collections.

The unique membership index is what makes re-adding a member a no-op
under concurrency; pair and session indexes serve the listing queries.
"""

import logging

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from community.database.collections import (
    BUDDY_PAIRS,
    GROUPS,
    GROUP_MEMBERSHIPS,
    TRAINING_SESSIONS,
    USERS,
)

logger = logging.getLogger(__name__)


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """Create the indexes the community services rely on."""
    await db[GROUP_MEMBERSHIPS].create_index(
        [("groupId", ASCENDING), ("userId", ASCENDING)],
        unique=True,
        name="group_user_unique",
    )
    await db[GROUP_MEMBERSHIPS].create_index([("userId", ASCENDING)])

    await db[BUDDY_PAIRS].create_index([("userA", ASCENDING), ("status", ASCENDING)])
    await db[BUDDY_PAIRS].create_index([("userB", ASCENDING), ("status", ASCENDING)])

    await db[GROUPS].create_index([("name", ASCENDING), ("archived", ASCENDING)])

    await db[TRAINING_SESSIONS].create_index([("startTime", ASCENDING)])

    await db[USERS].create_index([("email", ASCENDING)])

    logger.info("Community indexes ensured")
