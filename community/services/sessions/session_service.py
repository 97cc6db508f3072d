"""
Live training session service.

Handles session scheduling, status derivation and channel reminders.
"""

import logging
from datetime import datetime, timezone, timedelta
from typing import Optional, List, Dict, Any

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from common.channels import ChannelProvider
from common.database.object_ids import to_object_id
from common.utils.dates import as_utc
from common.utils.exceptions import NotFoundException, ValidationException
from community.database.collections import GROUPS, GROUP_MEMBERSHIPS, TRAINING_SESSIONS

logger = logging.getLogger(__name__)

SESSION_STATUSES = ["upcoming", "live", "completed"]


def compute_session_status(session: Dict[str, Any], now: Optional[datetime] = None) -> str:
    """
    Derive a session's status from the clock.

    upcoming before the start, live from start to end inclusive,
    completed after the end.
    """
    now = as_utc(now or datetime.now(timezone.utc))
    start = as_utc(session["startTime"])
    end = as_utc(session["endTime"])

    if now < start:
        return "upcoming"
    if now <= end:
        return "live"
    return "completed"


class SessionService:
    """
    Manages live training sessions.
    """

    MAX_SESSIONS = 500
    EDITABLE_FIELDS = ["title", "description", "meetingLink", "channelRef"]

    def __init__(self, db: AsyncIOMotorDatabase, channel_provider: ChannelProvider):
        """
        Initialize SessionService.

        Args:
            db: MongoDB database connection
            channel_provider: External chat channel provider (reminders)
        """
        self._db = db
        self._sessions_collection = db[TRAINING_SESSIONS]
        self._groups_collection = db[GROUPS]
        self._memberships_collection = db[GROUP_MEMBERSHIPS]
        self._channel_provider = channel_provider

    async def create_session(
        self,
        title: str,
        start_time: datetime,
        end_time: datetime,
        created_by: str,
        description: Optional[str] = None,
        channel_ref: Optional[str] = None,
        group_id: Optional[str] = None,
        meeting_link: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Schedule a session.

        Args:
            title: Session title
            start_time: Start (UTC if naive)
            end_time: End, must be after start
            created_by: Admin creating the session
            description: Optional description
            channel_ref: Channel receiving reminders
            group_id: Restrict the session to a group's members; the group's
                channel is used for reminders when channel_ref is omitted
            meeting_link: Optional video link

        Returns:
            The created session document
        """
        title = (title or "").strip()
        if not title:
            raise ValidationException(message="Title is required", code="TITLE_REQUIRED")

        start_time, end_time = self._validate_times(start_time, end_time)

        group_oid = None
        if group_id:
            group = await self._get_group(group_id)
            group_oid = group["_id"]
            channel_ref = channel_ref or group.get("channelRef")

        now = datetime.now(timezone.utc)
        session_doc = {
            "title": title,
            "description": description,
            "startTime": start_time,
            "endTime": end_time,
            "channelRef": channel_ref or None,
            "groupId": group_oid,
            "meetingLink": meeting_link,
            "createdBy": ObjectId(str(created_by)),
            "reminderSentFor": None,
            "reminderSentAt": None,
            "createdAt": now,
            "updatedAt": now,
        }

        result = await self._sessions_collection.insert_one(session_doc)
        session_doc["_id"] = result.inserted_id

        logger.info(f"Session {result.inserted_id} scheduled for {start_time.isoformat()}")

        return session_doc

    async def update_session(self, session_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update a session.

        Args:
            session_id: Session to update
            updates: Fields to change (title, description, meetingLink,
                channelRef, startTime, endTime, groupId)

        Returns:
            The updated session document
        """
        session = await self.get_session(session_id)

        changes = {k: v for k, v in updates.items() if k in self.EDITABLE_FIELDS}
        if "title" in changes:
            changes["title"] = (changes["title"] or "").strip()
            if not changes["title"]:
                raise ValidationException(message="Title is required", code="TITLE_REQUIRED")

        if "startTime" in updates or "endTime" in updates:
            start_time, end_time = self._validate_times(
                updates.get("startTime") or session["startTime"],
                updates.get("endTime") or session["endTime"],
            )
            changes["startTime"] = start_time
            changes["endTime"] = end_time
            if start_time != as_utc(session["startTime"]):
                changes["reminderSentFor"] = None
                changes["reminderSentAt"] = None

        if "groupId" in updates:
            if updates["groupId"]:
                group = await self._get_group(updates["groupId"])
                changes["groupId"] = group["_id"]
            else:
                changes["groupId"] = None

        if not changes:
            return session

        changes["updatedAt"] = datetime.now(timezone.utc)
        await self._sessions_collection.update_one({"_id": session["_id"]}, {"$set": changes})

        logger.info(f"Session {session_id} updated: {sorted(k for k in changes if k != 'updatedAt')}")

        return await self.get_session(session_id)

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session."""
        oid = to_object_id(session_id, "Session not found", "SESSION_NOT_FOUND")
        result = await self._sessions_collection.delete_one({"_id": oid})
        if result.deleted_count == 0:
            raise NotFoundException(message="Session not found", code="SESSION_NOT_FOUND")

        logger.info(f"Session {session_id} deleted")
        return True

    async def dispatch_reminders(
        self,
        now: Optional[datetime] = None,
        window_minutes: int = 60,
    ) -> Dict[str, int]:
        """
        Post reminders for sessions starting within the window (called by cron).

        A session is reminded once per start time: the ``reminderSentFor``
        watermark is set before posting, so overlapping sweeps post nothing
        twice. Failed posts are logged and not retried.

        Returns:
            dict with considered, sent, failed and skipped counts
        """
        now = as_utc(now or datetime.now(timezone.utc))
        window_end = now + timedelta(minutes=window_minutes)

        sessions = await self._sessions_collection.find({
            "startTime": {"$gt": now, "$lte": window_end},
            "channelRef": {"$ne": None},
        }).to_list(length=self.MAX_SESSIONS)

        stats = {"considered": len(sessions), "sent": 0, "failed": 0, "skipped": 0}

        for session in sessions:
            start_time = session["startTime"]
            if session.get("reminderSentFor") == start_time:
                stats["skipped"] += 1
                continue

            claimed = await self._sessions_collection.update_one(
                {
                    "_id": session["_id"],
                    "startTime": start_time,
                    "reminderSentFor": {"$ne": start_time},
                },
                {"$set": {"reminderSentFor": start_time, "reminderSentAt": now}},
            )
            if claimed.modified_count == 0:
                stats["skipped"] += 1
                continue

            posted = await self._channel_provider.post_session_reminder(
                session["channelRef"], session["title"], start_time
            )
            if posted:
                stats["sent"] += 1
            else:
                stats["failed"] += 1
                logger.warning(f"Reminder for session {session['_id']} could not be posted")

        logger.info(
            f"Reminder sweep: {stats['considered']} considered, {stats['sent']} sent, "
            f"{stats['failed']} failed, {stats['skipped']} skipped"
        )

        return stats

    # ─────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────

    async def get_session(self, session_id: str) -> Dict[str, Any]:
        """Get session by ID."""
        oid = to_object_id(session_id, "Session not found", "SESSION_NOT_FOUND")
        session = await self._sessions_collection.find_one({"_id": oid})
        if not session:
            raise NotFoundException(message="Session not found", code="SESSION_NOT_FOUND")
        return session

    async def list_all(self) -> List[Dict[str, Any]]:
        cursor = self._sessions_collection.find({}).sort("startTime", -1)
        return await cursor.to_list(length=self.MAX_SESSIONS)

    async def list_upcoming(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Sessions that have not ended yet, soonest first."""
        now = as_utc(now or datetime.now(timezone.utc))
        cursor = self._sessions_collection.find({"endTime": {"$gte": now}}).sort("startTime", 1)
        return await cursor.to_list(length=self.MAX_SESSIONS)

    async def list_in_range(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Sessions starting within [start, end]."""
        cursor = self._sessions_collection.find({
            "startTime": {"$gte": as_utc(start), "$lte": as_utc(end)},
        }).sort("startTime", 1)
        return await cursor.to_list(length=self.MAX_SESSIONS)

    async def list_for_user(self, user_id: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Sessions open to everyone plus those of the user's groups that have not ended."""
        now = as_utc(now or datetime.now(timezone.utc))

        memberships = await self._memberships_collection.find(
            {"userId": ObjectId(str(user_id))},
            {"groupId": 1},
        ).to_list(length=self.MAX_SESSIONS)
        group_ids = [m["groupId"] for m in memberships]

        cursor = self._sessions_collection.find({
            "endTime": {"$gte": now},
            "$or": [{"groupId": None}, {"groupId": {"$in": group_ids}}],
        }).sort("startTime", 1)
        return await cursor.to_list(length=self.MAX_SESSIONS)

    async def user_can_access_session(self, session: Dict[str, Any], user_id: str) -> bool:
        """Open sessions are visible to everyone; group sessions to group members."""
        if not session.get("groupId"):
            return True
        membership = await self._memberships_collection.find_one({
            "groupId": session["groupId"],
            "userId": ObjectId(str(user_id)),
        })
        return membership is not None

    # ─────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────

    async def _get_group(self, group_id: str) -> Dict[str, Any]:
        oid = to_object_id(group_id, "Group not found", "GROUP_NOT_FOUND")
        group = await self._groups_collection.find_one({"_id": oid})
        if not group:
            raise NotFoundException(message="Group not found", code="GROUP_NOT_FOUND")
        return group

    @staticmethod
    def _validate_times(start_time: datetime, end_time: datetime):
        if start_time is None or end_time is None:
            raise ValidationException(
                message="Start and end time are required",
                code="TIME_REQUIRED",
            )

        start_time = as_utc(start_time)
        end_time = as_utc(end_time)
        if start_time >= end_time:
            raise ValidationException(
                message="End time must be after start time",
                code="INVALID_TIME_RANGE",
            )
        return start_time, end_time
