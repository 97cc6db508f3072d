"""Unit tests for SessionService and session status derivation."""

import pytest
from datetime import datetime, timezone, timedelta
from unittest.mock import AsyncMock, MagicMock
from bson import ObjectId

from common.utils.exceptions import NotFoundException, ValidationException
from community.database.collections import GROUPS, TRAINING_SESSIONS, GROUP_MEMBERSHIPS
from community.services.sessions.session_service import SessionService, compute_session_status


NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def service(mock_db, mock_provider):
    return SessionService(mock_db, mock_provider)


@pytest.fixture
def sessions(service, collections):
    return collections[TRAINING_SESSIONS]


def make_session(**fields):
    session = {
        "_id": ObjectId(),
        "title": "Feedback that lands",
        "startTime": NOW + timedelta(minutes=30),
        "endTime": NOW + timedelta(minutes=90),
        "channelRef": "CSESSION",
        "groupId": None,
        "reminderSentFor": None,
    }
    session.update(fields)
    return session


# ─────────────────────────────────────────────────────────────────
# compute_session_status
# ─────────────────────────────────────────────────────────────────


class TestComputeSessionStatus:
    def test_boundaries(self):
        session = {"startTime": NOW, "endTime": NOW + timedelta(hours=1)}

        assert compute_session_status(session, NOW - timedelta(seconds=1)) == "upcoming"
        assert compute_session_status(session, NOW) == "live"
        assert compute_session_status(session, NOW + timedelta(hours=1)) == "live"
        assert compute_session_status(session, NOW + timedelta(hours=1, seconds=1)) == "completed"

    def test_naive_datetimes_are_utc(self):
        session = {"startTime": datetime(2026, 3, 2, 9, 0), "endTime": datetime(2026, 3, 2, 10, 0)}
        assert compute_session_status(session, NOW + timedelta(minutes=5)) == "live"


# ─────────────────────────────────────────────────────────────────
# create / update / delete
# ─────────────────────────────────────────────────────────────────


class TestCreateSession:
    @pytest.mark.asyncio
    async def test_end_before_start_is_rejected_before_insert(self, service, sessions, sample_user_id):
        with pytest.raises(ValidationException) as exc:
            await service.create_session("Kickoff", NOW, NOW - timedelta(minutes=1), sample_user_id)

        assert exc.value.code == "INVALID_TIME_RANGE"
        sessions.insert_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_equal_start_and_end_is_rejected(self, service, sessions, sample_user_id):
        with pytest.raises(ValidationException):
            await service.create_session("Kickoff", NOW, NOW, sample_user_id)
        sessions.insert_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_group_session_inherits_group_channel(self, service, sessions, collections, sample_user_id):
        group_id = ObjectId()
        collections[GROUPS].find_one.return_value = {
            "_id": group_id, "name": "Spring", "channelRef": "CCOHORT"
        }
        sessions.insert_one.return_value = MagicMock(inserted_id=ObjectId())

        session = await service.create_session(
            "Kickoff", NOW, NOW + timedelta(hours=1), sample_user_id, group_id=str(group_id)
        )

        assert session["groupId"] == group_id
        assert session["channelRef"] == "CCOHORT"
        assert session["reminderSentFor"] is None

    @pytest.mark.asyncio
    async def test_unknown_group_is_not_found(self, service, collections, sample_user_id):
        collections[GROUPS].find_one.return_value = None

        with pytest.raises(NotFoundException):
            await service.create_session(
                "Kickoff", NOW, NOW + timedelta(hours=1), sample_user_id, group_id=str(ObjectId())
            )


class TestUpdateSession:
    @pytest.mark.asyncio
    async def test_reschedule_clears_reminder_watermark(self, service, sessions):
        session = make_session(reminderSentFor=NOW + timedelta(minutes=30))
        sessions.find_one.return_value = session

        await service.update_session(str(session["_id"]), {"startTime": NOW + timedelta(minutes=45)})

        changes = sessions.update_one.call_args[0][1]["$set"]
        assert changes["startTime"] == NOW + timedelta(minutes=45)
        assert changes["reminderSentFor"] is None

    @pytest.mark.asyncio
    async def test_title_change_keeps_watermark(self, service, sessions):
        session = make_session(reminderSentFor=NOW + timedelta(minutes=30))
        sessions.find_one.return_value = session

        await service.update_session(str(session["_id"]), {"title": "Renamed"})

        changes = sessions.update_one.call_args[0][1]["$set"]
        assert changes["title"] == "Renamed"
        assert "reminderSentFor" not in changes

    @pytest.mark.asyncio
    async def test_invalid_range_is_rejected(self, service, sessions):
        session = make_session()
        sessions.find_one.return_value = session

        with pytest.raises(ValidationException):
            await service.update_session(str(session["_id"]), {"endTime": NOW})
        sessions.update_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_unknown_session(self, service, sessions):
        sessions.delete_one.return_value = MagicMock(deleted_count=0)

        with pytest.raises(NotFoundException):
            await service.delete_session(str(ObjectId()))


# ─────────────────────────────────────────────────────────────────
# dispatch_reminders
# ─────────────────────────────────────────────────────────────────


class TestDispatchReminders:
    @pytest.mark.asyncio
    async def test_posts_reminder_and_sets_watermark(self, service, sessions, mock_provider, make_cursor):
        session = make_session()
        sessions.find.return_value = make_cursor([session])
        sessions.update_one.return_value = MagicMock(modified_count=1)

        stats = await service.dispatch_reminders(now=NOW, window_minutes=60)

        assert stats == {"considered": 1, "sent": 1, "failed": 0, "skipped": 0}
        mock_provider.post_session_reminder.assert_awaited_once_with(
            "CSESSION", "Feedback that lands", session["startTime"]
        )
        claim_filter, claim_update = sessions.update_one.call_args[0]
        assert claim_filter["reminderSentFor"] == {"$ne": session["startTime"]}
        assert claim_update["$set"]["reminderSentFor"] == session["startTime"]

    @pytest.mark.asyncio
    async def test_window_query(self, service, sessions, make_cursor):
        sessions.find.return_value = make_cursor([])

        await service.dispatch_reminders(now=NOW, window_minutes=60)

        query = sessions.find.call_args[0][0]
        assert query["startTime"] == {"$gt": NOW, "$lte": NOW + timedelta(minutes=60)}
        assert query["channelRef"] == {"$ne": None}

    @pytest.mark.asyncio
    async def test_already_reminded_session_is_skipped(self, service, sessions, mock_provider, make_cursor):
        session = make_session()
        session["reminderSentFor"] = session["startTime"]
        sessions.find.return_value = make_cursor([session])

        stats = await service.dispatch_reminders(now=NOW)

        assert stats["skipped"] == 1
        sessions.update_one.assert_not_called()
        mock_provider.post_session_reminder.assert_not_called()

    @pytest.mark.asyncio
    async def test_lost_claim_is_skipped(self, service, sessions, mock_provider, make_cursor):
        sessions.find.return_value = make_cursor([make_session()])
        sessions.update_one.return_value = MagicMock(modified_count=0)

        stats = await service.dispatch_reminders(now=NOW)

        assert stats["skipped"] == 1
        mock_provider.post_session_reminder.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_post_is_counted_not_retried(self, service, sessions, mock_provider, make_cursor):
        sessions.find.return_value = make_cursor([make_session(), make_session(channelRef="COTHER")])
        sessions.update_one.return_value = MagicMock(modified_count=1)
        mock_provider.post_session_reminder = AsyncMock(side_effect=[False, True])

        stats = await service.dispatch_reminders(now=NOW)

        assert stats == {"considered": 2, "sent": 1, "failed": 1, "skipped": 0}
        assert mock_provider.post_session_reminder.await_count == 2


# ─────────────────────────────────────────────────────────────────
# access
# ─────────────────────────────────────────────────────────────────


class TestSessionAccess:
    @pytest.mark.asyncio
    async def test_open_session_is_visible_to_everyone(self, service, sample_user_id):
        assert await service.user_can_access_session(make_session(), sample_user_id) is True

    @pytest.mark.asyncio
    async def test_group_session_requires_membership(self, service, collections, sample_user_id):
        session = make_session(groupId=ObjectId())
        collections[GROUP_MEMBERSHIPS].find_one.return_value = None

        assert await service.user_can_access_session(session, sample_user_id) is False

        collections[GROUP_MEMBERSHIPS].find_one.return_value = {"groupId": session["groupId"]}
        assert await service.user_can_access_session(session, sample_user_id) is True
