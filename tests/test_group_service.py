"""Unit tests for GroupService (memberships + lazy group channel)."""

import asyncio
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from common.utils.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    RemoteServiceException,
    ValidationException,
)
from community.database.collections import GROUPS, GROUP_MEMBERSHIPS
from community.services.groups.group_service import GroupService


# ─────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────


@pytest.fixture
def groups(memory_collection):
    return memory_collection()


@pytest.fixture
def memberships(memory_collection):
    collection = memory_collection()
    plain_insert = collection.insert_one.side_effect

    async def insert_unique(doc):
        for existing in collection.docs.values():
            if existing["groupId"] == doc["groupId"] and existing["userId"] == doc["userId"]:
                raise DuplicateKeyError("E11000 duplicate key error index: group_user")
        return await plain_insert(doc)

    async def delete_one(query):
        result = await collection.delete_many(query)
        return MagicMock(deleted_count=min(result.deleted_count, 1))

    collection.insert_one = AsyncMock(side_effect=insert_unique)
    collection.delete_one = AsyncMock(side_effect=delete_one)
    return collection


@pytest.fixture
def group_db(groups, memberships):
    db = MagicMock()
    db.__getitem__ = MagicMock(
        side_effect=lambda name: {GROUPS: groups, GROUP_MEMBERSHIPS: memberships}[name]
    )
    return db


@pytest.fixture
def service(group_db, mock_provider, mock_identity_service):
    return GroupService(group_db, mock_provider, mock_identity_service, claim_wait_seconds=2.0)


@pytest.fixture
def cohort(groups):
    now = datetime.now(timezone.utc)
    doc = {
        "_id": ObjectId(),
        "name": "Spring 2026",
        "type": "cohort",
        "startDate": None,
        "endDate": None,
        "channelRef": None,
        "channelClaim": None,
        "archived": False,
        "createdAt": now,
        "updatedAt": now,
    }
    groups.docs[doc["_id"]] = doc
    return doc


# ─────────────────────────────────────────────────────────────────
# create / update / archive
# ─────────────────────────────────────────────────────────────────


class TestCreateGroup:
    @pytest.mark.asyncio
    async def test_creates_group_without_channel(self, service, groups, sample_user_id):
        group = await service.create_group("Mentors", "mentor", created_by=sample_user_id)

        assert group["channelRef"] is None
        assert group["archived"] is False
        assert group["_id"] in groups.docs

    @pytest.mark.asyncio
    async def test_rejects_unknown_type(self, service, groups):
        with pytest.raises(ValidationException) as exc:
            await service.create_group("Whatever", "club")

        assert exc.value.code == "INVALID_GROUP_TYPE"
        groups.insert_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejects_end_before_start(self, service, groups):
        with pytest.raises(ValidationException):
            await service.create_group(
                "Autumn",
                "cohort",
                start_date=datetime(2026, 9, 1, tzinfo=timezone.utc),
                end_date=datetime(2026, 8, 1, tzinfo=timezone.utc),
            )

        groups.insert_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_checks_merged_dates(self, service, cohort):
        await service.update_group(str(cohort["_id"]), end_date=datetime(2026, 12, 1, tzinfo=timezone.utc))

        with pytest.raises(ValidationException):
            await service.update_group(
                str(cohort["_id"]), start_date=datetime(2027, 1, 1, tzinfo=timezone.utc)
            )

    @pytest.mark.asyncio
    async def test_update_naive_date_against_stored_date(self, service, cohort, groups):
        cohort["startDate"] = datetime(2026, 1, 12, tzinfo=timezone.utc)

        updated = await service.update_group(str(cohort["_id"]), end_date=datetime(2026, 6, 30))

        assert updated["endDate"] == datetime(2026, 6, 30, tzinfo=timezone.utc)
        assert groups.docs[cohort["_id"]]["endDate"].tzinfo is not None

        with pytest.raises(ValidationException) as exc:
            await service.update_group(str(cohort["_id"]), end_date=datetime(2025, 12, 31))
        assert exc.value.code == "INVALID_DATE_RANGE"

    @pytest.mark.asyncio
    async def test_create_with_mixed_date_kinds(self, service):
        group = await service.create_group(
            "Summer",
            "cohort",
            start_date=datetime(2026, 6, 1),
            end_date=datetime(2026, 8, 31, tzinfo=timezone.utc),
        )

        assert group["startDate"] == datetime(2026, 6, 1, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_archive_keeps_channel(self, service, cohort):
        cohort["channelRef"] = "CCOHORT"

        archived = await service.archive_group(str(cohort["_id"]))

        assert archived["archived"] is True
        assert archived["channelRef"] == "CCOHORT"


# ─────────────────────────────────────────────────────────────────
# ensure_channel
# ─────────────────────────────────────────────────────────────────


class TestEnsureChannel:
    @pytest.mark.asyncio
    async def test_concurrent_calls_create_one_channel(self, service, cohort, mock_provider):
        async def slow_create(name, private=False):
            await asyncio.sleep(0.05)
            return "CGROUP"

        mock_provider.create_channel = AsyncMock(side_effect=slow_create)

        first, second = await asyncio.gather(
            service.ensure_channel(str(cohort["_id"])),
            service.ensure_channel(str(cohort["_id"])),
        )

        assert first == second == "CGROUP"
        assert mock_provider.create_channel.await_count == 1
        assert cohort["channelRef"] == "CGROUP"
        assert cohort["channelClaim"] is None

    @pytest.mark.asyncio
    async def test_channel_name_and_visibility(self, service, cohort, mock_provider):
        await service.ensure_channel(str(cohort["_id"]))
        mock_provider.create_channel.assert_awaited_once_with("cohort-Spring 2026", private=False)

    @pytest.mark.asyncio
    async def test_existing_channel_is_returned(self, service, cohort, mock_provider):
        cohort["channelRef"] = "CEXISTING"

        assert await service.ensure_channel(str(cohort["_id"])) == "CEXISTING"
        mock_provider.create_channel.assert_not_called()

    @pytest.mark.asyncio
    async def test_archived_group_cannot_gain_channel(self, service, cohort, mock_provider):
        cohort["archived"] = True

        with pytest.raises(ValidationException):
            await service.ensure_channel(str(cohort["_id"]))
        mock_provider.create_channel.assert_not_called()

    @pytest.mark.asyncio
    async def test_provider_failure_releases_claim(self, service, cohort, mock_provider):
        mock_provider.create_channel.side_effect = RemoteServiceException()

        with pytest.raises(RemoteServiceException):
            await service.ensure_channel(str(cohort["_id"]))

        assert cohort["channelRef"] is None
        assert cohort["channelClaim"] is None

    @pytest.mark.asyncio
    async def test_stuck_claim_times_out_with_conflict(self, group_db, mock_provider, mock_identity_service, cohort):
        service = GroupService(group_db, mock_provider, mock_identity_service, claim_wait_seconds=0.05)
        cohort["channelClaim"] = {"token": "other", "claimedAt": datetime.now(timezone.utc)}

        with pytest.raises(ConflictException):
            await service.ensure_channel(str(cohort["_id"]))
        mock_provider.create_channel.assert_not_called()

    @pytest.mark.asyncio
    async def test_existing_members_are_invited(self, service, cohort, memberships, mock_provider, mock_identity_service):
        user_id = ObjectId()
        await memberships.insert_one({"groupId": cohort["_id"], "userId": user_id, "role": "member"})
        mock_identity_service.get_external_ids = AsyncMock(return_value={str(user_id): "UMEMBER"})

        await service.ensure_channel(str(cohort["_id"]))

        mock_provider.invite_member.assert_awaited_once_with("C0001", "UMEMBER")


# ─────────────────────────────────────────────────────────────────
# memberships
# ─────────────────────────────────────────────────────────────────


class TestMemberships:
    @pytest.mark.asyncio
    async def test_add_members_by_email_report(self, service, cohort, memberships, mock_identity_service):
        existing = ObjectId()
        new = ObjectId()
        await memberships.insert_one({"groupId": cohort["_id"], "userId": existing, "role": "member"})
        mock_identity_service.find_by_emails = AsyncMock(return_value={
            "old@example.com": {"id": str(existing), "email": "old@example.com", "displayName": "Old"},
            "new@example.com": {"id": str(new), "email": "new@example.com", "displayName": "New"},
        })

        report = await service.add_members_by_email(
            str(cohort["_id"]),
            ["New@Example.com", "old@example.com", "ghost@example.com", ""],
        )

        assert report["added"] == 1
        assert report["skipped"] == 1
        assert report["errors"] == [
            {"row": 3, "email": "ghost@example.com", "reason": "user not found"},
            {"row": 4, "email": "", "reason": "missing email"},
        ]

    @pytest.mark.asyncio
    async def test_add_member_twice_is_not_an_error(self, service, cohort, sample_user_id):
        assert await service.add_member(str(cohort["_id"]), sample_user_id) is True
        assert await service.add_member(str(cohort["_id"]), sample_user_id) is False

    @pytest.mark.asyncio
    async def test_add_member_to_archived_group(self, service, cohort, sample_user_id):
        cohort["archived"] = True

        with pytest.raises(ValidationException):
            await service.add_member(str(cohort["_id"]), sample_user_id)

    @pytest.mark.asyncio
    async def test_remove_member_kicks_from_channel(self, service, cohort, memberships, mock_provider, mock_identity_service, sample_user_id):
        cohort["channelRef"] = "CGROUP"
        await memberships.insert_one({"groupId": cohort["_id"], "userId": ObjectId(sample_user_id), "role": "member"})
        mock_identity_service.get_external_id = AsyncMock(return_value="UGONE")

        await service.remove_member(str(cohort["_id"]), sample_user_id)

        assert memberships.docs == {}
        mock_provider.remove_member.assert_awaited_once_with("CGROUP", "UGONE")

    @pytest.mark.asyncio
    async def test_remove_unknown_member(self, service, cohort, sample_user_id):
        with pytest.raises(NotFoundException):
            await service.remove_member(str(cohort["_id"]), sample_user_id)


# ─────────────────────────────────────────────────────────────────
# access
# ─────────────────────────────────────────────────────────────────


class TestGroupAccess:
    @pytest.mark.asyncio
    async def test_member_has_access(self, service, cohort, memberships, learner):
        await memberships.insert_one({"groupId": cohort["_id"], "userId": learner["_id"], "role": "member"})
        assert await service.user_has_group_access(str(cohort["_id"]), learner) is True

    @pytest.mark.asyncio
    async def test_admin_has_access(self, service, cohort, admin_user):
        assert await service.user_has_group_access(str(cohort["_id"]), admin_user) is True

    @pytest.mark.asyncio
    async def test_outsider_is_forbidden(self, service, cohort, learner):
        with pytest.raises(ForbiddenException):
            await service.require_group_access(str(cohort["_id"]), learner)
