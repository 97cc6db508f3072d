"""Unit tests for chat pipeline functions."""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from bson import ObjectId

from common.channels import ChannelMessage
from common.utils.exceptions import (
    ForbiddenException,
    NotFoundException,
    RemoteServiceException,
    ValidationException,
)
from community.pipelines.chat import (
    delete_chat_message,
    edit_chat_message,
    post_chat_message,
    resolve_chat_channel,
)
from community.services.pairing.pairing_service import PairingService


def posted_by(user):
    return ChannelMessage(
        id="1.0",
        author_display="Someone",
        text="original",
        timestamp=datetime(2026, 1, 5, tzinfo=timezone.utc),
        author_id=str(user["_id"]) if user else None,
    )


@pytest.fixture
def pairing_service(learner, mock_db, mock_provider, mock_identity_service):
    service = MagicMock()
    service.get_pair = AsyncMock(return_value={
        "_id": ObjectId(),
        "userA": learner["_id"],
        "userB": ObjectId(),
        "status": "confirmed",
        "channelRef": "CPAIR",
    })
    service.require_pair_access = PairingService(
        mock_db, mock_provider, mock_identity_service
    ).require_pair_access
    return service


@pytest.fixture
def group_service():
    service = MagicMock()
    service.require_group_access = AsyncMock(return_value=None)
    service.ensure_channel = AsyncMock(return_value="CGROUP")
    return service


@pytest.fixture
def session_service():
    service = MagicMock()
    service.get_session = AsyncMock(return_value={
        "_id": ObjectId(),
        "groupId": ObjectId(),
        "channelRef": "CSESSION",
    })
    service.user_can_access_session = AsyncMock(return_value=True)
    return service


@pytest.fixture
def resolve(pairing_service, group_service, session_service):
    async def _resolve(user, kind, entity_id="0" * 24):
        return await resolve_chat_channel(
            pairing_service, group_service, session_service, user, kind, entity_id
        )
    return _resolve


# ─────────────────────────────────────────────────────────────────
# resolve_chat_channel
# ─────────────────────────────────────────────────────────────────


class TestResolveChatChannel:
    @pytest.mark.asyncio
    async def test_pair_member_gets_pair_channel(self, resolve, learner):
        assert await resolve(learner, "pair") == "CPAIR"

    @pytest.mark.asyncio
    async def test_pair_outsider_is_forbidden(self, resolve, user_factory):
        with pytest.raises(ForbiddenException):
            await resolve(user_factory(email="eve@example.com"), "pair")

    @pytest.mark.asyncio
    async def test_pending_pair_has_no_chat(self, resolve, pairing_service, learner):
        pairing_service.get_pair.return_value.update(status="pending", channelRef=None)

        with pytest.raises(ValidationException) as exc:
            await resolve(learner, "pair")
        assert exc.value.code == "PAIR_NOT_CONFIRMED"

    @pytest.mark.asyncio
    async def test_group_channel_is_ensured_after_access_check(self, resolve, group_service, learner):
        assert await resolve(learner, "group", "abc") == "CGROUP"
        group_service.require_group_access.assert_awaited_once_with("abc", learner)
        group_service.ensure_channel.assert_awaited_once_with("abc")

    @pytest.mark.asyncio
    async def test_group_access_failure_skips_channel(self, resolve, group_service, learner):
        group_service.require_group_access.side_effect = ForbiddenException(code="NOT_GROUP_MEMBER")

        with pytest.raises(ForbiddenException):
            await resolve(learner, "group")
        group_service.ensure_channel.assert_not_called()

    @pytest.mark.asyncio
    async def test_session_outside_group_is_forbidden(self, resolve, session_service, learner):
        session_service.user_can_access_session.return_value = False

        with pytest.raises(ForbiddenException) as exc:
            await resolve(learner, "session")
        assert exc.value.code == "NOT_SESSION_PARTICIPANT"

    @pytest.mark.asyncio
    async def test_admin_may_open_any_session(self, resolve, session_service, admin_user):
        session_service.user_can_access_session.return_value = False
        assert await resolve(admin_user, "session") == "CSESSION"

    @pytest.mark.asyncio
    async def test_session_without_channel(self, resolve, session_service, learner):
        session_service.get_session.return_value["channelRef"] = None

        with pytest.raises(NotFoundException):
            await resolve(learner, "session")

    @pytest.mark.asyncio
    async def test_unknown_kind(self, resolve, learner):
        with pytest.raises(NotFoundException) as exc:
            await resolve(learner, "broadcast")
        assert exc.value.code == "CHAT_NOT_FOUND"


# ─────────────────────────────────────────────────────────────────
# post / edit / delete
# ─────────────────────────────────────────────────────────────────


class TestChatMessages:
    @pytest.mark.asyncio
    async def test_post_uses_display_name(self, mock_provider, learner):
        result = await post_chat_message(mock_provider, "CPAIR", learner, "  hello  ")

        assert result == {"messageId": "1700000000.000100"}
        mock_provider.post_message.assert_awaited_once_with(
            "CPAIR", "hello", author_display="Ana Berg", author_id=str(learner["_id"])
        )

    @pytest.mark.asyncio
    async def test_empty_message_is_not_posted(self, mock_provider, learner):
        with pytest.raises(ValidationException) as exc:
            await post_chat_message(mock_provider, "CPAIR", learner, "   ")

        assert exc.value.code == "EMPTY_MESSAGE"
        mock_provider.post_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_too_long_message_is_not_posted(self, mock_provider, learner):
        with pytest.raises(ValidationException) as exc:
            await post_chat_message(mock_provider, "CPAIR", learner, "x" * 11, max_length=10)

        assert exc.value.code == "MESSAGE_TOO_LONG"
        mock_provider.post_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejected_post_raises(self, mock_provider, learner):
        mock_provider.post_message.return_value = None

        with pytest.raises(RemoteServiceException) as exc:
            await post_chat_message(mock_provider, "CPAIR", learner, "hello")
        assert exc.value.code == "MESSAGE_NOT_SENT"

    @pytest.mark.asyncio
    async def test_failed_delete_raises(self, mock_provider, learner):
        mock_provider.get_message.return_value = posted_by(learner)
        mock_provider.delete_message.return_value = False

        with pytest.raises(RemoteServiceException):
            await delete_chat_message(mock_provider, "CPAIR", learner, "1.0")


class TestMessageOwnership:
    @pytest.mark.asyncio
    async def test_author_can_edit_and_delete(self, mock_provider, learner):
        mock_provider.get_message.return_value = posted_by(learner)

        edited = await edit_chat_message(mock_provider, "CPAIR", learner, "1.0", "fixed")
        deleted = await delete_chat_message(mock_provider, "CPAIR", learner, "1.0")

        assert edited == {"messageId": "1.0", "edited": True}
        assert deleted == {"messageId": "1.0", "deleted": True}
        mock_provider.get_message.assert_awaited_with("CPAIR", "1.0")

    @pytest.mark.asyncio
    async def test_partner_cannot_edit(self, mock_provider, learner, user_factory):
        mock_provider.get_message.return_value = posted_by(user_factory())

        with pytest.raises(ForbiddenException) as exc:
            await edit_chat_message(mock_provider, "CPAIR", learner, "1.0", "hijacked")

        assert exc.value.code == "NOT_MESSAGE_AUTHOR"
        mock_provider.edit_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_partner_cannot_delete(self, mock_provider, learner, user_factory):
        mock_provider.get_message.return_value = posted_by(user_factory())

        with pytest.raises(ForbiddenException):
            await delete_chat_message(mock_provider, "CPAIR", learner, "1.0")

        mock_provider.delete_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_message_without_author_is_locked(self, mock_provider, learner):
        mock_provider.get_message.return_value = posted_by(None)

        with pytest.raises(ForbiddenException):
            await delete_chat_message(mock_provider, "CPAIR", learner, "1.0")

    @pytest.mark.asyncio
    async def test_admin_can_delete_any_message(self, mock_provider, admin_user, learner):
        mock_provider.get_message.return_value = posted_by(learner)

        result = await delete_chat_message(mock_provider, "CPAIR", admin_user, "1.0")

        assert result["deleted"] is True
        mock_provider.delete_message.assert_awaited_once_with("CPAIR", "1.0")

    @pytest.mark.asyncio
    async def test_unknown_message(self, mock_provider, learner):
        with pytest.raises(NotFoundException) as exc:
            await edit_chat_message(mock_provider, "CPAIR", learner, "9.9", "fixed")

        assert exc.value.code == "MESSAGE_NOT_FOUND"
        mock_provider.edit_message.assert_not_called()
