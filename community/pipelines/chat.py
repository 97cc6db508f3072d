"""
Chat pipeline functions.

Resolves a pair, group or session to its provider channel after checking
the requester may take part, then reads from or writes to that channel.
"""

import logging
from typing import List, Dict, Any

from common.channels import ChannelProvider
from common.utils.exceptions import (
    ForbiddenException,
    NotFoundException,
    RemoteServiceException,
    ValidationException,
)
from community.services.groups.group_service import GroupService
from community.services.identity.identity_service import display_name_for, is_platform_admin
from community.services.pairing.pairing_service import PairingService
from community.services.sessions.session_service import SessionService

logger = logging.getLogger(__name__)

CHAT_KINDS = ["pair", "group", "session"]


async def resolve_chat_channel(
    pairing_service: PairingService,
    group_service: GroupService,
    session_service: SessionService,
    user: Dict[str, Any],
    kind: str,
    entity_id: str,
) -> str:
    """
    Get the channel behind a chat.

    1. Validate the chat kind
    2. Load the entity and check the requester's access
    3. Return its channel (group channels are created on first use)
    """
    if kind not in CHAT_KINDS:
        raise NotFoundException(message=f"Unknown chat type: {kind}", code="CHAT_NOT_FOUND")

    if kind == "pair":
        pair = await pairing_service.get_pair(entity_id)
        pairing_service.require_pair_access(pair, user)
        if pair["status"] != "confirmed" or not pair.get("channelRef"):
            raise ValidationException(
                message="Chat opens once the buddy pair is confirmed",
                code="PAIR_NOT_CONFIRMED",
            )
        return pair["channelRef"]

    if kind == "group":
        await group_service.require_group_access(entity_id, user)
        return await group_service.ensure_channel(entity_id)

    session = await session_service.get_session(entity_id)
    if not is_platform_admin(user) and not await session_service.user_can_access_session(
        session, str(user["_id"])
    ):
        raise ForbiddenException(
            message="You are not invited to this session",
            code="NOT_SESSION_PARTICIPANT",
        )
    if not session.get("channelRef"):
        raise NotFoundException(
            message="This session has no chat channel",
            code="CHANNEL_NOT_FOUND",
        )
    return session["channelRef"]


async def list_chat_messages(
    provider: ChannelProvider,
    channel_id: str,
    limit: int = 50,
) -> List[Dict[str, Any]]:
    """Fetch the most recent messages, oldest first."""
    messages = await provider.fetch_messages(channel_id, limit)
    return [m.to_dict() for m in messages]


def clean_message_text(text: str, max_length: int) -> str:
    text = (text or "").strip()
    if not text:
        raise ValidationException(message="Message cannot be empty", code="EMPTY_MESSAGE")
    if len(text) > max_length:
        raise ValidationException(
            message=f"Message cannot exceed {max_length} characters",
            code="MESSAGE_TOO_LONG",
        )
    return text


async def post_chat_message(
    provider: ChannelProvider,
    channel_id: str,
    user: Dict[str, Any],
    text: str,
    max_length: int = 2000,
) -> Dict[str, Any]:
    """
    Post a message on behalf of a user.

    Returns:
        dict with messageId

    Raises:
        ValidationException: Empty or too long message
        RemoteServiceException: Provider rejected the message
    """
    text = clean_message_text(text, max_length)

    message_id = await provider.post_message(
        channel_id, text, author_display=display_name_for(user), author_id=str(user["_id"])
    )
    if not message_id:
        logger.warning(f"Message from {user['_id']} to {channel_id} was not delivered")
        raise RemoteServiceException(
            message="Message could not be sent, please retry",
            code="MESSAGE_NOT_SENT",
        )

    return {"messageId": message_id}


async def require_message_author(
    provider: ChannelProvider,
    channel_id: str,
    message_id: str,
    user: Dict[str, Any],
) -> None:
    """
    Check that a user may change a message.

    Authors may change their own messages; platform admins may change any.

    Raises:
        NotFoundException: The channel holds no such message
        ForbiddenException: The user did not post the message
    """
    message = await provider.get_message(channel_id, message_id)
    if message is None:
        raise NotFoundException(message="Message not found", code="MESSAGE_NOT_FOUND")

    if is_platform_admin(user):
        return
    if message.author_id is None or message.author_id != str(user["_id"]):
        raise ForbiddenException(
            message="You can only change your own messages",
            code="NOT_MESSAGE_AUTHOR",
        )


async def edit_chat_message(
    provider: ChannelProvider,
    channel_id: str,
    user: Dict[str, Any],
    message_id: str,
    text: str,
    max_length: int = 2000,
) -> Dict[str, Any]:
    text = clean_message_text(text, max_length)
    await require_message_author(provider, channel_id, message_id, user)

    if not await provider.edit_message(channel_id, message_id, text):
        raise RemoteServiceException(
            message="Message could not be edited",
            code="MESSAGE_NOT_EDITED",
        )

    return {"messageId": message_id, "edited": True}


async def delete_chat_message(
    provider: ChannelProvider,
    channel_id: str,
    user: Dict[str, Any],
    message_id: str,
) -> Dict[str, Any]:
    await require_message_author(provider, channel_id, message_id, user)

    if not await provider.delete_message(channel_id, message_id):
        raise RemoteServiceException(
            message="Message could not be deleted",
            code="MESSAGE_NOT_DELETED",
        )

    return {"messageId": message_id, "deleted": True}
