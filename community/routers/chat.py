"""
FastAPI router for chat endpoints.

HTTP endpoints read and write a pair, group or session channel once.
The websocket endpoint opens a polled conversation and pushes a snapshot
after every refresh.
"""

import logging
import uuid
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from common.utils import success_response, list_response
from common.utils.exceptions import APIException
from community.config import settings
from community.dependencies import (
    require_auth,
    get_auth_middleware,
    get_channel_provider,
    get_group_service,
    get_pairing_service,
    get_session_service,
)
from community.pipelines.chat import (
    resolve_chat_channel,
    list_chat_messages,
    post_chat_message,
    edit_chat_message,
    delete_chat_message,
    clean_message_text,
)
from community.schemas.chat import SendMessageRequest, ChatClientEvent
from community.services.chat.relay import ChatConversation
from community.services.identity.identity_service import display_name_for

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


async def _resolve(user: dict, kind: str, entity_id: str) -> str:
    return await resolve_chat_channel(
        get_pairing_service(),
        get_group_service(),
        get_session_service(),
        user,
        kind,
        entity_id,
    )


@router.get("/{kind}/{entity_id}/messages")
async def get_messages(
    kind: str,
    entity_id: str,
    user: Annotated[dict, Depends(require_auth)],
    limit: int = Query(default=settings.CHAT_FETCH_LIMIT, ge=1, le=200),
):
    """Fetch the most recent messages of a chat."""
    channel_id = await _resolve(user, kind, entity_id)
    messages = await list_chat_messages(get_channel_provider(), channel_id, limit)
    return list_response(messages)


@router.post("/{kind}/{entity_id}/messages")
async def send_message(
    kind: str,
    entity_id: str,
    body: SendMessageRequest,
    user: Annotated[dict, Depends(require_auth)],
):
    channel_id = await _resolve(user, kind, entity_id)
    result = await post_chat_message(
        get_channel_provider(), channel_id, user, body.text, settings.MAX_MESSAGE_LENGTH
    )
    return success_response(result)


@router.patch("/{kind}/{entity_id}/messages/{message_id}")
async def edit_message(
    kind: str,
    entity_id: str,
    message_id: str,
    body: SendMessageRequest,
    user: Annotated[dict, Depends(require_auth)],
):
    channel_id = await _resolve(user, kind, entity_id)
    result = await edit_chat_message(
        get_channel_provider(),
        channel_id,
        user,
        message_id,
        body.text,
        settings.MAX_MESSAGE_LENGTH,
    )
    return success_response(result)


@router.delete("/{kind}/{entity_id}/messages/{message_id}")
async def delete_message(
    kind: str,
    entity_id: str,
    message_id: str,
    user: Annotated[dict, Depends(require_auth)],
):
    channel_id = await _resolve(user, kind, entity_id)
    result = await delete_chat_message(get_channel_provider(), channel_id, user, message_id)
    return success_response(result)


# ─────────────────────────────────────────────────────────────────
# WebSocket
# ─────────────────────────────────────────────────────────────────

@router.websocket("/{kind}/{entity_id}/ws")
async def chat_socket(
    websocket: WebSocket,
    kind: str,
    entity_id: str,
    token: Optional[str] = Query(default=None),
):
    """
    Live chat over a polled conversation.

    Client events: {"type": "send", "text": "..."} and {"type": "retry"}.
    Server events: {"type": "snapshot", ...} after every refresh and
    {"type": "error", "message": ...} for rejected events.
    """
    try:
        user = await get_auth_middleware().authenticate_token(token)
        channel_id = await _resolve(user, kind, entity_id)
    except APIException as e:
        await websocket.accept()
        await websocket.close(code=4000 + e.status_code, reason=e.message)
        return

    await websocket.accept()

    relay = websocket.app.state.chat_relay
    key = f"{user['_id']}:{uuid.uuid4().hex}"

    async def push_snapshot(conversation: ChatConversation) -> None:
        await websocket.send_json({"type": "snapshot", **conversation.snapshot()})

    conversation = await relay.open(key, channel_id, on_update=push_snapshot)
    logger.info(f"Chat socket {key} opened on {kind} {entity_id}")

    try:
        while True:
            data = await websocket.receive_text()

            try:
                event = ChatClientEvent.model_validate_json(data)
            except ValidationError as e:
                await websocket.send_json({"type": "error", "message": f"Invalid event: {e}"})
                continue

            if event.type == "retry":
                await conversation.retry()
                continue

            try:
                text = clean_message_text(event.text, settings.MAX_MESSAGE_LENGTH)
            except APIException as e:
                await websocket.send_json({"type": "error", "message": e.message})
                continue

            sent = await conversation.send(
                text, author_display=display_name_for(user), author_id=str(user["_id"])
            )
            if not sent:
                await websocket.send_json({"type": "error", "message": conversation.error})

    except WebSocketDisconnect:
        logger.info(f"Chat socket {key} disconnected")
    finally:
        await relay.close(key)
