"""
Slack Web API channel provider.

Talks to the Slack Web API with a bot token over ``httpx``. Each call uses
a short-lived ``AsyncClient``; timeouts are configured per provider and
there are no automatic retries. Callers decide whether to retry.
"""

import logging
import secrets
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

import httpx

from common.channels.base import (
    ChannelMessage,
    ChannelProvider,
    MAX_CHANNEL_NAME_LENGTH,
    normalize_channel_name,
)
from common.utils.exceptions import RemoteServiceException

logger = logging.getLogger(__name__)


class SlackChannelProvider(ChannelProvider):
    """
    Channel provider backed by Slack conversations.
    """

    DEFAULT_BASE_URL = "https://slack.com/api"
    NAME_TAKEN_ATTEMPTS = 3
    MESSAGE_EVENT_TYPE = "community_message"

    def __init__(
        self,
        bot_token: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize SlackChannelProvider.

        Args:
            bot_token: Slack bot token (xoxb-...)
            base_url: Web API base URL
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self._bot_token = bot_token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self._bot_token)

    # ─────────────────────────────────────────────────────────────
    # Channels
    # ─────────────────────────────────────────────────────────────

    async def create_channel(self, name: str, private: bool = False) -> str:
        base_name = normalize_channel_name(name)
        candidate = base_name

        for attempt in range(self.NAME_TAKEN_ATTEMPTS):
            try:
                data = await self._call(
                    "conversations.create",
                    {"name": candidate, "is_private": private},
                )
            except RemoteServiceException as e:
                if e.code == "name_taken" and attempt + 1 < self.NAME_TAKEN_ATTEMPTS:
                    logger.warning(f"Slack channel name {candidate} is taken, retrying with suffix")
                    candidate = self._suffixed(base_name)
                    continue
                raise

            channel_id = data["channel"]["id"]
            logger.info(f"Created Slack channel {candidate} ({channel_id})")
            return channel_id

        raise RemoteServiceException(
            message="Could not find a free channel name",
            code="CHANNEL_NAME_TAKEN",
        )

    async def invite_member(self, channel_id: str, external_user_id: str) -> bool:
        try:
            await self._call(
                "conversations.invite",
                {"channel": channel_id, "users": external_user_id},
            )
            return True
        except RemoteServiceException as e:
            if e.code == "already_in_channel":
                return True
            logger.warning(f"Failed to invite {external_user_id} to {channel_id}: {e.message}")
            return False

    async def remove_member(self, channel_id: str, external_user_id: str) -> bool:
        try:
            await self._call(
                "conversations.kick",
                {"channel": channel_id, "user": external_user_id},
            )
            return True
        except RemoteServiceException as e:
            if e.code == "not_in_channel":
                return True
            logger.warning(f"Failed to remove {external_user_id} from {channel_id}: {e.message}")
            return False

    async def lookup_user_by_email(self, email: str) -> Optional[str]:
        try:
            data = await self._call(
                "users.lookupByEmail",
                {"email": email},
                http_method="GET",
            )
        except RemoteServiceException as e:
            logger.info(f"No Slack user for {email}: {e.code}")
            return None

        return (data.get("user") or {}).get("id")

    # ─────────────────────────────────────────────────────────────
    # Messages
    # ─────────────────────────────────────────────────────────────

    async def post_message(
        self,
        channel_id: str,
        text: str,
        author_display: Optional[str] = None,
        blocks: Optional[List[Dict[str, Any]]] = None,
        author_id: Optional[str] = None,
    ) -> Optional[str]:
        payload: Dict[str, Any] = {"channel": channel_id, "text": text}
        if author_display:
            payload["username"] = author_display
        if blocks:
            payload["blocks"] = blocks
        if author_id:
            payload["metadata"] = {
                "event_type": self.MESSAGE_EVENT_TYPE,
                "event_payload": {"author_id": author_id},
            }

        try:
            data = await self._call("chat.postMessage", payload)
        except RemoteServiceException as e:
            logger.warning(f"Failed to post message to {channel_id}: {e.message}")
            return None

        return data.get("ts")

    async def edit_message(self, channel_id: str, message_id: str, text: str) -> bool:
        try:
            await self._call(
                "chat.update",
                {"channel": channel_id, "ts": message_id, "text": text},
            )
            return True
        except RemoteServiceException as e:
            logger.warning(f"Failed to edit message {message_id} in {channel_id}: {e.message}")
            return False

    async def delete_message(self, channel_id: str, message_id: str) -> bool:
        try:
            await self._call(
                "chat.delete",
                {"channel": channel_id, "ts": message_id},
            )
            return True
        except RemoteServiceException as e:
            logger.warning(f"Failed to delete message {message_id} in {channel_id}: {e.message}")
            return False

    async def fetch_messages(self, channel_id: str, limit: int = 50) -> List[ChannelMessage]:
        data = await self._call(
            "conversations.history",
            {"channel": channel_id, "limit": limit, "include_all_metadata": "true"},
            http_method="GET",
        )

        messages = [
            self._to_channel_message(raw)
            for raw in data.get("messages", [])[:limit]
            if raw.get("ts")
        ]
        # Slack returns newest first
        messages.sort(key=lambda m: m.timestamp)
        return messages

    async def get_message(self, channel_id: str, message_id: str) -> Optional[ChannelMessage]:
        data = await self._call(
            "conversations.history",
            {
                "channel": channel_id,
                "latest": message_id,
                "inclusive": "true",
                "limit": 1,
                "include_all_metadata": "true",
            },
            http_method="GET",
        )

        for raw in data.get("messages", []):
            if raw.get("ts") == message_id:
                return self._to_channel_message(raw)
        return None

    # ─────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────

    async def _call(
        self,
        method: str,
        payload: Dict[str, Any],
        http_method: str = "POST",
    ) -> Dict[str, Any]:
        """
        Call a Slack Web API method.

        Raises:
            RemoteServiceException: Transport failure, non-200 status or
                ``ok: false``. For API errors ``code`` carries Slack's
                error string (e.g. ``name_taken``). A body that is not a
                JSON object is ``PROVIDER_BAD_RESPONSE``.
        """
        if not self._bot_token:
            raise RemoteServiceException(
                message="Slack bot token not configured",
                code="PROVIDER_NOT_CONFIGURED",
            )

        url = f"{self._base_url}/{method}"
        headers = {"Authorization": f"Bearer {self._bot_token}"}

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                if http_method == "GET":
                    response = await client.get(url, headers=headers, params=payload)
                else:
                    response = await client.post(url, headers=headers, json=payload)
        except httpx.RequestError as e:
            logger.error(f"Slack request error on {method}: {e}")
            raise RemoteServiceException(
                message="Failed to connect to Slack",
                code="PROVIDER_UNREACHABLE",
            )

        if response.status_code != 200:
            logger.error(f"Slack API error on {method}: {response.status_code} - {response.text}")
            raise RemoteServiceException(
                message=f"Slack returned HTTP {response.status_code}",
                code="PROVIDER_HTTP_ERROR",
            )

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.error(f"Slack returned a non-JSON body on {method}: {response.text[:200]}")
            raise RemoteServiceException(
                message="Slack returned an unreadable response",
                code="PROVIDER_BAD_RESPONSE",
            )

        if not data.get("ok"):
            error = data.get("error", "unknown_error")
            logger.error(f"Slack API {method} failed: {error}")
            raise RemoteServiceException(
                message=f"Slack API error: {error}",
                code=error,
            )

        return data

    @staticmethod
    def _suffixed(base_name: str) -> str:
        suffix = secrets.token_hex(2)
        head = base_name[: MAX_CHANNEL_NAME_LENGTH - len(suffix) - 1].rstrip("-")
        return f"{head}-{suffix}"

    @staticmethod
    def _to_channel_message(raw: Dict[str, Any]) -> ChannelMessage:
        profile = raw.get("user_profile") or {}
        bot_profile = raw.get("bot_profile") or {}
        author = (
            profile.get("display_name")
            or profile.get("real_name")
            or raw.get("username")
            or bot_profile.get("name")
            or raw.get("user")
            or "Unknown"
        )
        metadata = raw.get("metadata") or {}
        author_id = None
        if metadata.get("event_type") == SlackChannelProvider.MESSAGE_EVENT_TYPE:
            author_id = (metadata.get("event_payload") or {}).get("author_id")
        return ChannelMessage(
            id=raw["ts"],
            author_display=author,
            text=raw.get("text", ""),
            timestamp=datetime.fromtimestamp(float(raw["ts"]), tz=timezone.utc),
            author_id=author_id,
        )
