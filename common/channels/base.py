"""
Abstract channel provider interface.

Defines the contract that every external chat-channel service must
implement. Pair and group conversations are hosted by the provider; this
service only creates channels, manages membership and relays plain text.

Example:
    from common.channels import ChannelProvider, SlackChannelProvider

    def get_channel_provider(settings) -> ChannelProvider:
        return SlackChannelProvider(bot_token=settings.SLACK_BOT_TOKEN)
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List, Dict, Any

MAX_CHANNEL_NAME_LENGTH = 80

_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9_-]")
_REPEATED_DASHES = re.compile(r"-{2,}")


def normalize_channel_name(name: str) -> str:
    """
    Normalize a channel name into the provider's allowed alphabet.

    Lowercases, replaces anything outside ``[a-z0-9_-]`` with ``-``,
    collapses dash runs and trims the result to the provider's limit.
    """
    normalized = _INVALID_NAME_CHARS.sub("-", (name or "").lower())
    normalized = _REPEATED_DASHES.sub("-", normalized).strip("-")
    normalized = normalized[:MAX_CHANNEL_NAME_LENGTH].rstrip("-")
    return normalized or "channel"


@dataclass
class ChannelMessage:
    """A message as returned by the provider. Never persisted locally."""

    id: str
    author_display: str
    text: str
    timestamp: datetime
    # community user id of the poster; None for messages posted elsewhere
    author_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "authorDisplay": self.author_display,
            "authorId": self.author_id,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }


class ChannelProvider(ABC):
    """
    Abstract channel provider.

    Channel creation and history fetches raise
    ``RemoteServiceException`` on failure. Message and membership
    mutations are best-effort and report success as a boolean.
    """

    @abstractmethod
    async def create_channel(self, name: str, private: bool = False) -> str:
        """
        Create a channel.

        Args:
            name: Desired channel name (normalized before creation)
            private: Whether the channel is invite-only

        Returns:
            The provider's channel id
        """
        pass

    @abstractmethod
    async def invite_member(self, channel_id: str, external_user_id: str) -> bool:
        """Invite a provider user into a channel."""
        pass

    @abstractmethod
    async def remove_member(self, channel_id: str, external_user_id: str) -> bool:
        """Remove a provider user from a channel."""
        pass

    @abstractmethod
    async def post_message(
        self,
        channel_id: str,
        text: str,
        author_display: Optional[str] = None,
        blocks: Optional[List[Dict[str, Any]]] = None,
        author_id: Optional[str] = None,
    ) -> Optional[str]:
        """
        Post a plain text message.

        ``author_id`` is stored with the message so later edits and
        deletes can be checked against the poster.

        Returns:
            The provider message id on success, None on failure
        """
        pass

    @abstractmethod
    async def edit_message(self, channel_id: str, message_id: str, text: str) -> bool:
        """Replace the text of an existing message."""
        pass

    @abstractmethod
    async def delete_message(self, channel_id: str, message_id: str) -> bool:
        """Delete a message."""
        pass

    @abstractmethod
    async def fetch_messages(self, channel_id: str, limit: int = 50) -> List[ChannelMessage]:
        """
        Fetch the most recent messages of a channel.

        There is no pagination cursor: history older than ``limit``
        messages is not reachable through this call.

        Returns:
            Up to ``limit`` messages ordered oldest to newest
        """
        pass

    @abstractmethod
    async def get_message(self, channel_id: str, message_id: str) -> Optional[ChannelMessage]:
        """
        Fetch a single message.

        Returns:
            The message, or None if the channel holds no message with that id
        """
        pass

    async def lookup_user_by_email(self, email: str) -> Optional[str]:
        """
        Find the provider user registered with an email address.

        Providers without a directory return None.
        """
        return None

    async def post_session_reminder(
        self,
        channel_id: str,
        session_title: str,
        start_time: datetime,
    ) -> bool:
        """Post the one-hour reminder for a live training session."""
        when = start_time.strftime("%Y-%m-%d %H:%M %Z").strip()
        text = (
            f"Live Session Reminder: {session_title}\n"
            f"Starts within the hour at {when}. Get ready to join!"
        )
        message_id = await self.post_message(channel_id, text)
        return bool(message_id)
