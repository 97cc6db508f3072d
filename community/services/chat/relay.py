"""
Poll-based chat relay.

A ``ChatConversation`` mirrors one provider channel: it fetches the most
recent messages once on open and then every ``poll_interval`` seconds,
replacing its snapshot each time. Sending posts to the provider and
refreshes right away. ``ChatRelay`` keeps the open conversations of the
running application so they can all be closed on shutdown.

Snapshots are replaced wholesale, so a message posted while a fetch is in
flight can be missing until the next refresh.
"""

import asyncio
import contextlib
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any, Callable, Awaitable

from common.channels import ChannelMessage, ChannelProvider

logger = logging.getLogger(__name__)

UpdateCallback = Callable[["ChatConversation"], Awaitable[None]]


class ConversationState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ERRORED = "errored"


class ChatConversation:
    """
    Open conversation on one channel.
    """

    def __init__(
        self,
        provider: ChannelProvider,
        channel_id: str,
        poll_interval: float = 8.0,
        limit: int = 50,
        on_update: Optional[UpdateCallback] = None,
    ):
        """
        Initialize ChatConversation.

        Args:
            provider: Channel provider to read from and post to
            channel_id: Provider channel id
            poll_interval: Seconds between refreshes while open
            limit: Most recent messages kept per snapshot
            on_update: Awaited after every refresh (e.g. push to a websocket)
        """
        self.channel_id = channel_id
        self.state = ConversationState.IDLE
        self.messages: List[ChannelMessage] = []
        self.error: Optional[str] = None
        self.last_fetched_at: Optional[datetime] = None

        self._provider = provider
        self._poll_interval = poll_interval
        self._limit = limit
        self._on_update = on_update
        self._poll_task: Optional[asyncio.Task] = None
        self._fetch_lock = asyncio.Lock()
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._poll_task is not None and not self._closed

    async def open(self) -> None:
        """Fetch once and start polling."""
        if self._poll_task is not None or self._closed:
            return

        await self.refresh()
        if self._closed:
            return
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.debug(f"Conversation on {self.channel_id} opened")

    async def close(self) -> None:
        """Stop polling. No fetch happens after close returns."""
        self._closed = True

        if self._poll_task:
            self._poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None

        logger.debug(f"Conversation on {self.channel_id} closed")

    async def refresh(self) -> None:
        """
        Replace the snapshot with the provider's latest messages.

        Failures move the conversation to ERRORED and keep the previous
        messages; they are not raised.
        """
        if self._closed:
            return

        async with self._fetch_lock:
            # close() may have run while this call waited for the lock
            if self._closed:
                return
            self.state = ConversationState.LOADING
            try:
                messages = await self._provider.fetch_messages(self.channel_id, self._limit)
            except Exception as e:
                self.state = ConversationState.ERRORED
                self.error = getattr(e, "message", None) or str(e)
                logger.warning(f"Fetching messages for {self.channel_id} failed: {self.error}")
            else:
                self.messages = sorted(messages, key=lambda m: m.timestamp)
                self.state = ConversationState.LOADED
                self.error = None
                self.last_fetched_at = datetime.now(timezone.utc)

        await self._notify()

    async def retry(self) -> None:
        """Manual refresh after an error."""
        await self.refresh()

    async def send(
        self,
        text: str,
        author_display: Optional[str] = None,
        author_id: Optional[str] = None,
    ) -> bool:
        """
        Post a message and refresh.

        Returns:
            True if the provider accepted the message. A rejected post is
            recorded in ``error`` and logged.
        """
        message_id = await self._provider.post_message(
            self.channel_id, text, author_display=author_display, author_id=author_id
        )
        if not message_id:
            self.error = "Message could not be sent"
            logger.warning(f"Posting to {self.channel_id} failed")
            await self._notify()
            return False

        await self.refresh()
        return True

    def snapshot(self) -> Dict[str, Any]:
        return {
            "channelId": self.channel_id,
            "state": self.state.value,
            "error": self.error,
            "messages": [m.to_dict() for m in self.messages],
            "lastFetchedAt": self.last_fetched_at.isoformat() if self.last_fetched_at else None,
        }

    async def _poll_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self._poll_interval)
            if self._closed:
                break
            await self.refresh()

    async def _notify(self) -> None:
        if self._on_update is None or self._closed:
            return
        try:
            await self._on_update(self)
        except Exception as e:
            logger.warning(f"Conversation update callback failed: {e}")


class ChatRelay:
    """
    Registry of open conversations, keyed by connection id.
    """

    def __init__(self, provider: ChannelProvider, poll_interval: float = 8.0, limit: int = 50):
        self._provider = provider
        self._poll_interval = poll_interval
        self._limit = limit
        self._conversations: Dict[str, ChatConversation] = {}

    def __len__(self) -> int:
        return len(self._conversations)

    def get(self, key: str) -> Optional[ChatConversation]:
        return self._conversations.get(key)

    async def open(
        self,
        key: str,
        channel_id: str,
        on_update: Optional[UpdateCallback] = None,
    ) -> ChatConversation:
        """Open a conversation for a connection, replacing any previous one."""
        await self.close(key)

        conversation = ChatConversation(
            self._provider,
            channel_id,
            poll_interval=self._poll_interval,
            limit=self._limit,
            on_update=on_update,
        )
        self._conversations[key] = conversation
        await conversation.open()
        return conversation

    async def close(self, key: str) -> None:
        conversation = self._conversations.pop(key, None)
        if conversation:
            await conversation.close()

    async def close_all(self) -> None:
        """Close every open conversation (application shutdown)."""
        keys = list(self._conversations.keys())
        for key in keys:
            await self.close(key)
        if keys:
            logger.info(f"Closed {len(keys)} chat conversations")
