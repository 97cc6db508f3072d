"""
Channels module - Pluggable external chat-channel providers (Slack).
"""

from common.channels.base import (
    ChannelMessage,
    ChannelProvider,
    normalize_channel_name,
)
from common.channels.slack import SlackChannelProvider

__all__ = [
    "ChannelMessage",
    "ChannelProvider",
    "SlackChannelProvider",
    "normalize_channel_name",
]
