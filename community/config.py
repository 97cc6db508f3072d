"""
Community application settings.

Extends the base settings with channel provider, chat relay and
reminder configuration.
"""

from typing import Optional
from common.config import BaseAppSettings


class Settings(BaseAppSettings):
    """Community-specific settings."""

    # ==========================================================================
    # Channel Provider (Slack)
    # ==========================================================================
    SLACK_BOT_TOKEN: Optional[str] = None
    SLACK_API_BASE_URL: str = "https://slack.com/api"
    SLACK_TIMEOUT_SECONDS: float = 10.0

    # ==========================================================================
    # Chat Relay
    # ==========================================================================
    # Poll interval while a conversation is open
    CHAT_POLL_INTERVAL_SECONDS: float = 8.0

    # Most recent messages fetched per poll (no pagination beyond this)
    CHAT_FETCH_LIMIT: int = 50

    MAX_MESSAGE_LENGTH: int = 2000

    # ==========================================================================
    # Sessions
    # ==========================================================================
    # Sessions starting within this window get a reminder
    REMINDER_WINDOW_MINUTES: int = 60

    # ==========================================================================
    # Channel creation guard
    # ==========================================================================
    # A claim older than this may be taken over by another caller
    CHANNEL_CLAIM_TTL_SECONDS: int = 60

    # How long a concurrent caller waits for the claim holder's channel
    CHANNEL_CLAIM_WAIT_SECONDS: float = 5.0


# Global settings instance
settings = Settings()
