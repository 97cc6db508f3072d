"""
Pydantic models for chat request validation.
"""

from typing import Literal, Optional
from pydantic import BaseModel, Field


class SendMessageRequest(BaseModel):
    """Request body for posting or editing a chat message."""
    text: str = Field(..., min_length=1)


class ChatClientEvent(BaseModel):
    """Event sent by a websocket chat client."""
    type: Literal["send", "retry"]
    text: Optional[str] = None
