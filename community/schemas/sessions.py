"""
Pydantic models for training session request validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class CreateSessionRequest(BaseModel):
    """Request body for scheduling a session."""
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    startTime: datetime
    endTime: datetime
    channelRef: Optional[str] = None
    groupId: Optional[str] = None
    meetingLink: Optional[str] = Field(None, max_length=500)


class UpdateSessionRequest(BaseModel):
    """Request body for updating a session."""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    channelRef: Optional[str] = None
    groupId: Optional[str] = None
    meetingLink: Optional[str] = Field(None, max_length=500)
