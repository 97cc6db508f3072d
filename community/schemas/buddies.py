"""
Pydantic models for buddy pairing request validation.
"""

from typing import Optional
from pydantic import BaseModel, Field, EmailStr


class CreateInvitationRequest(BaseModel):
    """Request body for inviting a buddy."""
    userId: str = Field(..., min_length=1)


class AdminCreatePairRequest(BaseModel):
    """Request body for an admin pairing two learners by email."""
    emailA: EmailStr
    emailB: EmailStr
    status: str = Field(default="pending", description="pending | confirmed")


class RepairPairRequest(BaseModel):
    """Request body for replacing one partner of a pair."""
    newUserEmail: EmailStr
    keepUserId: Optional[str] = None
