"""
Pydantic models for group request validation.
"""

from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field


class CreateGroupRequest(BaseModel):
    """Request body for creating a group."""
    name: str = Field(..., min_length=1, max_length=100)
    type: str = Field(default="cohort", description="cohort | graduate | mentor | custom")
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None


class UpdateGroupRequest(BaseModel):
    """Request body for updating a group."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None


class AddMembersRequest(BaseModel):
    """Request body for adding members by email."""
    emails: List[str] = Field(..., min_length=1, max_length=500)
    role: str = Field(default="member", description="member | admin")
