"""User model for identity and reviewer roles.

Design Decisions:
- user_id is an opaque string issued by the identity provider
- Role decides who may audit receipts and change request status
- Display names are for presentation only; the workflow uses ids
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class UserRole(str, Enum):
    """User role types for access control.

    MEMBER: Can create receipts and submit own requests
    REVIEWER: Can additionally audit receipts, add notes and change status
    """
    MEMBER = "member"
    REVIEWER = "reviewer"


class User(BaseModel):
    """User domain model for identity and display.

    Attributes:
        user_id: Unique identifier
        name: Display name
        email: Optional contact email
        role: MEMBER or REVIEWER
        is_active: Whether the account may act
        created_at: Account creation timestamp
    """

    model_config = ConfigDict(use_enum_values=False)

    user_id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = Field(..., min_length=1, max_length=100)
    email: Optional[EmailStr] = Field(None, description="Contact email (optional)")
    role: UserRole = Field(default=UserRole.MEMBER)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.now)

    def is_reviewer(self) -> bool:
        return self.role == UserRole.REVIEWER

