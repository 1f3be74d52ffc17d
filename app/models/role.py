# app/models/role.py
from typing import Optional
from beanie import Document
from pydantic import BaseModel, Field
from pymongo import IndexModel, ASCENDING
from datetime import datetime, timezone

from .enum import AppRole


class RoleAssignmentBase(BaseModel):
    user_id: str
    role: AppRole
    # Nama departemen untuk peran owner (misal "Laboratorium IPA"), None untuk peran lain
    department: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RoleAssignmentRecord(RoleAssignmentBase):
    id: str


class UserRoleAssignment(Document, RoleAssignmentBase):

    class Settings:
        name = "user_roles"
        indexes = [
            IndexModel([("user_id", ASCENDING)], name="user_roles_user_index"),
            IndexModel(
                [("user_id", ASCENDING), ("role", ASCENDING), ("department", ASCENDING)],
                name="user_roles_unique_index", unique=True
            ),
        ]

    class Create(BaseModel):
        role: AppRole
        department: Optional[str] = Field(None, max_length=100)
