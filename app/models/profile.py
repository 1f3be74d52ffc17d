# app/models/profile.py
from typing import Optional, List
from beanie import Document
from pydantic import BaseModel, Field
from pymongo import IndexModel, ASCENDING, DESCENDING
from datetime import datetime, timezone

from .enum import AppRole


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProfileBase(BaseModel):
    username: str
    full_name: str
    unit: Optional[str] = None   # Unit kerja / kelas peminjam
    phone: Optional[str] = None
    hashed_password: str
    disabled: bool = Field(default=False) # False=Aktif, True=Nonaktif
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class ProfileRecord(ProfileBase):
    """Snapshot profil yang dipakai lapisan core."""
    id: str


class Profile(Document, ProfileBase):

    class Settings:
        name = "profiles"
        indexes = [
            IndexModel([("username", ASCENDING)], name="profile_username_unique_index", unique=True),
            IndexModel([("disabled", ASCENDING)], name="profile_disabled_index"),
            IndexModel([("updated_at", DESCENDING)], name="profile_updated_at_index"),
        ]

    # --- Pydantic Schemas ---
    class Create(BaseModel):
        username: str = Field(..., min_length=3, max_length=50)
        full_name: str = Field(..., min_length=1, max_length=120)
        unit: Optional[str] = None
        phone: Optional[str] = None
        password: str = Field(..., min_length=6)

    class Response(BaseModel):
        id: str
        username: str
        full_name: str
        unit: Optional[str] = None
        phone: Optional[str] = None
        disabled: bool
        created_at: datetime
        updated_at: datetime
        class Config: from_attributes=True

    class Me(BaseModel):
        """Profil + peran + kapabilitas untuk navigasi berbasis peran."""
        profile: "Profile.Response"
        roles: List[AppRole]
        role_labels: List[str]
        department: Optional[str] = None
        department_id: Optional[str] = None
        can_manage_inventory: bool
        can_approve_requests: bool


Profile.Me.model_rebuild()
