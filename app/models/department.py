# app/models/department.py
from typing import Optional
from beanie import Document
from pydantic import BaseModel, Field
from pymongo import IndexModel, ASCENDING
from datetime import datetime, timezone


class DepartmentBase(BaseModel):
    name: str
    # Kode singkat yang muncul di nomor surat, misal "LAB" pada 001/LAB/03/2025
    code: str
    description: Optional[str] = None
    contact_person: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DepartmentRecord(DepartmentBase):
    id: str


class Department(Document, DepartmentBase):

    class Settings:
        name = "departments"
        indexes = [
            IndexModel([("name", ASCENDING)], name="department_name_unique_index", unique=True),
            IndexModel([("code", ASCENDING)], name="department_code_unique_index", unique=True),
        ]

    class Create(BaseModel):
        """Skema untuk membuat departemen baru."""
        name: str = Field(..., min_length=1, max_length=100)
        code: str = Field(..., min_length=2, max_length=10, pattern=r"^[A-Za-z0-9]+$")
        description: Optional[str] = None
        contact_person: Optional[str] = None
