# app/models/category.py
from typing import Optional
from beanie import Document
from pydantic import BaseModel, Field
from pymongo import IndexModel, ASCENDING, DESCENDING
from datetime import datetime, timezone


class CategoryBase(BaseModel):
    name: str
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CategoryRecord(CategoryBase):
    id: str


class Category(Document, CategoryBase):

    class Settings:
        name = "categories"
        indexes = [
            IndexModel([("name", ASCENDING)], name="category_name_unique_index", unique=True),
            IndexModel([("updated_at", DESCENDING)], name="category_updated_at_index"),
        ]

    # --- Pydantic Schemas ---
    class Create(BaseModel):
        """Skema untuk membuat kategori baru."""
        name: str = Field(..., min_length=1, max_length=100)
        description: Optional[str] = None
