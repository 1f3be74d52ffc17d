# app/models/item.py
from typing import Optional
from beanie import Document
from pydantic import BaseModel, Field, HttpUrl, model_validator
from pymongo import IndexModel, ASCENDING
from datetime import datetime, timezone

from .enum import ItemStatus


class InventoryItemBase(BaseModel):
    """Field barang inventaris yang dibagi oleh dokumen Beanie dan snapshot core."""
    name: str = Field(..., max_length=200)
    code: Optional[str] = None
    description: Optional[str] = None
    department_id: str
    category_id: Optional[str] = None
    quantity: int = Field(default=0, ge=0)            # Total unit yang dimiliki
    available_quantity: int = Field(default=0, ge=0)  # Unit yang sedang di rak
    status: ItemStatus = ItemStatus.AVAILABLE
    location: Optional[str] = Field(None, max_length=100, description="Lemari/rak/ruang")
    image_url: Optional[str] = None
    # Barang kelas ini selalu butuh persetujuan Kepala Sekolah
    requires_headmaster_approval: bool = False
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class InventoryItemRecord(InventoryItemBase):
    id: str


class InventoryItem(Document, InventoryItemBase):
    """Model Dokumen Beanie untuk Barang Inventaris."""

    class Settings:
        name = "items"
        indexes = [
            IndexModel([("name", ASCENDING)], name="item_name_index"),
            IndexModel([("code", ASCENDING)], name="item_code_unique_index", unique=True, sparse=True),
            IndexModel([("department_id", ASCENDING)], name="item_department_index"),
            IndexModel([("status", ASCENDING)], name="item_status_index"),
            IndexModel([("is_active", ASCENDING)], name="item_is_active_index"),
        ]

    # --- Pydantic Schemas for API ---
    class Create(BaseModel):
        name: str = Field(..., min_length=1, max_length=200)
        code: Optional[str] = Field(None, max_length=50)
        description: Optional[str] = None
        department_id: str
        category_id: Optional[str] = None
        # Barang baru selalu ada di rak, jadi minimal satu unit
        quantity: int = Field(..., ge=1)
        location: Optional[str] = Field(None, max_length=100)
        image_url: Optional[HttpUrl] = None
        requires_headmaster_approval: bool = False

    class Update(BaseModel):
        """Update metadata. Perubahan `quantity` menggeser available_quantity dengan selisih yang sama."""
        name: Optional[str] = Field(None, min_length=1, max_length=200)
        description: Optional[str] = None
        category_id: Optional[str] = None
        quantity: Optional[int] = Field(None, ge=0)
        status: Optional[ItemStatus] = None
        location: Optional[str] = Field(None, max_length=100)
        image_url: Optional[HttpUrl] = None
        requires_headmaster_approval: Optional[bool] = None
        is_active: Optional[bool] = None

        @model_validator(mode="after")
        def _borrowed_is_workflow_only(self):
            if self.status == ItemStatus.BORROWED:
                raise ValueError("Status 'borrowed' is set by the loan workflow only.")
            return self
