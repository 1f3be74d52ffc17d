# app/models/borrow_request.py
from typing import Optional, List
from beanie import Document
from pydantic import BaseModel, Field
from pymongo import IndexModel, ASCENDING, DESCENDING
from datetime import datetime, timezone

from .enum import RequestStatus, ReviewDecision


class RequestLineItem(BaseModel):
    """Satu pasangan (barang, jumlah) di dalam permintaan."""
    item_id: str
    quantity: int = Field(..., gt=0, description="Number of units requested")
    notes: Optional[str] = None


class BorrowRequestBase(BaseModel):
    borrower_id: str
    status: RequestStatus = RequestStatus.DRAFT
    purpose: str
    location_usage: Optional[str] = None
    start_date: datetime
    end_date: datetime
    pic_name: str       # Penanggung jawab
    pic_contact: str
    notes: Optional[str] = None

    # Ditetapkan saat pembuatan dan tidak berubah sesudahnya
    requires_headmaster: bool = False
    requires_letter: bool = False
    # Pilihan eksplisit peminjam, disimpan agar bisa diturunkan ulang saat barang diganti
    headmaster_requested: bool = False
    official_letter_requested: bool = False

    line_items: List[RequestLineItem] = Field(default_factory=list)
    department_ids: List[str] = Field(default_factory=list)

    # --- Timestamps per tahap ---
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    submitted_at: Optional[datetime] = None
    owner_reviewed_at: Optional[datetime] = None
    owner_reviewed_by: Optional[str] = None
    owner_notes: Optional[str] = None
    headmaster_approved_at: Optional[datetime] = None
    headmaster_approved_by: Optional[str] = None
    headmaster_notes: Optional[str] = None
    letter_number: Optional[str] = None
    letter_generated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None


class BorrowRequestRecord(BorrowRequestBase):
    """Snapshot permintaan yang dibaca dari gateway; workflow engine hanya bekerja dengan ini."""
    id: str

    def item_ids(self) -> List[str]:
        return [line.item_id for line in self.line_items]


class BorrowRequest(Document, BorrowRequestBase):

    class Settings:
        name = "borrow_requests"
        indexes = [
            IndexModel([("borrower_id", ASCENDING), ("updated_at", DESCENDING)], name="request_borrower_index"),
            IndexModel([("status", ASCENDING), ("updated_at", DESCENDING)], name="request_status_index"),
            IndexModel([("department_ids", ASCENDING)], name="request_department_index"),
            IndexModel([("status", ASCENDING), ("started_at", DESCENDING)], name="request_started_at_index"),
            IndexModel([("owner_reviewed_by", ASCENDING)], name="request_owner_reviewer_index", sparse=True),
            IndexModel([("headmaster_approved_by", ASCENDING)], name="request_headmaster_index", sparse=True),
            IndexModel([("rejected_by", ASCENDING)], name="request_rejected_by_index", sparse=True),
            IndexModel([("letter_number", ASCENDING)], name="request_letter_unique_index", unique=True, sparse=True),
        ]

    # --- Pydantic Schemas ---
    class Create(BaseModel):
        purpose: str = Field(..., min_length=3, max_length=500)
        location_usage: Optional[str] = Field(None, max_length=200)
        start_date: datetime
        end_date: datetime
        pic_name: str = Field(..., min_length=1, max_length=120)
        pic_contact: str = Field(..., min_length=3, max_length=60)
        notes: Optional[str] = None
        line_items: List[RequestLineItem] = Field(default_factory=list)
        # Peminjam bisa meminta jalur Kepala Sekolah / surat resmi secara eksplisit
        requires_headmaster: bool = False
        requires_official_letter: bool = True

    class LineItemsUpdate(BaseModel):
        line_items: List[RequestLineItem]

    class Review(BaseModel):
        decision: ReviewDecision
        reason: Optional[str] = Field(None, max_length=500, description="Wajib diisi saat menolak")
        notes: Optional[str] = Field(None, max_length=500)
