# app/models/enum.py
from enum import Enum


class RequestStatus(str, Enum):
    DRAFT = "draft"                           # <-- Disusun peminjam, belum dikirim
    PENDING_OWNER = "pending_owner"           # <-- Menunggu tinjauan pemilik alat
    PENDING_HEADMASTER = "pending_headmaster" # <-- Hanya jika requires_headmaster
    APPROVED = "approved"                     # <-- Surat siap, barang belum keluar
    ACTIVE = "active"                         # <-- Sedang dipinjam
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({RequestStatus.COMPLETED, RequestStatus.REJECTED, RequestStatus.CANCELLED})
LETTER_STATUSES = frozenset({RequestStatus.APPROVED, RequestStatus.ACTIVE, RequestStatus.COMPLETED})


class ItemStatus(str, Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    BORROWED = "borrowed"
    MAINTENANCE = "maintenance"
    DAMAGED = "damaged"
    LOST = "lost"


class AppRole(str, Enum):
    ADMIN = "admin"
    OWNER = "owner"
    HEADMASTER = "headmaster"
    BORROWER = "borrower"


class ReviewDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class WorkflowAction(str, Enum):
    EDIT_ITEMS = "edit_items"
    SUBMIT = "submit"
    OWNER_APPROVE = "owner_approve"
    OWNER_REJECT = "owner_reject"
    HEADMASTER_APPROVE = "headmaster_approve"
    HEADMASTER_REJECT = "headmaster_reject"
    START_LOAN = "start_loan"
    COMPLETE_LOAN = "complete_loan"
    CANCEL = "cancel"
