# app/core/timeline.py
"""Read-only projections of borrow requests: the status timeline, the public letter
verification view, and the public board of running loans. Pure functions, no I/O."""
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from app.models.borrow_request import BorrowRequestRecord
from app.models.enum import LETTER_STATUSES, RequestStatus
from app.models.item import InventoryItemRecord
from app.models.profile import ProfileRecord

PROGRESS_ORDER: Tuple[RequestStatus, ...] = (
    RequestStatus.DRAFT,
    RequestStatus.PENDING_OWNER,
    RequestStatus.PENDING_HEADMASTER,
    RequestStatus.APPROVED,
    RequestStatus.ACTIVE,
    RequestStatus.COMPLETED,
)


class TimelineStep(BaseModel):
    key: str
    label: str
    icon: str
    timestamp: Optional[datetime] = None
    is_reached: bool

    class Config: frozen = True


def progress_rank(request: BorrowRequestRecord) -> int:
    """Position of the request in PROGRESS_ORDER. Rejected/cancelled requests rank
    at the furthest stage their recorded timestamps prove they passed."""
    if request.status in PROGRESS_ORDER:
        return PROGRESS_ORDER.index(request.status)
    if request.owner_reviewed_at is not None:
        return PROGRESS_ORDER.index(RequestStatus.PENDING_HEADMASTER)
    if request.submitted_at is not None:
        return PROGRESS_ORDER.index(RequestStatus.PENDING_OWNER)
    return PROGRESS_ORDER.index(RequestStatus.DRAFT)


def _letter_timestamp(request: BorrowRequestRecord) -> Optional[datetime]:
    return request.letter_generated_at or request.headmaster_approved_at or request.owner_reviewed_at


# (key, label, icon, status ambang, pengambil timestamp)
_Step = Tuple[str, str, str, RequestStatus, Callable[[BorrowRequestRecord], Optional[datetime]]]


def _steps_for(request: BorrowRequestRecord) -> List[_Step]:
    # Setiap langkah terikat pada status tahapnya; langkah pertama selalu tercapai
    steps: List[_Step] = [
        ("submitted", "Permintaan Dikirim", "📝", RequestStatus.DRAFT,
         lambda r: r.submitted_at or r.created_at),
        ("owner_reviewed", "Ditinjau Pemilik", "👨‍💼", RequestStatus.PENDING_OWNER,
         lambda r: r.owner_reviewed_at),
    ]
    if request.requires_headmaster:
        steps.append(("headmaster_approved", "Disetujui Kepsek", "🏫", RequestStatus.PENDING_HEADMASTER,
                      lambda r: r.headmaster_approved_at))
    steps.extend([
        ("letter_ready", "Surat Siap", "📜", RequestStatus.APPROVED, _letter_timestamp),
        ("loan_active", "Sedang Dipinjam", "🚀", RequestStatus.ACTIVE, lambda r: r.started_at),
        ("completed", "Selesai", "✅", RequestStatus.COMPLETED, lambda r: r.completed_at),
    ])
    return steps


def project_timeline(request: BorrowRequestRecord) -> List[TimelineStep]:
    rank = progress_rank(request)
    timeline: List[TimelineStep] = []
    for key, label, icon, threshold, timestamp_of in _steps_for(request):
        reached = rank >= PROGRESS_ORDER.index(threshold)
        timeline.append(TimelineStep(
            key=key,
            label=label,
            icon=icon,
            timestamp=timestamp_of(request) if reached else None,
            is_reached=reached,
        ))
    return timeline


class LetterVerification(BaseModel):
    """Data publik untuk halaman verifikasi surat (target QR code)."""
    request_id: str
    validity: str             # VALID / NOT VALID / IN PROGRESS
    letter_kind: Optional[str] = None  # official / internal
    letter_number: Optional[str] = None
    letter_generated_at: Optional[datetime] = None
    status: RequestStatus
    purpose: str
    start_date: datetime
    end_date: datetime
    borrower_name: Optional[str] = None
    borrower_unit: Optional[str] = None
    owner_reviewer_name: Optional[str] = None
    headmaster_approver_name: Optional[str] = None
    timeline: List[TimelineStep]


def letter_validity(status: RequestStatus) -> str:
    if status in LETTER_STATUSES:
        return "VALID"
    if status in (RequestStatus.REJECTED, RequestStatus.CANCELLED):
        return "NOT VALID"
    return "IN PROGRESS"


def build_verification(
    request: BorrowRequestRecord,
    borrower: Optional[ProfileRecord] = None,
    owner_reviewer: Optional[ProfileRecord] = None,
    headmaster_approver: Optional[ProfileRecord] = None,
) -> LetterVerification:
    validity = letter_validity(request.status)
    letter_kind = None
    if validity == "VALID":
        letter_kind = "official" if request.letter_number else "internal"
    return LetterVerification(
        request_id=request.id,
        validity=validity,
        letter_kind=letter_kind,
        letter_number=request.letter_number,
        letter_generated_at=request.letter_generated_at,
        status=request.status,
        purpose=request.purpose,
        start_date=request.start_date,
        end_date=request.end_date,
        borrower_name=borrower.full_name if borrower else None,
        borrower_unit=borrower.unit if borrower else None,
        owner_reviewer_name=owner_reviewer.full_name if owner_reviewer else None,
        headmaster_approver_name=headmaster_approver.full_name if headmaster_approver else None,
        timeline=project_timeline(request),
    )


class BoardLine(BaseModel):
    item_id: str
    item_name: Optional[str] = None
    quantity: int


class PublicLoanEntry(BaseModel):
    """Satu baris papan publik: siapa (unit, bukan nama) sedang meminjam apa."""
    request_id: str
    borrower_unit: Optional[str] = None
    purpose: str
    started_at: Optional[datetime] = None
    end_date: datetime
    items: List[BoardLine]


def build_board_entry(
    request: BorrowRequestRecord,
    borrower: Optional[ProfileRecord],
    items: Dict[str, InventoryItemRecord],
) -> PublicLoanEntry:
    return PublicLoanEntry(
        request_id=request.id,
        borrower_unit=borrower.unit if borrower else None,
        purpose=request.purpose,
        started_at=request.started_at,
        end_date=request.end_date,
        items=[
            BoardLine(
                item_id=line.item_id,
                item_name=items[line.item_id].name if line.item_id in items else None,
                quantity=line.quantity,
            )
            for line in request.line_items
        ],
    )
