# app/api/v1/endpoints/requests.py
from typing import Dict, List, Optional
from fastapi import APIRouter, Depends, status, Path, Body, Query, Request
from loguru import logger
from pydantic import BaseModel

from app.api.deps import get_engine
from app.core.actions import can_view, visible_actions
from app.core.exceptions import Unauthorized
from app.core.rate_limiter import limiter
from app.core.roles import RoleResolver
from app.core.security import get_current_active_user, get_current_roles
from app.core.timeline import TimelineStep, project_timeline
from app.core.workflow import LoanWorkflowEngine
from app.models.borrow_request import BorrowRequest, BorrowRequestRecord
from app.models.enum import RequestStatus, WorkflowAction
from app.models.profile import ProfileRecord

router = APIRouter(tags=["Borrow Requests"])


class RequestActions(BaseModel):
    request_id: str
    status: RequestStatus
    actions: List[WorkflowAction]


async def get_visible_request(
    request_id: str, engine: LoanWorkflowEngine, roles: RoleResolver, current_user: ProfileRecord
) -> BorrowRequestRecord:
    borrow_request = await engine.get_request(request_id)
    if not can_view(roles, borrow_request, current_user.id):
        raise Unauthorized(current_user.id, "view", request_id)
    return borrow_request


# --- Peminjam ---

@router.post("/", response_model=BorrowRequestRecord, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/hour")
async def create_request(
    request: Request,
    request_in: BorrowRequest.Create = Body(...),
    engine: LoanWorkflowEngine = Depends(get_engine),
    current_user: ProfileRecord = Depends(get_current_active_user),
):
    """Buat draft permintaan peminjaman."""
    return await engine.create_draft(current_user.id, request_in)


@router.put("/{request_id}/items", response_model=BorrowRequestRecord)
@limiter.limit("60/hour")
async def replace_request_items(
    request: Request,
    request_id: str = Path(...),
    items_in: BorrowRequest.LineItemsUpdate = Body(...),
    engine: LoanWorkflowEngine = Depends(get_engine),
    current_user: ProfileRecord = Depends(get_current_active_user),
):
    return await engine.replace_line_items(request_id, current_user.id, items_in.line_items)


@router.post("/{request_id}/submit", response_model=BorrowRequestRecord)
@limiter.limit("30/hour")
async def submit_request(
    request: Request,
    request_id: str = Path(...),
    engine: LoanWorkflowEngine = Depends(get_engine),
    current_user: ProfileRecord = Depends(get_current_active_user),
):
    return await engine.submit(request_id, current_user.id)


@router.post("/{request_id}/cancel", response_model=BorrowRequestRecord)
@limiter.limit("30/hour")
async def cancel_request(
    request: Request,
    request_id: str = Path(...),
    engine: LoanWorkflowEngine = Depends(get_engine),
    current_user: ProfileRecord = Depends(get_current_active_user),
):
    return await engine.cancel(request_id, current_user.id)


# --- Pemilik / Kepala Sekolah ---

@router.post("/{request_id}/owner-review", response_model=BorrowRequestRecord)
@limiter.limit("120/hour")
async def owner_review(
    request: Request,
    request_id: str = Path(...),
    review: BorrowRequest.Review = Body(...),
    engine: LoanWorkflowEngine = Depends(get_engine),
    current_user: ProfileRecord = Depends(get_current_active_user),
):
    return await engine.review_by_owner(request_id, current_user.id, review.decision, review.reason, review.notes)


@router.post("/{request_id}/headmaster-review", response_model=BorrowRequestRecord)
@limiter.limit("120/hour")
async def headmaster_review(
    request: Request,
    request_id: str = Path(...),
    review: BorrowRequest.Review = Body(...),
    engine: LoanWorkflowEngine = Depends(get_engine),
    current_user: ProfileRecord = Depends(get_current_active_user),
):
    return await engine.review_by_headmaster(
        request_id, current_user.id, review.decision, review.reason, review.notes
    )


@router.post("/{request_id}/start", response_model=BorrowRequestRecord)
@limiter.limit("120/hour")
async def start_loan(
    request: Request,
    request_id: str = Path(...),
    engine: LoanWorkflowEngine = Depends(get_engine),
    current_user: ProfileRecord = Depends(get_current_active_user),
):
    """Serahkan barang: status active dan stok berkurang."""
    return await engine.start_loan(request_id, current_user.id)


@router.post("/{request_id}/complete", response_model=BorrowRequestRecord)
@limiter.limit("120/hour")
async def complete_loan(
    request: Request,
    request_id: str = Path(...),
    engine: LoanWorkflowEngine = Depends(get_engine),
    current_user: ProfileRecord = Depends(get_current_active_user),
):
    return await engine.complete_loan(request_id, current_user.id)


# --- Baca ---

@router.get("/mine", response_model=List[BorrowRequestRecord])
async def read_my_requests(
    status_filter: Optional[List[RequestStatus]] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    engine: LoanWorkflowEngine = Depends(get_engine),
    current_user: ProfileRecord = Depends(get_current_active_user),
):
    return await engine.list_requests(borrower_id=current_user.id, statuses=status_filter, skip=skip, limit=limit)


@router.get("/inbox", response_model=List[BorrowRequestRecord])
async def read_inbox(
    limit: int = Query(50, ge=1, le=200),
    engine: LoanWorkflowEngine = Depends(get_engine),
    roles: RoleResolver = Depends(get_current_roles),
    current_user: ProfileRecord = Depends(get_current_active_user),
):
    """Permintaan yang menunggu tindakan pengguna ini sesuai perannya."""
    found: Dict[str, BorrowRequestRecord] = {}
    if roles.is_admin():
        for r in await engine.list_requests(statuses=[
            RequestStatus.PENDING_OWNER, RequestStatus.PENDING_HEADMASTER,
            RequestStatus.APPROVED, RequestStatus.ACTIVE,
        ], limit=limit):
            found[r.id] = r
    if roles.is_headmaster():
        for r in await engine.list_requests(statuses=[RequestStatus.PENDING_HEADMASTER], limit=limit):
            found[r.id] = r
    owned = roles.owned_department_ids()
    if owned:
        for r in await engine.list_requests(
            statuses=[RequestStatus.PENDING_OWNER, RequestStatus.APPROVED, RequestStatus.ACTIVE],
            department_ids=owned,
            limit=limit,
        ):
            found[r.id] = r

    inbox = sorted(found.values(), key=lambda r: r.updated_at, reverse=True)[:limit]
    logger.debug(f"Inbox for {current_user.username}: {len(inbox)} request(s)")
    return inbox


@router.get("/reviewed", response_model=List[BorrowRequestRecord])
async def read_review_history(
    status_filter: Optional[List[RequestStatus]] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(150, ge=1, le=200),
    engine: LoanWorkflowEngine = Depends(get_engine),
    current_user: ProfileRecord = Depends(get_current_active_user),
):
    """Riwayat tinjauan: permintaan yang disetujui atau ditolak oleh pengguna ini."""
    return await engine.list_requests(
        reviewer_id=current_user.id, statuses=status_filter, skip=skip, limit=limit
    )


@router.get("/{request_id}", response_model=BorrowRequestRecord)
async def read_request(
    request_id: str = Path(...),
    engine: LoanWorkflowEngine = Depends(get_engine),
    roles: RoleResolver = Depends(get_current_roles),
    current_user: ProfileRecord = Depends(get_current_active_user),
):
    return await get_visible_request(request_id, engine, roles, current_user)


@router.get("/{request_id}/timeline", response_model=List[TimelineStep])
async def read_request_timeline(
    request_id: str = Path(...),
    engine: LoanWorkflowEngine = Depends(get_engine),
    roles: RoleResolver = Depends(get_current_roles),
    current_user: ProfileRecord = Depends(get_current_active_user),
):
    return project_timeline(await get_visible_request(request_id, engine, roles, current_user))


@router.get("/{request_id}/actions", response_model=RequestActions)
async def read_request_actions(
    request_id: str = Path(...),
    engine: LoanWorkflowEngine = Depends(get_engine),
    roles: RoleResolver = Depends(get_current_roles),
    current_user: ProfileRecord = Depends(get_current_active_user),
):
    """Tombol aksi yang boleh ditampilkan untuk pengguna ini."""
    borrow_request = await get_visible_request(request_id, engine, roles, current_user)
    actions = visible_actions(roles, borrow_request, current_user.id)
    return RequestActions(
        request_id=borrow_request.id,
        status=borrow_request.status,
        actions=sorted(actions, key=lambda a: list(WorkflowAction).index(a)),
    )
