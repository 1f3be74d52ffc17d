# app/core/workflow.py
"""
The borrow request state machine.

    draft -> pending_owner -> [pending_headmaster] -> approved -> active -> completed
    any pending state -> rejected
    draft / pending_owner / pending_headmaster -> cancelled

Every operation loads the request, checks the actor, the current status and the
payload, and only then writes. Status writes are compare-and-set on the status
that was read; losing that race raises InvalidState.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from app.core.actions import is_capable, state_allows
from app.core.exceptions import (
    InconsistentState,
    InvalidState,
    RequestNotFound,
    Unauthorized,
    ValidationError,
)
from app.core.gateway import PersistenceGateway, UnitOfWork
from app.core.inventory import LoanDirection, StockAdjustment, merge_line_items, plan_adjustments
from app.core.letters import LetterNumberIssuer
from app.core.roles import RoleSessionCache
from app.core.timeline import LetterVerification, PublicLoanEntry, build_board_entry, build_verification
from app.core.utils import ensure_utc, utcnow
from app.models.borrow_request import BorrowRequest, BorrowRequestBase, BorrowRequestRecord, RequestLineItem
from app.models.enum import RequestStatus, ReviewDecision, WorkflowAction
from app.models.item import InventoryItemRecord

logger = logging.getLogger(__name__)


class LoanWorkflowEngine:

    def __init__(
        self,
        gateway: PersistenceGateway,
        role_sessions: RoleSessionCache,
        letters: Optional[LetterNumberIssuer] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.gateway = gateway
        self.role_sessions = role_sessions
        self.letters = letters or LetterNumberIssuer(gateway, "UTC", "UMUM")
        self.clock = clock

    # ------------------------------------------------------------------
    # Helper
    # ------------------------------------------------------------------

    async def _load(self, request_id: str) -> BorrowRequestRecord:
        request = await self.gateway.get_request(request_id)
        if request is None:
            raise RequestNotFound(request_id)
        return request

    async def _authorize(self, action: WorkflowAction, request: BorrowRequestRecord, actor_id: Optional[str]) -> None:
        roles = await self.role_sessions.resolve(actor_id)
        if not is_capable(action, roles, request, actor_id):
            logger.warning(f"User {actor_id} is not allowed to {action.value} request {request.id}")
            raise Unauthorized(actor_id, action.value, request.id)

    @staticmethod
    def _require_state(action: WorkflowAction, request: BorrowRequestRecord) -> None:
        if not state_allows(action, request):
            raise InvalidState(request.id, request.status.value, action.value)

    async def _write_status(
        self, request: BorrowRequestRecord, action: WorkflowAction, changes: Dict, uow: Optional[UnitOfWork] = None
    ) -> BorrowRequestRecord:
        target = uow or self.gateway
        updated = await target.update_request(request.id, request.status, changes)
        if updated is None:
            raise InvalidState(
                request.id, request.status.value, action.value,
                message=f"Request {request.id} changed status concurrently; '{action.value}' was not applied.",
            )
        return updated

    async def _validate_line_items(self, line_items: Iterable[RequestLineItem]) -> Dict[str, InventoryItemRecord]:
        lines = list(line_items)
        if not lines:
            raise ValidationError("A borrow request needs at least one item.", field="line_items")
        for line in lines:
            if line.quantity <= 0:
                raise ValidationError(f"Quantity for item {line.item_id} must be positive.", field="line_items")

        merged = merge_line_items(lines)
        items = await self.gateway.get_items(merged.keys())
        for item_id, quantity in merged.items():
            item = items.get(item_id)
            if item is None or not item.is_active:
                raise ValidationError(f"Item {item_id} does not exist or is inactive.", field="line_items")
            if quantity > item.quantity:
                raise ValidationError(
                    f"Requested {quantity} x '{item.name}' but only {item.quantity} exist in total.",
                    field="line_items",
                )
        return items

    @staticmethod
    def _validate_dates(start_date: datetime, end_date: datetime) -> None:
        # end == start adalah peminjaman satu hari, tetap sah
        if ensure_utc(end_date) < ensure_utc(start_date):
            raise ValidationError("end_date must not be before start_date.", field="end_date")

    @staticmethod
    def _derive_routing(
        items: Dict[str, InventoryItemRecord], line_items: List[RequestLineItem],
        wants_headmaster: bool, wants_official_letter: bool,
    ) -> Tuple[bool, bool, List[str]]:
        department_ids: List[str] = []
        for item_id in merge_line_items(line_items):
            department_id = items[item_id].department_id
            if department_id and department_id not in department_ids:
                department_ids.append(department_id)
        requires_headmaster = wants_headmaster or any(
            items[item_id].requires_headmaster_approval for item_id in merge_line_items(line_items)
        )
        requires_letter = requires_headmaster or wants_official_letter
        return requires_headmaster, requires_letter, department_ids

    @staticmethod
    def _merged_lines(line_items: Iterable[RequestLineItem]) -> List[RequestLineItem]:
        notes: Dict[str, Optional[str]] = {}
        for line in line_items:
            notes.setdefault(line.item_id, line.notes)
        return [
            RequestLineItem(item_id=item_id, quantity=quantity, notes=notes.get(item_id))
            for item_id, quantity in merge_line_items(line_items).items()
        ]

    # ------------------------------------------------------------------
    # Draft
    # ------------------------------------------------------------------

    async def create_draft(self, borrower_id: str, payload: BorrowRequest.Create) -> BorrowRequestRecord:
        self._validate_dates(payload.start_date, payload.end_date)
        items = await self._validate_line_items(payload.line_items)
        lines = self._merged_lines(payload.line_items)
        requires_headmaster, requires_letter, department_ids = self._derive_routing(
            items, lines, payload.requires_headmaster, payload.requires_official_letter
        )

        now = self.clock()
        draft = BorrowRequestBase(
            borrower_id=borrower_id,
            status=RequestStatus.DRAFT,
            purpose=payload.purpose,
            location_usage=payload.location_usage,
            start_date=ensure_utc(payload.start_date),
            end_date=ensure_utc(payload.end_date),
            pic_name=payload.pic_name,
            pic_contact=payload.pic_contact,
            notes=payload.notes,
            requires_headmaster=requires_headmaster,
            requires_letter=requires_letter,
            headmaster_requested=payload.requires_headmaster,
            official_letter_requested=payload.requires_official_letter,
            line_items=lines,
            department_ids=department_ids,
            created_at=now,
            updated_at=now,
        )
        created = await self.gateway.insert_request(draft)
        logger.info(
            f"Draft request {created.id} created by {borrower_id} "
            f"({len(lines)} item(s), headmaster={requires_headmaster}, letter={requires_letter})"
        )
        return created

    async def replace_line_items(
        self, request_id: str, actor_id: str, line_items: List[RequestLineItem]
    ) -> BorrowRequestRecord:
        request = await self._load(request_id)
        await self._authorize(WorkflowAction.EDIT_ITEMS, request, actor_id)
        self._require_state(WorkflowAction.EDIT_ITEMS, request)
        items = await self._validate_line_items(line_items)
        lines = self._merged_lines(line_items)

        requires_headmaster, requires_letter, department_ids = self._derive_routing(
            items, lines, request.headmaster_requested, request.official_letter_requested
        )
        updated = await self._write_status(request, WorkflowAction.EDIT_ITEMS, {
            "line_items": [line.model_dump() for line in lines],
            "department_ids": department_ids,
            "requires_headmaster": requires_headmaster,
            "requires_letter": requires_letter,
            "updated_at": self.clock(),
        })
        logger.info(f"Request {request_id}: line items replaced ({len(lines)} item(s))")
        return updated

    # ------------------------------------------------------------------
    # Transisi
    # ------------------------------------------------------------------

    async def submit(self, request_id: str, actor_id: str) -> BorrowRequestRecord:
        request = await self._load(request_id)
        await self._authorize(WorkflowAction.SUBMIT, request, actor_id)
        self._require_state(WorkflowAction.SUBMIT, request)
        await self._validate_line_items(request.line_items)
        self._validate_dates(request.start_date, request.end_date)

        now = self.clock()
        updated = await self._write_status(request, WorkflowAction.SUBMIT, {
            "status": RequestStatus.PENDING_OWNER,
            "submitted_at": now,
            "updated_at": now,
        })
        logger.info(f"Request {request_id} submitted by {actor_id}")
        return updated

    async def review_by_owner(
        self,
        request_id: str,
        actor_id: str,
        decision: ReviewDecision,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> BorrowRequestRecord:
        action = WorkflowAction.OWNER_APPROVE if decision == ReviewDecision.APPROVE else WorkflowAction.OWNER_REJECT
        request = await self._load(request_id)
        await self._authorize(action, request, actor_id)
        self._require_state(action, request)

        now = self.clock()
        if decision == ReviewDecision.REJECT:
            return await self._reject(request, action, actor_id, reason, now)

        changes = {
            "owner_reviewed_at": now,
            "owner_reviewed_by": actor_id,
            "owner_notes": notes,
            "updated_at": now,
        }
        if request.requires_headmaster:
            changes["status"] = RequestStatus.PENDING_HEADMASTER
        else:
            changes["status"] = RequestStatus.APPROVED
            changes.update(await self._letter_changes(request, now, official=request.requires_letter))

        updated = await self._write_status(request, action, changes)
        logger.info(f"Request {request_id} approved by owner {actor_id} -> {updated.status.value}")
        return updated

    async def review_by_headmaster(
        self,
        request_id: str,
        actor_id: str,
        decision: ReviewDecision,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> BorrowRequestRecord:
        action = (
            WorkflowAction.HEADMASTER_APPROVE if decision == ReviewDecision.APPROVE
            else WorkflowAction.HEADMASTER_REJECT
        )
        request = await self._load(request_id)
        await self._authorize(action, request, actor_id)
        self._require_state(action, request)

        now = self.clock()
        if decision == ReviewDecision.REJECT:
            return await self._reject(request, action, actor_id, reason, now)

        changes = {
            "status": RequestStatus.APPROVED,
            "headmaster_approved_at": now,
            "headmaster_approved_by": actor_id,
            "headmaster_notes": notes,
            "updated_at": now,
        }
        changes.update(await self._letter_changes(request, now, official=True))
        updated = await self._write_status(request, action, changes)
        logger.info(f"Request {request_id} approved by headmaster {actor_id}")
        return updated

    async def _reject(
        self, request: BorrowRequestRecord, action: WorkflowAction, actor_id: str,
        reason: Optional[str], now: datetime,
    ) -> BorrowRequestRecord:
        if not reason or not reason.strip():
            raise ValidationError("A rejection needs a reason.", field="reason")
        changes = {
            "status": RequestStatus.REJECTED,
            "rejected_at": now,
            "rejected_by": actor_id,
            "rejection_reason": reason.strip(),
            "updated_at": now,
        }
        updated = await self._write_status(request, action, changes)
        logger.info(f"Request {request.id} rejected by {actor_id} at {request.status.value}")
        return updated

    async def _letter_changes(self, request: BorrowRequestRecord, now: datetime, official: bool) -> Dict:
        changes: Dict = {"letter_generated_at": now}
        # Nomor surat tidak pernah ditimpa. Nomor diambil sebelum tulisan status;
        # bila tulisan itu kalah balapan, nomornya hangus: urutan boleh berlubang, tidak pernah ganda.
        if official and not request.letter_number:
            changes["letter_number"] = await self.letters.issue(request, now)
        return changes

    async def cancel(self, request_id: str, actor_id: str) -> BorrowRequestRecord:
        request = await self._load(request_id)
        await self._authorize(WorkflowAction.CANCEL, request, actor_id)
        self._require_state(WorkflowAction.CANCEL, request)

        now = self.clock()
        updated = await self._write_status(request, WorkflowAction.CANCEL, {
            "status": RequestStatus.CANCELLED,
            "cancelled_at": now,
            "cancelled_by": actor_id,
            "updated_at": now,
        })
        logger.info(f"Request {request_id} cancelled by {actor_id}")
        return updated

    # ------------------------------------------------------------------
    # Peminjaman: status + stok
    # ------------------------------------------------------------------

    async def start_loan(self, request_id: str, actor_id: Optional[str] = None) -> BorrowRequestRecord:
        return await self._move_stock(request_id, actor_id, WorkflowAction.START_LOAN, LoanDirection.CHECK_OUT)

    async def complete_loan(self, request_id: str, actor_id: Optional[str] = None) -> BorrowRequestRecord:
        return await self._move_stock(request_id, actor_id, WorkflowAction.COMPLETE_LOAN, LoanDirection.RETURN)

    async def _move_stock(
        self, request_id: str, actor_id: Optional[str], action: WorkflowAction, direction: LoanDirection
    ) -> BorrowRequestRecord:
        request = await self._load(request_id)
        if actor_id is not None:
            await self._authorize(action, request, actor_id)
        self._require_state(action, request)

        items = await self.gateway.get_items(request.item_ids())
        plan = plan_adjustments(request.id, request.line_items, items, direction)

        now = self.clock()
        changes = {"status": RequestStatus.ACTIVE, "started_at": now, "updated_at": now}
        if direction == LoanDirection.RETURN:
            changes = {"status": RequestStatus.COMPLETED, "completed_at": now, "updated_at": now}

        updated = await self._apply_with_inventory(request, action, plan, changes)
        logger.info(f"Request {request_id}: {action.value} done, {len(plan)} item(s) adjusted")
        return updated

    async def _apply_with_inventory(
        self, request: BorrowRequestRecord, action: WorkflowAction, plan: List[StockAdjustment], changes: Dict
    ) -> BorrowRequestRecord:
        """Stock first, then status, inside one unit of work. Without a transaction
        the applied stock changes are reversed when a later write fails."""
        applied: List[StockAdjustment] = []
        transactional = False
        try:
            async with self.gateway.unit_of_work() as uow:
                transactional = uow.transactional
                for adjustment in plan:
                    await uow.set_item_availability(
                        adjustment.item_id,
                        adjustment.available_before,
                        adjustment.available_after,
                        adjustment.status_after,
                    )
                    applied.append(adjustment)
                return await self._write_status(request, action, changes, uow=uow)
        except Exception as error:
            if not transactional and applied:
                await self._compensate(request, applied, error)
            raise

    async def _compensate(self, request: BorrowRequestRecord, applied: List[StockAdjustment], cause: Exception) -> None:
        logger.warning(f"Request {request.id}: reversing {len(applied)} stock change(s) after failure: {cause}")
        failures: List[Tuple[str, str]] = []
        for adjustment in reversed(applied):
            undo = adjustment.reversed()
            try:
                await self.gateway.set_item_availability(
                    undo.item_id, undo.available_before, undo.available_after, undo.status_after
                )
            except Exception as e:
                failures.append((undo.item_id, str(e)))

        if failures:
            logger.critical(
                f"Request {request.id}: stock could not be restored for {[item_id for item_id, _ in failures]}; "
                f"manual correction required."
            )
            raise InconsistentState(
                request.id,
                f"Status write failed and {len(failures)} stock change(s) could not be reversed.",
                failures,
            ) from cause

    # ------------------------------------------------------------------
    # Baca
    # ------------------------------------------------------------------

    async def get_request(self, request_id: str) -> BorrowRequestRecord:
        return await self._load(request_id)

    async def list_requests(
        self,
        borrower_id: Optional[str] = None,
        statuses: Optional[Iterable[RequestStatus]] = None,
        department_ids: Optional[Iterable[str]] = None,
        skip: int = 0,
        limit: int = 50,
        reviewer_id: Optional[str] = None,
        order_by: str = "updated_at",
    ) -> List[BorrowRequestRecord]:
        return await self.gateway.list_requests(
            borrower_id=borrower_id,
            reviewer_id=reviewer_id,
            order_by=order_by,
            statuses=list(statuses) if statuses is not None else None,
            department_ids=list(department_ids) if department_ids is not None else None,
            skip=skip,
            limit=limit,
        )

    async def verify_letter(self, request_id: str) -> LetterVerification:
        request = await self._load(request_id)
        people = [request.borrower_id, request.owner_reviewed_by, request.headmaster_approved_by]
        profiles = await self.gateway.get_profiles([user_id for user_id in people if user_id])
        return build_verification(
            request,
            borrower=profiles.get(request.borrower_id),
            owner_reviewer=profiles.get(request.owner_reviewed_by) if request.owner_reviewed_by else None,
            headmaster_approver=(
                profiles.get(request.headmaster_approved_by) if request.headmaster_approved_by else None
            ),
        )

    async def public_board(self, limit: int = 50) -> List[PublicLoanEntry]:
        """Peminjaman yang sedang berjalan, terbaru dimulai lebih dulu. Tanpa nama peminjam."""
        active = await self.list_requests(statuses=[RequestStatus.ACTIVE], order_by="started_at", limit=limit)
        if not active:
            return []
        profiles = await self.gateway.get_profiles(sorted({r.borrower_id for r in active}))
        items = await self.gateway.get_items(sorted({line.item_id for r in active for line in r.line_items}))
        return [build_board_entry(r, profiles.get(r.borrower_id), items) for r in active]
