# tests/test_actions.py
from datetime import datetime, timezone

import pytest

from app.core.actions import can_view, visible_actions
from app.core.roles import RoleResolver
from app.models.borrow_request import BorrowRequestRecord, RequestLineItem
from app.models.department import DepartmentRecord
from app.models.enum import AppRole, RequestStatus, WorkflowAction as A
from app.models.role import RoleAssignmentRecord

LAB = DepartmentRecord(id="dept-lab", name="Laboratorium IPA", code="LAB")


def request_in(status, requires_headmaster=False):
    return BorrowRequestRecord(
        id="req-1", borrower_id="borrower", status=status, purpose="Praktikum",
        start_date=datetime(2025, 3, 11, tzinfo=timezone.utc), end_date=datetime(2025, 3, 12, tzinfo=timezone.utc),
        pic_name="Bu Rina", pic_contact="0812", requires_headmaster=requires_headmaster,
        line_items=[RequestLineItem(item_id="item-1", quantity=1)], department_ids=["dept-lab"],
    )


def resolver(user_id, *roles):
    assignments = [
        RoleAssignmentRecord(id=f"r{i}", user_id=user_id, role=role, department=department)
        for i, (role, department) in enumerate(roles)
    ]
    return RoleResolver(user_id, assignments, [LAB])


BORROWER = resolver("borrower", (AppRole.BORROWER, None))
LAB_OWNER = resolver("owner", (AppRole.OWNER, "Laboratorium IPA"))
OTHER_OWNER = resolver("owner-2", (AppRole.OWNER, "Olahraga"))
HEADMASTER = resolver("kepsek", (AppRole.HEADMASTER, None))
ADMIN = resolver("admin", (AppRole.ADMIN, None))


@pytest.mark.parametrize("roles,status,expected", [
    (BORROWER, RequestStatus.DRAFT, {A.EDIT_ITEMS, A.SUBMIT, A.CANCEL}),
    (BORROWER, RequestStatus.PENDING_OWNER, {A.CANCEL}),
    (BORROWER, RequestStatus.APPROVED, set()),
    (LAB_OWNER, RequestStatus.PENDING_OWNER, {A.OWNER_APPROVE, A.OWNER_REJECT}),
    (LAB_OWNER, RequestStatus.APPROVED, {A.START_LOAN}),
    (LAB_OWNER, RequestStatus.ACTIVE, {A.COMPLETE_LOAN}),
    (LAB_OWNER, RequestStatus.PENDING_HEADMASTER, set()),
    (OTHER_OWNER, RequestStatus.PENDING_OWNER, set()),
    (HEADMASTER, RequestStatus.PENDING_HEADMASTER, {A.HEADMASTER_APPROVE, A.HEADMASTER_REJECT}),
    (HEADMASTER, RequestStatus.PENDING_OWNER, set()),
    (ADMIN, RequestStatus.PENDING_OWNER, {A.OWNER_APPROVE, A.OWNER_REJECT, A.CANCEL}),
    (ADMIN, RequestStatus.COMPLETED, set()),
])
def test_visible_actions(roles, status, expected):
    assert visible_actions(roles, request_in(status), roles.user_id) == frozenset(expected)


@pytest.mark.parametrize("status", [RequestStatus.COMPLETED, RequestStatus.REJECTED, RequestStatus.CANCELLED])
def test_terminal_states_offer_nothing_to_anyone(status):
    for roles in (BORROWER, LAB_OWNER, HEADMASTER, ADMIN):
        assert visible_actions(roles, request_in(status), roles.user_id) == frozenset()


def test_view_rights():
    req = request_in(RequestStatus.PENDING_OWNER)
    assert can_view(BORROWER, req, "borrower")
    assert can_view(LAB_OWNER, req, "owner")
    assert can_view(HEADMASTER, req, "kepsek")
    assert not can_view(OTHER_OWNER, req, "owner-2")
    assert not can_view(RoleResolver("stranger"), req, "stranger")
