# app/core/actions.py
"""Which workflow actions an actor may perform on a request.

``visible_actions`` is the single authority: the engine authorises with the same
``is_capable`` / ``state_allows`` pair the API uses to tell clients which
buttons to render.
"""
from typing import Dict, FrozenSet, Optional

from app.core.roles import RoleResolver
from app.models.borrow_request import BorrowRequestRecord
from app.models.enum import RequestStatus, WorkflowAction

PENDING_CANCELLABLE = frozenset({
    RequestStatus.DRAFT, RequestStatus.PENDING_OWNER, RequestStatus.PENDING_HEADMASTER,
})

ALLOWED_FROM: Dict[WorkflowAction, FrozenSet[RequestStatus]] = {
    WorkflowAction.EDIT_ITEMS: frozenset({RequestStatus.DRAFT}),
    WorkflowAction.SUBMIT: frozenset({RequestStatus.DRAFT}),
    WorkflowAction.OWNER_APPROVE: frozenset({RequestStatus.PENDING_OWNER}),
    WorkflowAction.OWNER_REJECT: frozenset({RequestStatus.PENDING_OWNER}),
    WorkflowAction.HEADMASTER_APPROVE: frozenset({RequestStatus.PENDING_HEADMASTER}),
    WorkflowAction.HEADMASTER_REJECT: frozenset({RequestStatus.PENDING_HEADMASTER}),
    WorkflowAction.START_LOAN: frozenset({RequestStatus.APPROVED}),
    WorkflowAction.COMPLETE_LOAN: frozenset({RequestStatus.ACTIVE}),
    WorkflowAction.CANCEL: PENDING_CANCELLABLE,
}


def is_department_owner(roles: RoleResolver, request: BorrowRequestRecord) -> bool:
    return any(roles.owns_department(department_id) for department_id in request.department_ids)


def is_capable(
    action: WorkflowAction, roles: RoleResolver, request: BorrowRequestRecord, actor_id: Optional[str]
) -> bool:
    """Role/ownership check only, independent of the request's status."""
    is_borrower = actor_id is not None and actor_id == request.borrower_id
    if action in (WorkflowAction.EDIT_ITEMS, WorkflowAction.SUBMIT):
        return is_borrower
    if action == WorkflowAction.CANCEL:
        return is_borrower or roles.is_admin()
    if action in (
        WorkflowAction.OWNER_APPROVE, WorkflowAction.OWNER_REJECT,
        WorkflowAction.START_LOAN, WorkflowAction.COMPLETE_LOAN,
    ):
        return roles.is_admin() or is_department_owner(roles, request)
    if action in (WorkflowAction.HEADMASTER_APPROVE, WorkflowAction.HEADMASTER_REJECT):
        return roles.is_admin() or roles.is_headmaster()
    return False


def state_allows(action: WorkflowAction, request: BorrowRequestRecord) -> bool:
    return request.status in ALLOWED_FROM[action]


def visible_actions(
    roles: RoleResolver, request: BorrowRequestRecord, actor_id: Optional[str]
) -> FrozenSet[WorkflowAction]:
    return frozenset(
        action for action in WorkflowAction
        if is_capable(action, roles, request, actor_id) and state_allows(action, request)
    )


def can_view(roles: RoleResolver, request: BorrowRequestRecord, actor_id: Optional[str]) -> bool:
    if actor_id is not None and actor_id == request.borrower_id:
        return True
    return roles.is_admin() or roles.is_headmaster() or is_department_owner(roles, request)
