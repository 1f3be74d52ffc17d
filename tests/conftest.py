# tests/conftest.py
import asyncio
import itertools
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

# Konfigurasi wajib harus ada sebelum modul app diimpor
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("MONGODB_URL", "mongodb://localhost:27017/school_loans_test")
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest

from app.core.gateway import REQUEST_SORT_FIELDS, REVIEWER_FIELDS, PersistenceGateway, UnitOfWork
from app.core.exceptions import ConcurrentModification
from app.core.letters import LetterNumberIssuer
from app.core.roles import RoleSessionCache
from app.core.workflow import LoanWorkflowEngine
from app.models.borrow_request import BorrowRequest, BorrowRequestRecord, RequestLineItem
from app.models.category import CategoryRecord
from app.models.department import DepartmentBase, DepartmentRecord
from app.models.enum import AppRole, ItemStatus, RequestStatus, ReviewDecision
from app.models.item import InventoryItemBase, InventoryItemRecord
from app.models.profile import ProfileBase, ProfileRecord
from app.models.role import RoleAssignmentBase, RoleAssignmentRecord

FIXED_NOW = datetime(2025, 3, 10, 2, 30, tzinfo=timezone.utc)


def run(coro):
    return asyncio.run(coro)


@dataclass
class _Fault:
    operation: str
    error: Exception
    skip: int
    times: int


class InMemoryUnitOfWork(UnitOfWork):
    def __init__(self, gateway: "InMemoryGateway", transactional: bool):
        self._gateway = gateway
        self.transactional = transactional

    async def update_request(self, request_id, expected_status, changes):
        return await self._gateway.update_request(request_id, expected_status, changes)

    async def set_item_availability(self, item_id, expected_available, new_available, new_status):
        await self._gateway.set_item_availability(item_id, expected_available, new_available, new_status)


class InMemoryGateway(PersistenceGateway):
    """Test double with the same compare-and-set semantics as BeanieGateway.

    ``inject_fault(op, error, skip=n)`` makes the (n+1)-th call of ``op`` raise.
    With ``transactional=True`` a failed unit of work restores requests and items.
    """

    def __init__(self, transactional: bool = False):
        self.transactional = transactional
        self.requests: Dict[str, BorrowRequestRecord] = {}
        self.items: Dict[str, InventoryItemRecord] = {}
        self.profiles: Dict[str, ProfileRecord] = {}
        self.roles: Dict[str, RoleAssignmentRecord] = {}
        self.departments: Dict[str, DepartmentRecord] = {}
        self.categories: Dict[str, CategoryRecord] = {}
        self.counters: Dict[str, int] = {}
        self.calls: Dict[str, int] = {}
        self._faults: List[_Fault] = []
        self._ids = itertools.count(1)

    # --- fault injection ---
    def inject_fault(self, operation: str, error: Exception, skip: int = 0, times: int = 1) -> None:
        self._faults.append(_Fault(operation, error, skip, times))

    def _enter(self, operation: str) -> None:
        self.calls[operation] = self.calls.get(operation, 0) + 1
        for fault in list(self._faults):
            if fault.operation != operation:
                continue
            if fault.skip > 0:
                fault.skip -= 1
                return
            fault.times -= 1
            if fault.times <= 0:
                self._faults.remove(fault)
            raise fault.error

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    # --- Borrow requests ---
    async def get_request(self, request_id):
        self._enter("get_request")
        record = self.requests.get(request_id)
        return record.model_copy(deep=True) if record else None

    async def list_requests(
        self, *, borrower_id=None, reviewer_id=None, statuses=None, department_ids=None,
        order_by="updated_at", skip=0, limit=50,
    ):
        self._enter("list_requests")
        if order_by not in REQUEST_SORT_FIELDS:
            raise ValueError(f"Cannot order borrow requests by {order_by!r}")
        wanted_status = {RequestStatus(s) for s in statuses} if statuses is not None else None
        wanted_departments = set(department_ids) if department_ids is not None else None
        found = [
            r for r in self.requests.values()
            if (borrower_id is None or r.borrower_id == borrower_id)
            and (reviewer_id is None or any(getattr(r, field) == reviewer_id for field in REVIEWER_FIELDS))
            and (wanted_status is None or r.status in wanted_status)
            and (wanted_departments is None or wanted_departments.intersection(r.department_ids))
        ]
        found.sort(key=lambda r: getattr(r, order_by) or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        return [r.model_copy(deep=True) for r in found[skip:skip + limit]]

    async def insert_request(self, request):
        self._enter("insert_request")
        record = BorrowRequestRecord(id=self._new_id("req"), **request.model_dump())
        self.requests[record.id] = record
        return record.model_copy(deep=True)

    async def update_request(self, request_id, expected_status, changes):
        self._enter("update_request")
        current = self.requests.get(request_id)
        if current is None or current.status != RequestStatus(expected_status):
            return None
        data = {**current.model_dump(), **changes}
        data.setdefault("updated_at", datetime.now(timezone.utc))
        updated = BorrowRequestRecord.model_validate(data)
        self.requests[request_id] = updated
        return updated.model_copy(deep=True)

    # --- Inventory ---
    async def get_item(self, item_id):
        self._enter("get_item")
        record = self.items.get(item_id)
        return record.model_copy(deep=True) if record else None

    async def get_items(self, item_ids):
        self._enter("get_items")
        return {i: self.items[i].model_copy(deep=True) for i in item_ids if i in self.items}

    async def insert_item(self, item):
        self._enter("insert_item")
        record = InventoryItemRecord(id=self._new_id("item"), **item.model_dump())
        self.items[record.id] = record
        return record.model_copy(deep=True)

    async def update_item(self, item_id, changes, expected_available=None):
        self._enter("update_item")
        current = self.items.get(item_id)
        if current is None:
            return None
        if expected_available is not None and current.available_quantity != expected_available:
            return None
        updated = InventoryItemRecord.model_validate({**current.model_dump(), **changes})
        self.items[item_id] = updated
        return updated.model_copy(deep=True)

    async def set_item_availability(self, item_id, expected_available, new_available, new_status):
        self._enter("set_item_availability")
        current = self.items.get(item_id)
        if current is None or current.available_quantity != expected_available:
            raise ConcurrentModification(
                f"Item {item_id} no longer has available_quantity={expected_available}.",
                operation="set_item_availability",
            )
        self.items[item_id] = current.model_copy(
            update={"available_quantity": new_available, "status": ItemStatus(new_status)}
        )

    # --- Identity & roles ---
    async def get_profile(self, user_id):
        self._enter("get_profile")
        return self.profiles.get(user_id)

    async def get_profile_by_username(self, username):
        self._enter("get_profile_by_username")
        return next((p for p in self.profiles.values() if p.username == username), None)

    async def get_profiles(self, user_ids):
        self._enter("get_profiles")
        return {i: self.profiles[i] for i in user_ids if i in self.profiles}

    async def insert_profile(self, profile):
        self._enter("insert_profile")
        record = ProfileRecord(id=self._new_id("user"), **profile.model_dump())
        self.profiles[record.id] = record
        return record

    async def get_role_assignments(self, user_id):
        self._enter("get_role_assignments")
        return [r for r in self.roles.values() if r.user_id == user_id]

    async def add_role_assignment(self, assignment):
        self._enter("add_role_assignment")
        record = RoleAssignmentRecord(id=self._new_id("role"), **assignment.model_dump())
        self.roles[record.id] = record
        return record

    async def remove_role_assignment(self, user_id, assignment_id):
        self._enter("remove_role_assignment")
        record = self.roles.get(assignment_id)
        if record is None or record.user_id != user_id:
            return False
        del self.roles[assignment_id]
        return True

    # --- Reference data ---
    async def list_departments(self):
        self._enter("list_departments")
        return sorted(self.departments.values(), key=lambda d: d.name)

    async def get_department(self, department_id):
        self._enter("get_department")
        return self.departments.get(department_id)

    async def insert_department(self, department):
        self._enter("insert_department")
        record = DepartmentRecord(id=self._new_id("dept"), **department.model_dump())
        self.departments[record.id] = record
        return record

    async def list_categories(self):
        self._enter("list_categories")
        return sorted(self.categories.values(), key=lambda c: c.name)

    async def get_category(self, category_id):
        self._enter("get_category")
        return self.categories.get(category_id)

    async def insert_category(self, category):
        self._enter("insert_category")
        record = CategoryRecord(id=self._new_id("cat"), **category.model_dump())
        self.categories[record.id] = record
        return record

    async def next_sequence_value(self, sequence_name):
        self._enter("next_sequence_value")
        self.counters[sequence_name] = self.counters.get(sequence_name, 0) + 1
        return self.counters[sequence_name]

    @asynccontextmanager
    async def unit_of_work(self):
        requests_before = dict(self.requests)
        items_before = dict(self.items)
        try:
            yield InMemoryUnitOfWork(self, self.transactional)
        except Exception:
            if self.transactional:
                self.requests = requests_before
                self.items = items_before
            raise


@dataclass
class World:
    """Ids of the seeded school: two departments, six users, three items."""
    lab: str
    sport: str
    borrower: str
    other_borrower: str
    lab_owner: str
    sport_owner: str
    headmaster: str
    admin: str
    microscope: str   # LAB, qty 5
    projector: str    # LAB, qty 1
    camera: str       # SPORT, qty 2, butuh Kepala Sekolah


async def seed(gateway: InMemoryGateway) -> World:
    lab = await gateway.insert_department(DepartmentBase(name="Laboratorium IPA", code="LAB"))
    sport = await gateway.insert_department(DepartmentBase(name="Olahraga", code="OLR"))

    async def user(username: str, *roles: tuple) -> str:
        profile = await gateway.insert_profile(ProfileBase(
            username=username, full_name=username.replace("_", " ").title(), unit="X-1", hashed_password="not-used",
        ))
        for role, department in roles:
            await gateway.add_role_assignment(RoleAssignmentBase(user_id=profile.id, role=role, department=department))
        return profile.id

    async def item(name: str, department: DepartmentRecord, quantity: int, headmaster: bool = False) -> str:
        record = await gateway.insert_item(InventoryItemBase(
            name=name, department_id=department.id, quantity=quantity, available_quantity=quantity,
            requires_headmaster_approval=headmaster,
        ))
        return record.id

    return World(
        lab=lab.id,
        sport=sport.id,
        borrower=await user("siswa_satu", (AppRole.BORROWER, None)),
        other_borrower=await user("siswa_dua", (AppRole.BORROWER, None)),
        lab_owner=await user("pemilik_lab", (AppRole.OWNER, "Laboratorium IPA")),
        sport_owner=await user("pemilik_olahraga", (AppRole.OWNER, "Olahraga")),
        headmaster=await user("kepala_sekolah", (AppRole.HEADMASTER, None)),
        admin=await user("admin_sekolah", (AppRole.ADMIN, None)),
        microscope=await item("Mikroskop", lab, 5),
        projector=await item("Proyektor", lab, 1),
        camera=await item("Kamera DSLR", sport, 2, headmaster=True),
    )


def draft_payload(*lines: tuple, **overrides: Any) -> BorrowRequest.Create:
    data: Dict[str, Any] = {
        "purpose": "Praktikum biologi kelas X",
        "location_usage": "Ruang Lab 1",
        "start_date": FIXED_NOW + timedelta(days=1),
        "end_date": FIXED_NOW + timedelta(days=2),
        "pic_name": "Bu Rina",
        "pic_contact": "0812000111",
        "line_items": [RequestLineItem(item_id=item_id, quantity=quantity) for item_id, quantity in lines],
    }
    data.update(overrides)
    return BorrowRequest.Create(**data)


@pytest.fixture
def gateway() -> InMemoryGateway:
    return InMemoryGateway()


@pytest.fixture
def world(gateway) -> World:
    return run(seed(gateway))


@pytest.fixture
def role_sessions(gateway) -> RoleSessionCache:
    return RoleSessionCache(gateway)


@pytest.fixture
def engine(gateway, role_sessions) -> LoanWorkflowEngine:
    return LoanWorkflowEngine(
        gateway,
        role_sessions,
        letters=LetterNumberIssuer(gateway, "Asia/Jakarta", "UMUM"),
        clock=lambda: FIXED_NOW,
    )


def approved_request(engine: LoanWorkflowEngine, world: World, *lines: tuple, **overrides: Any) -> BorrowRequestRecord:
    """Draft -> submit -> owner approve (LAB items, tanpa Kepala Sekolah)."""
    async def flow() -> BorrowRequestRecord:
        draft = await engine.create_draft(world.borrower, draft_payload(*lines, **overrides))
        await engine.submit(draft.id, world.borrower)
        return await engine.review_by_owner(draft.id, world.lab_owner, ReviewDecision.APPROVE)

    return run(flow())


def snapshot(gateway: InMemoryGateway) -> Dict[str, Optional[Any]]:
    return {
        "requests": {k: v.model_dump() for k, v in gateway.requests.items()},
        "items": {k: v.model_dump() for k, v in gateway.items.items()},
    }
