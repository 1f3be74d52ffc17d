# app/core/gateway.py
"""
Persistence gateway used by the loan workflow core.

The core only sees plain pydantic records (``*Record``) and the narrow set of
reads/writes below. ``BeanieGateway`` is the MongoDB implementation; status and
stock writes are compare-and-set so a lost race never overwrites newer data.
"""
import abc
import functools
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from beanie.exceptions import CollectionWasNotInitialized
from bson import ObjectId
from pydantic import BaseModel
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.core.exceptions import ConcurrentModification, GatewayError, ValidationError
from app.core.utils import get_next_sequence_value, utcnow
from app.models.borrow_request import BorrowRequest, BorrowRequestBase, BorrowRequestRecord
from app.models.category import Category, CategoryBase, CategoryRecord
from app.models.department import Department, DepartmentBase, DepartmentRecord
from app.models.enum import ItemStatus, RequestStatus
from app.models.item import InventoryItem, InventoryItemBase, InventoryItemRecord
from app.models.profile import Profile, ProfileBase, ProfileRecord
from app.models.role import RoleAssignmentBase, RoleAssignmentRecord, UserRoleAssignment

logger = logging.getLogger(__name__)

# Field peninjau: disetujui pemilik, disetujui Kepala Sekolah, atau ditolak
REVIEWER_FIELDS = ("owner_reviewed_by", "headmaster_approved_by", "rejected_by")
REQUEST_SORT_FIELDS = ("updated_at", "started_at")


class UnitOfWork(abc.ABC):
    """Writes that must land together (status + stock). ``transactional`` tells the
    engine whether a failure rolls everything back or needs compensation."""

    transactional: bool = False

    @abc.abstractmethod
    async def update_request(
        self, request_id: str, expected_status: RequestStatus, changes: Dict[str, Any]
    ) -> Optional[BorrowRequestRecord]:
        ...

    @abc.abstractmethod
    async def set_item_availability(
        self, item_id: str, expected_available: int, new_available: int, new_status: ItemStatus
    ) -> None:
        ...


class PersistenceGateway(abc.ABC):

    # --- Borrow requests ---
    @abc.abstractmethod
    async def get_request(self, request_id: str) -> Optional[BorrowRequestRecord]: ...

    @abc.abstractmethod
    async def list_requests(
        self,
        *,
        borrower_id: Optional[str] = None,
        reviewer_id: Optional[str] = None,
        statuses: Optional[Iterable[RequestStatus]] = None,
        department_ids: Optional[Iterable[str]] = None,
        order_by: str = "updated_at",
        skip: int = 0,
        limit: int = 50,
    ) -> List[BorrowRequestRecord]:
        """Filtered list, newest ``order_by`` (``updated_at`` or ``started_at``) first.

        ``reviewer_id`` matches requests the user approved as owner or headmaster,
        or rejected.
        """

    @abc.abstractmethod
    async def insert_request(self, request: BorrowRequestBase) -> BorrowRequestRecord: ...

    @abc.abstractmethod
    async def update_request(
        self, request_id: str, expected_status: RequestStatus, changes: Dict[str, Any]
    ) -> Optional[BorrowRequestRecord]:
        """Applies ``changes`` only if the stored status still equals ``expected_status``.
        Returns None when nothing matched."""

    # --- Inventory ---
    @abc.abstractmethod
    async def get_item(self, item_id: str) -> Optional[InventoryItemRecord]: ...

    @abc.abstractmethod
    async def get_items(self, item_ids: Iterable[str]) -> Dict[str, InventoryItemRecord]: ...

    @abc.abstractmethod
    async def insert_item(self, item: InventoryItemBase) -> InventoryItemRecord: ...

    @abc.abstractmethod
    async def update_item(
        self, item_id: str, changes: Dict[str, Any], expected_available: Optional[int] = None
    ) -> Optional[InventoryItemRecord]: ...

    @abc.abstractmethod
    async def set_item_availability(
        self, item_id: str, expected_available: int, new_available: int, new_status: ItemStatus
    ) -> None:
        """Compare-and-set on available_quantity; raises ConcurrentModification on a miss."""

    # --- Identity & roles ---
    @abc.abstractmethod
    async def get_profile(self, user_id: str) -> Optional[ProfileRecord]: ...

    @abc.abstractmethod
    async def get_profile_by_username(self, username: str) -> Optional[ProfileRecord]: ...

    @abc.abstractmethod
    async def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, ProfileRecord]: ...

    @abc.abstractmethod
    async def insert_profile(self, profile: ProfileBase) -> ProfileRecord: ...

    @abc.abstractmethod
    async def get_role_assignments(self, user_id: str) -> List[RoleAssignmentRecord]: ...

    @abc.abstractmethod
    async def add_role_assignment(self, assignment: RoleAssignmentBase) -> RoleAssignmentRecord: ...

    @abc.abstractmethod
    async def remove_role_assignment(self, user_id: str, assignment_id: str) -> bool: ...

    # --- Reference data ---
    @abc.abstractmethod
    async def list_departments(self) -> List[DepartmentRecord]: ...

    @abc.abstractmethod
    async def get_department(self, department_id: str) -> Optional[DepartmentRecord]: ...

    @abc.abstractmethod
    async def insert_department(self, department: DepartmentBase) -> DepartmentRecord: ...

    @abc.abstractmethod
    async def list_categories(self) -> List[CategoryRecord]: ...

    @abc.abstractmethod
    async def get_category(self, category_id: str) -> Optional[CategoryRecord]: ...

    @abc.abstractmethod
    async def insert_category(self, category: CategoryBase) -> CategoryRecord: ...

    @abc.abstractmethod
    async def next_sequence_value(self, sequence_name: str) -> int: ...

    @abc.abstractmethod
    def unit_of_work(self) -> "AsyncIterator[UnitOfWork]":
        """Async context manager yielding a UnitOfWork."""


# --- Helper konversi dokumen Mongo <-> record ---

def _oid(value: Optional[str]) -> Optional[ObjectId]:
    if value and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def _from_raw(record_cls, raw: Dict[str, Any]):
    data = dict(raw)
    data["id"] = str(data.pop("_id"))
    data.pop("revision_id", None)
    return record_cls.model_validate(data)


def _from_document(record_cls, doc) -> Any:
    data = doc.model_dump(exclude={"id", "revision_id"})
    data["id"] = str(doc.id)
    return record_cls.model_validate(data)


def _encode_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="python")
    if isinstance(value, (list, tuple)):
        return [_encode_value(v) for v in value]
    return value


def _encode(changes: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _encode_value(value) for key, value in changes.items()}


def _guarded(operation: str):
    """Bungkus error PyMongo/Beanie menjadi GatewayError."""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except DuplicateKeyError as e:
                logger.warning(f"Duplicate key during {operation}: {e}")
                raise ValidationError(f"Duplicate value during {operation}.") from e
            except (PyMongoError, CollectionWasNotInitialized) as e:
                logger.error(f"Persistence failure during {operation}: {e}")
                raise GatewayError(f"{operation} failed: {e}", operation=operation) from e
        return wrapper
    return decorator


class MongoUnitOfWork(UnitOfWork):
    def __init__(self, gateway: "BeanieGateway", session=None):
        self._gateway = gateway
        self.session = session
        self.transactional = session is not None

    async def update_request(self, request_id, expected_status, changes):
        return await self._gateway.update_request(request_id, expected_status, changes, session=self.session)

    async def set_item_availability(self, item_id, expected_available, new_available, new_status):
        await self._gateway.set_item_availability(
            item_id, expected_available, new_available, new_status, session=self.session
        )


class BeanieGateway(PersistenceGateway):
    """MongoDB via Beanie documents and their Motor collections."""

    def __init__(self, use_transactions: bool = False):
        self.use_transactions = use_transactions

    # --- Borrow requests ---
    @_guarded("get_request")
    async def get_request(self, request_id):
        oid = _oid(request_id)
        if oid is None:
            return None
        raw = await BorrowRequest.get_motor_collection().find_one({"_id": oid})
        return _from_raw(BorrowRequestRecord, raw) if raw else None

    @_guarded("list_requests")
    async def list_requests(
        self, *, borrower_id=None, reviewer_id=None, statuses=None, department_ids=None,
        order_by="updated_at", skip=0, limit=50,
    ):
        if order_by not in REQUEST_SORT_FIELDS:
            raise ValueError(f"Cannot order borrow requests by {order_by!r}")
        query: Dict[str, Any] = {}
        if borrower_id:
            query["borrower_id"] = borrower_id
        if reviewer_id:
            query["$or"] = [{field: reviewer_id} for field in REVIEWER_FIELDS]
        if statuses is not None:
            query["status"] = {"$in": [RequestStatus(s).value for s in statuses]}
        if department_ids is not None:
            query["department_ids"] = {"$in": list(department_ids)}
        cursor = (
            BorrowRequest.get_motor_collection()
            .find(query)
            .sort([(order_by, DESCENDING)])
            .skip(skip)
            .limit(limit)
        )
        return [_from_raw(BorrowRequestRecord, raw) async for raw in cursor]

    @_guarded("insert_request")
    async def insert_request(self, request):
        doc = BorrowRequest(**request.model_dump())
        await doc.insert()
        return _from_document(BorrowRequestRecord, doc)

    @_guarded("update_request")
    async def update_request(self, request_id, expected_status, changes, session=None):
        oid = _oid(request_id)
        if oid is None:
            return None
        payload = _encode({**changes, "updated_at": changes.get("updated_at") or utcnow()})
        raw = await BorrowRequest.get_motor_collection().find_one_and_update(
            {"_id": oid, "status": RequestStatus(expected_status).value},
            {"$set": payload},
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        return _from_raw(BorrowRequestRecord, raw) if raw else None

    # --- Inventory ---
    @_guarded("get_item")
    async def get_item(self, item_id):
        oid = _oid(item_id)
        if oid is None:
            return None
        raw = await InventoryItem.get_motor_collection().find_one({"_id": oid})
        return _from_raw(InventoryItemRecord, raw) if raw else None

    @_guarded("get_items")
    async def get_items(self, item_ids):
        oids = [oid for oid in (_oid(i) for i in item_ids) if oid is not None]
        if not oids:
            return {}
        cursor = InventoryItem.get_motor_collection().find({"_id": {"$in": oids}})
        records = [_from_raw(InventoryItemRecord, raw) async for raw in cursor]
        return {record.id: record for record in records}

    @_guarded("insert_item")
    async def insert_item(self, item):
        doc = InventoryItem(**item.model_dump())
        await doc.insert()
        return _from_document(InventoryItemRecord, doc)

    @_guarded("update_item")
    async def update_item(self, item_id, changes, expected_available=None):
        oid = _oid(item_id)
        if oid is None:
            return None
        query: Dict[str, Any] = {"_id": oid}
        if expected_available is not None:
            query["available_quantity"] = expected_available
        raw = await InventoryItem.get_motor_collection().find_one_and_update(
            query,
            {"$set": _encode({**changes, "updated_at": utcnow()})},
            return_document=ReturnDocument.AFTER,
        )
        return _from_raw(InventoryItemRecord, raw) if raw else None

    @_guarded("set_item_availability")
    async def set_item_availability(self, item_id, expected_available, new_available, new_status, session=None):
        result = await InventoryItem.get_motor_collection().update_one(
            {"_id": _oid(item_id), "available_quantity": expected_available},
            {"$set": {
                "available_quantity": new_available,
                "status": ItemStatus(new_status).value,
                "updated_at": utcnow(),
            }},
            session=session,
        )
        if result.matched_count == 0:
            raise ConcurrentModification(
                f"Item {item_id} no longer has available_quantity={expected_available}.",
                operation="set_item_availability",
            )
        logger.debug(f"Item {item_id} available_quantity {expected_available} -> {new_available} ({new_status}).")

    # --- Identity & roles ---
    @_guarded("get_profile")
    async def get_profile(self, user_id):
        oid = _oid(user_id)
        if oid is None:
            return None
        raw = await Profile.get_motor_collection().find_one({"_id": oid})
        return _from_raw(ProfileRecord, raw) if raw else None

    @_guarded("get_profile_by_username")
    async def get_profile_by_username(self, username):
        raw = await Profile.get_motor_collection().find_one({"username": username})
        return _from_raw(ProfileRecord, raw) if raw else None

    @_guarded("get_profiles")
    async def get_profiles(self, user_ids):
        oids = [oid for oid in (_oid(i) for i in user_ids) if oid is not None]
        if not oids:
            return {}
        cursor = Profile.get_motor_collection().find({"_id": {"$in": oids}})
        records = [_from_raw(ProfileRecord, raw) async for raw in cursor]
        return {record.id: record for record in records}

    @_guarded("insert_profile")
    async def insert_profile(self, profile):
        doc = Profile(**profile.model_dump())
        await doc.insert()
        return _from_document(ProfileRecord, doc)

    @_guarded("get_role_assignments")
    async def get_role_assignments(self, user_id):
        cursor = UserRoleAssignment.get_motor_collection().find({"user_id": user_id})
        return [_from_raw(RoleAssignmentRecord, raw) async for raw in cursor]

    @_guarded("add_role_assignment")
    async def add_role_assignment(self, assignment):
        doc = UserRoleAssignment(**assignment.model_dump())
        await doc.insert()
        return _from_document(RoleAssignmentRecord, doc)

    @_guarded("remove_role_assignment")
    async def remove_role_assignment(self, user_id, assignment_id):
        oid = _oid(assignment_id)
        if oid is None:
            return False
        result = await UserRoleAssignment.get_motor_collection().delete_one({"_id": oid, "user_id": user_id})
        return result.deleted_count == 1

    # --- Reference data ---
    @_guarded("list_departments")
    async def list_departments(self):
        cursor = Department.get_motor_collection().find({}).sort([("name", 1)])
        return [_from_raw(DepartmentRecord, raw) async for raw in cursor]

    @_guarded("get_department")
    async def get_department(self, department_id):
        oid = _oid(department_id)
        if oid is None:
            return None
        raw = await Department.get_motor_collection().find_one({"_id": oid})
        return _from_raw(DepartmentRecord, raw) if raw else None

    @_guarded("insert_department")
    async def insert_department(self, department):
        doc = Department(**department.model_dump())
        await doc.insert()
        return _from_document(DepartmentRecord, doc)

    @_guarded("list_categories")
    async def list_categories(self):
        cursor = Category.get_motor_collection().find({}).sort([("name", 1)])
        return [_from_raw(CategoryRecord, raw) async for raw in cursor]

    @_guarded("get_category")
    async def get_category(self, category_id):
        oid = _oid(category_id)
        if oid is None:
            return None
        raw = await Category.get_motor_collection().find_one({"_id": oid})
        return _from_raw(CategoryRecord, raw) if raw else None

    @_guarded("insert_category")
    async def insert_category(self, category):
        doc = Category(**category.model_dump())
        await doc.insert()
        return _from_document(CategoryRecord, doc)

    @_guarded("next_sequence_value")
    async def next_sequence_value(self, sequence_name):
        return await get_next_sequence_value(sequence_name)

    @asynccontextmanager
    async def unit_of_work(self):
        if not self.use_transactions:
            yield MongoUnitOfWork(self)
            return
        client = BorrowRequest.get_motor_collection().database.client
        try:
            async with await client.start_session() as session:
                async with session.start_transaction():
                    yield MongoUnitOfWork(self, session=session)
        except PyMongoError as e:
            # Termasuk kegagalan commit; seluruh transaksi sudah dibatalkan oleh Mongo
            logger.error(f"Transaction aborted: {e}")
            raise GatewayError(f"Transaction failed: {e}", operation="unit_of_work") from e
