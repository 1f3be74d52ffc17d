# app/core/roles.py
import asyncio
import logging
import weakref
from typing import Dict, Iterable, List, Optional

from app.core.gateway import PersistenceGateway
from app.models.department import DepartmentRecord
from app.models.enum import AppRole
from app.models.role import RoleAssignmentRecord

logger = logging.getLogger(__name__)

ROLE_LABELS: Dict[AppRole, str] = {
    AppRole.BORROWER: "Peminjam",
    AppRole.OWNER: "Pemilik Alat",
    AppRole.HEADMASTER: "Kepala Sekolah",
    AppRole.ADMIN: "Administrator",
}


class RoleResolver:
    """
    Read-only snapshot of one user's role assignments.

    Roles are not mutually exclusive. A user without any assignment simply gets
    False from every predicate.
    """

    def __init__(
        self,
        user_id: Optional[str],
        assignments: Iterable[RoleAssignmentRecord] = (),
        departments: Iterable[DepartmentRecord] = (),
    ):
        self.user_id = user_id
        self.assignments: List[RoleAssignmentRecord] = list(assignments)
        self._departments = list(departments)

    @property
    def roles(self) -> List[AppRole]:
        seen: List[AppRole] = []
        for assignment in self.assignments:
            if assignment.role not in seen:
                seen.append(assignment.role)
        return seen

    def has_role(self, role: AppRole) -> bool:
        return any(a.role == role for a in self.assignments)

    def is_owner(self) -> bool:
        return self.has_role(AppRole.OWNER)

    def is_admin(self) -> bool:
        return self.has_role(AppRole.ADMIN)

    def is_headmaster(self) -> bool:
        return self.has_role(AppRole.HEADMASTER)

    def is_borrower(self) -> bool:
        return self.has_role(AppRole.BORROWER)

    def get_user_department(self) -> Optional[str]:
        """Department name attached to the user's (first) owner assignment."""
        for assignment in self.assignments:
            if assignment.role == AppRole.OWNER and assignment.department:
                return assignment.department
        return None

    def get_user_department_id(self) -> Optional[str]:
        name = self.get_user_department()
        if not name:
            return None
        department = self._find_department(name)
        return department.id if department else None

    def owned_department_ids(self) -> List[str]:
        """Every department id the user owns (an owner may hold several assignments)."""
        ids: List[str] = []
        for assignment in self.assignments:
            if assignment.role != AppRole.OWNER or not assignment.department:
                continue
            department = self._find_department(assignment.department)
            if department and department.id not in ids:
                ids.append(department.id)
        return ids

    def owns_department(self, department_id: str) -> bool:
        return department_id in self.owned_department_ids()

    def can_manage_inventory(self) -> bool:
        return self.is_admin() or self.is_owner()

    def can_approve_requests(self) -> bool:
        return self.is_admin() or self.is_owner() or self.is_headmaster()

    def role_labels(self) -> List[str]:
        return [ROLE_LABELS.get(role, role.value) for role in self.roles]

    def _find_department(self, name_or_id: str) -> Optional[DepartmentRecord]:
        for department in self._departments:
            if department.name == name_or_id or department.id == name_or_id:
                return department
        return None


class RoleSessionCache:
    """
    Process-wide role state keyed by user id.

    Lifecycle: ``start_session`` on login (fresh fetch), ``resolve`` for every
    authorisation check (fetch once, then cached), ``invalidate`` when an admin
    changes the user's roles, ``end_session`` on logout. A failed fetch raises
    GatewayError and leaves nothing cached.
    """

    def __init__(self, gateway: PersistenceGateway):
        self.gateway = gateway
        self._sessions: Dict[str, RoleResolver] = {}
        # Kunci hanya hidup selama ada pemanggil yang menunggu muatan peran
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    async def start_session(self, user_id: str) -> RoleResolver:
        self._sessions.pop(user_id, None)
        resolver = await self.resolve(user_id)
        logger.info(f"Role session started for user {user_id}: {[r.value for r in resolver.roles]}")
        return resolver

    async def resolve(self, user_id: Optional[str]) -> RoleResolver:
        if not user_id:
            return RoleResolver(None)
        cached = self._sessions.get(user_id)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(user_id, asyncio.Lock())
        async with lock:
            cached = self._sessions.get(user_id)
            if cached is not None:
                return cached
            resolver = await self._load(user_id)
            self._sessions[user_id] = resolver
            return resolver

    def invalidate(self, user_id: str) -> None:
        if self._sessions.pop(user_id, None) is not None:
            logger.debug(f"Role cache invalidated for user {user_id}")

    def end_session(self, user_id: str) -> None:
        self._sessions.pop(user_id, None)
        self._locks.pop(user_id, None)
        logger.info(f"Role session ended for user {user_id}")

    def clear(self) -> None:
        self._sessions.clear()
        self._locks.clear()

    async def _load(self, user_id: str) -> RoleResolver:
        assignments = await self.gateway.get_role_assignments(user_id)
        departments: List[DepartmentRecord] = []
        if any(a.role == AppRole.OWNER and a.department for a in assignments):
            departments = await self.gateway.list_departments()
        logger.debug(f"Loaded {len(assignments)} role assignment(s) for user {user_id}")
        return RoleResolver(user_id, assignments, departments)
