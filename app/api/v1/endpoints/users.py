# app/api/v1/endpoints/users.py
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status, Path, Body, Request
from loguru import logger

from app.api.deps import get_gateway, get_role_sessions
from app.api.v1.endpoints.auth import profile_response
from app.core.gateway import PersistenceGateway
from app.core.rate_limiter import limiter
from app.core.roles import RoleSessionCache
from app.core.security import require_admin
from app.models.enum import AppRole
from app.models.profile import Profile, ProfileRecord
from app.models.role import RoleAssignmentBase, RoleAssignmentRecord, UserRoleAssignment

router = APIRouter(
    tags=["Users - Admin"],
    dependencies=[Depends(require_admin)]
)


async def get_profile_or_404(user_id: str, gateway: PersistenceGateway) -> ProfileRecord:
    profile = await gateway.get_profile(user_id)
    if not profile:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"User with ID '{user_id}' not found")
    return profile


@router.get("/{user_id}", response_model=Profile.Response)
async def read_user(
    user_id: str = Path(...),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return profile_response(await get_profile_or_404(user_id, gateway))


@router.get("/{user_id}/roles", response_model=List[RoleAssignmentRecord])
async def read_user_roles(
    user_id: str = Path(...),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    await get_profile_or_404(user_id, gateway)
    return await gateway.get_role_assignments(user_id)


@router.post("/{user_id}/roles", response_model=RoleAssignmentRecord, status_code=status.HTTP_201_CREATED)
@limiter.limit("60/hour")
async def add_user_role(
    request: Request,
    user_id: str = Path(...),
    role_in: UserRoleAssignment.Create = Body(...),
    gateway: PersistenceGateway = Depends(get_gateway),
    role_sessions: RoleSessionCache = Depends(get_role_sessions),
    current_user: ProfileRecord = Depends(require_admin),
):
    await get_profile_or_404(user_id, gateway)

    department = role_in.department
    if role_in.role == AppRole.OWNER:
        if not department:
            raise HTTPException(status_code=400, detail="Owner role requires a department.")
        known = {d.name for d in await gateway.list_departments()}
        if department not in known:
            raise HTTPException(status_code=404, detail=f"Department '{department}' not found")
    else:
        department = None

    existing = await gateway.get_role_assignments(user_id)
    if any(a.role == role_in.role and a.department == department for a in existing):
        raise HTTPException(status_code=400, detail="User already has this role.")

    assignment = await gateway.add_role_assignment(
        RoleAssignmentBase(user_id=user_id, role=role_in.role, department=department)
    )
    # Peran berubah: snapshot di cache tidak berlaku lagi
    role_sessions.invalidate(user_id)
    logger.info(f"Admin '{current_user.username}' granted {role_in.role.value} ({department}) to user {user_id}")
    return assignment


@router.delete("/{user_id}/roles/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_user_role(
    user_id: str = Path(...),
    assignment_id: str = Path(...),
    gateway: PersistenceGateway = Depends(get_gateway),
    role_sessions: RoleSessionCache = Depends(get_role_sessions),
    current_user: ProfileRecord = Depends(require_admin),
):
    if not await gateway.remove_role_assignment(user_id, assignment_id):
        raise HTTPException(status_code=404, detail=f"Role assignment '{assignment_id}' not found for user {user_id}")
    role_sessions.invalidate(user_id)
    logger.info(f"Admin '{current_user.username}' removed role assignment {assignment_id} from user {user_id}")
