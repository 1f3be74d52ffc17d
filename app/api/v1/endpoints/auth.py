# app/api/v1/endpoints/auth.py
from datetime import timedelta
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from loguru import logger
from pydantic import BaseModel

from app.api.deps import get_gateway, get_role_sessions
from app.core.config import ACCESS_TOKEN_EXPIRE_MINUTES
from app.core.gateway import PersistenceGateway
from app.core.rate_limiter import limiter
from app.core.roles import RoleResolver, RoleSessionCache
from app.core.security import (
    create_access_token,
    verify_password,
    get_current_active_user,
    get_current_roles,
    get_password_hash,
)
from app.models.enum import AppRole
from app.models.profile import Profile, ProfileBase, ProfileRecord
from app.models.role import RoleAssignmentBase

router = APIRouter(tags=["Authentication"])


class Token(BaseModel):
    access_token: str
    token_type: str


def profile_response(profile: ProfileRecord) -> Profile.Response:
    return Profile.Response.model_validate(profile.model_dump(exclude={"hashed_password"}))


@router.post("/token", response_model=Token)
@limiter.limit("20/minute")
async def login_for_access_token(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    gateway: PersistenceGateway = Depends(get_gateway),
    role_sessions: RoleSessionCache = Depends(get_role_sessions),
):
    profile = await gateway.get_profile_by_username(form_data.username)
    if not profile or not verify_password(form_data.password, profile.hashed_password):
        logger.warning(f"Failed login for '{form_data.username}'")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if profile.disabled:
        raise HTTPException(status_code=400, detail="Inactive user")

    # Sesi peran dimulai saat login: peran diambil ulang dari database
    await role_sessions.start_session(profile.id)

    access_token = create_access_token(
        data={"sub": profile.username},
        expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    logger.info(f"User '{profile.username}' logged in")
    return {"access_token": access_token, "token_type": "bearer"}


@router.post("/register", response_model=Profile.Response, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/hour")
async def register_user(
    request: Request,
    user_in: Profile.Create,
    gateway: PersistenceGateway = Depends(get_gateway),
):
    if await gateway.get_profile_by_username(user_in.username):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already registered")

    profile = await gateway.insert_profile(ProfileBase(
        username=user_in.username,
        full_name=user_in.full_name,
        unit=user_in.unit,
        phone=user_in.phone,
        hashed_password=get_password_hash(user_in.password),
        disabled=False,
    ))
    # Setiap akun baru adalah peminjam; peran lain diberikan admin
    await gateway.add_role_assignment(RoleAssignmentBase(user_id=profile.id, role=AppRole.BORROWER))
    logger.info(f"Registered new borrower '{profile.username}' ({profile.id})")
    return profile_response(profile)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    current_user: ProfileRecord = Depends(get_current_active_user),
    role_sessions: RoleSessionCache = Depends(get_role_sessions),
):
    role_sessions.end_session(current_user.id)
    logger.info(f"User '{current_user.username}' logged out")


@router.get("/me", response_model=Profile.Me)
async def read_me(
    current_user: ProfileRecord = Depends(get_current_active_user),
    roles: RoleResolver = Depends(get_current_roles),
):
    return Profile.Me(
        profile=profile_response(current_user),
        roles=roles.roles,
        role_labels=roles.role_labels(),
        department=roles.get_user_department(),
        department_id=roles.get_user_department_id(),
        can_manage_inventory=roles.can_manage_inventory(),
        can_approve_requests=roles.can_approve_requests(),
    )
