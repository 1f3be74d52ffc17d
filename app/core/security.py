# app/core/security.py
from datetime import datetime, timedelta, timezone
from typing import Optional
import logging

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from app.core.config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES
from app.api.deps import get_gateway, get_role_sessions
from app.core.gateway import PersistenceGateway
from app.core.roles import RoleResolver, RoleSessionCache
from app.middleware.authentication import decode_subject
from app.models.profile import ProfileRecord

logger = logging.getLogger(__name__)

# Konteks password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


async def get_current_user(
    request: Request,
    token: str = Depends(oauth2_scheme),
    gateway: PersistenceGateway = Depends(get_gateway),
) -> ProfileRecord:
    """
    Gets the current profile from the username set by AuthMiddleware, or decodes
    the token if the middleware did not run.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    username: Optional[str] = getattr(request.state, "username", None)
    if not username:
        logger.warning("Username not found in request state, attempting token decode in dependency.")
        try:
            username = decode_subject(token)
        except JWTError:
            logger.warning("Token decode failed in get_current_user dependency.")
            raise credentials_exception

    profile = await gateway.get_profile_by_username(username)
    if profile is None:
        logger.warning(f"Profile '{username}' not found.")
        raise credentials_exception
    return profile


async def get_current_active_user(current_user: ProfileRecord = Depends(get_current_user)) -> ProfileRecord:
    if current_user.disabled:
        logger.warning(f"Access denied for disabled user '{current_user.username}'.")
        raise HTTPException(status_code=400, detail="Inactive user")
    return current_user


async def get_current_roles(
    current_user: ProfileRecord = Depends(get_current_active_user),
    role_sessions: RoleSessionCache = Depends(get_role_sessions),
) -> RoleResolver:
    return await role_sessions.resolve(current_user.id)


async def require_admin(
    current_user: ProfileRecord = Depends(get_current_active_user),
    roles: RoleResolver = Depends(get_current_roles),
) -> ProfileRecord:
    if not roles.is_admin():
        logger.warning(f"Forbidden: '{current_user.username}' attempted an admin-only operation.")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Operation not permitted. Required role: admin")
    return current_user


async def require_inventory_manager(
    current_user: ProfileRecord = Depends(get_current_active_user),
    roles: RoleResolver = Depends(get_current_roles),
) -> ProfileRecord:
    if not roles.can_manage_inventory():
        logger.warning(f"Forbidden: '{current_user.username}' cannot manage inventory.")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Operation not permitted. Required roles: ['admin', 'owner']",
        )
    return current_user
