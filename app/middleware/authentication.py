# app/middleware/authentication.py
from typing import Optional, Set, Tuple, Callable, Awaitable

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.security.utils import get_authorization_scheme_param
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp
from loguru import logger
from jose import JWTError, jwt

from app.core.config import SECRET_KEY, ALGORITHM


# Path yang TIDAK memerlukan autentikasi
PUBLIC_PATHS: Set[str] = {
    "/",
    "/openapi.json",
    "/api/v1/auth/token",
    "/api/v1/auth/register",
}

# Prefix publik: dokumentasi, health check, verifikasi surat (target QR code), papan publik
PUBLIC_PREFIXES: Tuple[str, ...] = ("/docs", "/redoc", "/health", "/api/v1/verify/", "/api/v1/board/")


def is_public_path(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES)


def unauthorized(detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": detail},
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_subject(token: str) -> str:
    """Returns the ``sub`` claim (username) of a valid token, else raises JWTError."""
    payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    username: Optional[str] = payload.get("sub")
    if not username:
        raise JWTError("Username ('sub') missing in token payload.")
    return username


class AuthMiddleware(BaseHTTPMiddleware):
    """Rejects protected paths without a valid Bearer token.

    The username from the token is left in ``request.state.username``; profile and
    role lookups happen later in the dependencies of app.core.security.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        path = request.url.path
        request_id = getattr(request.state, "request_id", "N/A")

        # Preflight CORS tidak membawa header Authorization
        if request.method == "OPTIONS" or is_public_path(path):
            return await call_next(request)

        scheme, token = get_authorization_scheme_param(request.headers.get("Authorization") or "")
        if scheme.lower() != "bearer" or not token:
            logger.warning(f"RID:{request_id} No Bearer token for protected path {path}.")
            return unauthorized("Not authenticated")

        try:
            request.state.username = decode_subject(token)
        except JWTError as e:
            logger.warning(f"RID:{request_id} Invalid token for path {path}: {e}")
            return unauthorized(f"Invalid token: {e}")

        logger.debug(f"RID:{request_id} '{request.state.username}' -> {request.method} {path}")
        return await call_next(request)
