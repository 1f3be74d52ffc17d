# app/main.py
from contextlib import asynccontextmanager
from typing import Dict, Type

from fastapi import FastAPI, Request, status as fastapi_status, HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import setup_logging, CORS_ORIGINS
from loguru import logger
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from app.middleware.logging import RequestLoggingMiddleware
from app.middleware.authentication import AuthMiddleware
from app.core.rate_limiter import get_rate_limiter, rate_limit_exception_handler
from slowapi.errors import RateLimitExceeded

from app.core import exceptions as workflow_errors
from app.db.database import init_db, ping_db, close_db
from app.api.v1.api import api_router_v1


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Application startup...")
    await init_db()
    logger.info("Database initialized.")
    yield
    logger.info("Application shutdown...")
    close_db()


app = FastAPI(
    title="School Equipment Loan API",
    description="Peminjaman alat sekolah: pengajuan, persetujuan pemilik/Kepala Sekolah, surat, dan verifikasi publik.",
    version="1.0.0",
    lifespan=lifespan,
)

# --- KONFIGURASI MIDDLEWARE ---

# 1. Error Handling
app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)

# Urutan penting: subclass dulu (ConcurrentModification sebelum GatewayError)
WORKFLOW_ERROR_STATUS: Dict[Type[workflow_errors.LoanWorkflowError], int] = {
    workflow_errors.ValidationError: fastapi_status.HTTP_422_UNPROCESSABLE_ENTITY,
    workflow_errors.Unauthorized: fastapi_status.HTTP_403_FORBIDDEN,
    workflow_errors.RequestNotFound: fastapi_status.HTTP_404_NOT_FOUND,
    workflow_errors.InvalidState: fastapi_status.HTTP_409_CONFLICT,
    workflow_errors.InsufficientStock: fastapi_status.HTTP_409_CONFLICT,
    workflow_errors.InconsistentState: fastapi_status.HTTP_500_INTERNAL_SERVER_ERROR,
    workflow_errors.ConcurrentModification: fastapi_status.HTTP_409_CONFLICT,
    workflow_errors.GatewayError: fastapi_status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: workflow_errors.LoanWorkflowError) -> int:
    for error_cls, status_code in WORKFLOW_ERROR_STATUS.items():
        if isinstance(exc, error_cls):
            return status_code
    return fastapi_status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(workflow_errors.LoanWorkflowError)
async def workflow_exception_handler(request: Request, exc: workflow_errors.LoanWorkflowError):
    status_code = status_for(exc)
    if isinstance(exc, workflow_errors.InconsistentState):
        logger.critical(f"Inconsistent state on {request.url.path}: {exc.to_dict()}")
    elif status_code >= 500:
        logger.error(f"Workflow error {exc.code} on {request.url.path}: {exc}")
    else:
        logger.warning(f"Workflow error {exc.code} on {request.url.path}: {exc}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    logger.error(f"Validation Error: {exc.errors()}")
    return JSONResponse(
        status_code=fastapi_status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Validation Error", "code": "VALIDATION_ERROR", "errors": exc.errors(include_context=False)},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning(f"HTTP Exception: Status={exc.status_code}, Detail={exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled Exception: {exc}", exc_info=True)
    return JSONResponse(status_code=fastapi_status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "An internal server error occurred."})

# 2. CORS
if CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# 3. Authentication Middleware (dijalankan setelah logging, sehingga request_id sudah ada)
app.add_middleware(AuthMiddleware)

# 4. Request Logging Middleware
app.add_middleware(RequestLoggingMiddleware)

# 5. Rate Limiter State (untuk decorator @limiter.limit)
app.state.limiter = get_rate_limiter()

# 6. GZip Middleware
app.add_middleware(GZipMiddleware, minimum_size=500)

# --- END MIDDLEWARE ---

app.include_router(api_router_v1)


@app.get("/")
async def read_root():
    return {"message": "School Equipment Loan API"}


@app.get("/health/db")
async def health_db():
    if not await ping_db():
        raise HTTPException(status_code=503, detail="MongoDB connection failed.")
    return {"status": "success", "message": "MongoDB connection is healthy."}
