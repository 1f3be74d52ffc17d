# app/api/v1/endpoints/verify.py
from typing import List
from fastapi import APIRouter, Depends, Path, Query, Request

from app.api.deps import get_engine
from app.core.rate_limiter import limiter
from app.core.timeline import LetterVerification, PublicLoanEntry
from app.core.workflow import LoanWorkflowEngine

# Publik, tanpa token: tujuan QR code pada surat peminjaman
router = APIRouter(tags=["Letter Verification"])
# Publik, tanpa token: papan "siapa sedang pinjam apa"
board_router = APIRouter(tags=["Public Board"])


@router.get("/{request_id}", response_model=LetterVerification)
@limiter.limit("60/minute")
async def verify_letter(
    request: Request,
    request_id: str = Path(...),
    engine: LoanWorkflowEngine = Depends(get_engine),
):
    return await engine.verify_letter(request_id)


@board_router.get("/active", response_model=List[PublicLoanEntry])
@limiter.limit("60/minute")
async def read_active_loans(
    request: Request,
    limit: int = Query(50, ge=1, le=200),
    engine: LoanWorkflowEngine = Depends(get_engine),
):
    return await engine.public_board(limit=limit)
