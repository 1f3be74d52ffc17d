# app/api/deps.py
"""Shared FastAPI dependencies. Tests swap these through ``app.dependency_overrides``."""
from fastapi import Depends

from app.core.config import APP_TIMEZONE, LETTER_FALLBACK_DEPARTMENT_CODE, MONGODB_TRANSACTIONS
from app.core.gateway import BeanieGateway, PersistenceGateway
from app.core.letters import LetterNumberIssuer
from app.core.roles import RoleSessionCache
from app.core.workflow import LoanWorkflowEngine

# Satu instance per proses; cache peran harus dibagi semua request
_gateway = BeanieGateway(use_transactions=MONGODB_TRANSACTIONS)
_role_sessions = RoleSessionCache(_gateway)


def get_gateway() -> PersistenceGateway:
    return _gateway


def get_role_sessions() -> RoleSessionCache:
    return _role_sessions


def get_letter_issuer(gateway: PersistenceGateway = Depends(get_gateway)) -> LetterNumberIssuer:
    return LetterNumberIssuer(gateway, APP_TIMEZONE, LETTER_FALLBACK_DEPARTMENT_CODE)


def get_engine(
    gateway: PersistenceGateway = Depends(get_gateway),
    role_sessions: RoleSessionCache = Depends(get_role_sessions),
    letters: LetterNumberIssuer = Depends(get_letter_issuer),
) -> LoanWorkflowEngine:
    return LoanWorkflowEngine(gateway, role_sessions, letters=letters)
