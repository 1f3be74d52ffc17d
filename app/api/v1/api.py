# app/api/v1/api.py
from fastapi import APIRouter

from app.api.v1.endpoints import auth, users, categories, items, requests, verify

api_router_v1 = APIRouter(prefix="/api/v1")

api_router_v1.include_router(auth.router, prefix="/auth")
api_router_v1.include_router(users.router, prefix="/users")
api_router_v1.include_router(categories.router, prefix="/categories")
api_router_v1.include_router(categories.department_router, prefix="/departments")
api_router_v1.include_router(items.router, prefix="/items")
api_router_v1.include_router(requests.router, prefix="/requests")
api_router_v1.include_router(verify.router, prefix="/verify")
api_router_v1.include_router(verify.board_router, prefix="/board")
