# app/api/v1/endpoints/categories.py
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status, Body, Request
from loguru import logger

from app.api.deps import get_gateway
from app.core.gateway import PersistenceGateway
from app.core.rate_limiter import limiter
from app.core.security import get_current_active_user, require_admin, require_inventory_manager
from app.models.category import Category, CategoryBase, CategoryRecord
from app.models.department import Department, DepartmentBase, DepartmentRecord
from app.models.profile import ProfileRecord

# Data referensi: kategori barang dan departemen (pemilik alat)
router = APIRouter(tags=["Categories"], dependencies=[Depends(get_current_active_user)])
department_router = APIRouter(tags=["Departments"], dependencies=[Depends(get_current_active_user)])


@router.get("/", response_model=List[CategoryRecord])
async def read_categories(gateway: PersistenceGateway = Depends(get_gateway)):
    return await gateway.list_categories()


@router.post("/", response_model=CategoryRecord, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/hour")
async def create_category(
    request: Request,
    category_in: Category.Create = Body(...),
    gateway: PersistenceGateway = Depends(get_gateway),
    current_user: ProfileRecord = Depends(require_inventory_manager),
):
    logger.info(f"User '{current_user.username}' attempting to create category: {category_in.name}")
    if any(c.name == category_in.name for c in await gateway.list_categories()):
        raise HTTPException(status_code=400, detail="Category name exists.")
    return await gateway.insert_category(CategoryBase(**category_in.model_dump()))


@department_router.get("/", response_model=List[DepartmentRecord])
async def read_departments(gateway: PersistenceGateway = Depends(get_gateway)):
    return await gateway.list_departments()


@department_router.post("/", response_model=DepartmentRecord, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/hour")
async def create_department(
    request: Request,
    department_in: Department.Create = Body(...),
    gateway: PersistenceGateway = Depends(get_gateway),
    current_user: ProfileRecord = Depends(require_admin),
):
    code = department_in.code.upper()
    for existing in await gateway.list_departments():
        if existing.name == department_in.name:
            raise HTTPException(status_code=400, detail="Department name exists.")
        if existing.code.upper() == code:
            raise HTTPException(status_code=400, detail="Department code exists.")
    department = await gateway.insert_department(
        DepartmentBase(**department_in.model_dump(exclude={"code"}), code=code)
    )
    logger.info(f"Admin '{current_user.username}' created department {department.name} ({department.code})")
    return department
