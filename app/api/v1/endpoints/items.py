# app/api/v1/endpoints/items.py
from fastapi import APIRouter, Depends, HTTPException, status, Path, Body, Request
import logging

from app.api.deps import get_gateway
from app.core.gateway import PersistenceGateway
from app.core.inventory import derive_item_status, LoanDirection
from app.core.rate_limiter import limiter
from app.core.roles import RoleResolver
from app.core.security import get_current_active_user, get_current_roles, require_inventory_manager
from app.models.enum import ItemStatus
from app.models.item import InventoryItem, InventoryItemBase, InventoryItemRecord
from app.models.profile import ProfileRecord

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Items"], dependencies=[Depends(get_current_active_user)])


async def get_item_or_404(item_id: str, gateway: PersistenceGateway) -> InventoryItemRecord:
    item = await gateway.get_item(item_id)
    if not item:
        logger.info(f"Item lookup failed for ID '{item_id}'.")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Item with ID '{item_id}' not found.")
    return item


def ensure_department_access(roles: RoleResolver, department_id: str) -> None:
    """Admin boleh semua departemen; pemilik hanya departemennya sendiri."""
    if roles.is_admin() or roles.owns_department(department_id):
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="You can only manage items of your own department.",
    )


@router.post("/", response_model=InventoryItemRecord, status_code=status.HTTP_201_CREATED)
@limiter.limit("60/hour")
async def create_item(
    request: Request,
    item_in: InventoryItem.Create = Body(...),
    gateway: PersistenceGateway = Depends(get_gateway),
    roles: RoleResolver = Depends(get_current_roles),
    current_user: ProfileRecord = Depends(require_inventory_manager),
):
    if not await gateway.get_department(item_in.department_id):
        raise HTTPException(status_code=404, detail=f"Department '{item_in.department_id}' not found.")
    ensure_department_access(roles, item_in.department_id)
    if item_in.category_id and not await gateway.get_category(item_in.category_id):
        raise HTTPException(status_code=404, detail=f"Category '{item_in.category_id}' not found.")

    data = item_in.model_dump(exclude={"image_url"})
    item = await gateway.insert_item(InventoryItemBase(
        **data,
        image_url=str(item_in.image_url) if item_in.image_url else None,
        available_quantity=item_in.quantity,
        status=ItemStatus.AVAILABLE,
    ))
    logger.info(f"User '{current_user.username}' created item {item.id} ('{item.name}', qty {item.quantity})")
    return item


@router.get("/{item_id}", response_model=InventoryItemRecord)
async def read_item(
    item_id: str = Path(...),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    return await get_item_or_404(item_id, gateway)


@router.put("/{item_id}", response_model=InventoryItemRecord)
@limiter.limit("120/hour")
async def update_item(
    request: Request,
    item_id: str = Path(...),
    item_in: InventoryItem.Update = Body(...),
    gateway: PersistenceGateway = Depends(get_gateway),
    roles: RoleResolver = Depends(get_current_roles),
    current_user: ProfileRecord = Depends(require_inventory_manager),
):
    """Update metadata barang. Mengubah `quantity` menggeser available_quantity dengan selisih yang sama,
    sehingga unit yang sedang dipinjam tetap terhitung."""
    item = await get_item_or_404(item_id, gateway)
    ensure_department_access(roles, item.department_id)

    changes = item_in.model_dump(exclude_unset=True, exclude={"image_url"})
    if "image_url" in item_in.model_fields_set:
        changes["image_url"] = str(item_in.image_url) if item_in.image_url else None

    expected_available = None
    new_available = item.available_quantity
    if item_in.quantity is not None and item_in.quantity != item.quantity:
        delta = item_in.quantity - item.quantity
        new_available = item.available_quantity + delta
        if new_available < 0:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Cannot reduce quantity to {item_in.quantity}: "
                       f"{item.quantity - item.available_quantity} unit(s) are on loan.",
            )
        expected_available = item.available_quantity
        changes["available_quantity"] = new_available

    if "status" in changes:
        if changes["status"] == ItemStatus.AVAILABLE and new_available == 0:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Item has no unit on the shelf; it cannot be marked available.",
            )
    elif new_available == 0 and item.status == ItemStatus.AVAILABLE:
        changes["status"] = derive_item_status(new_available, item.status, LoanDirection.CHECK_OUT)
    elif new_available > 0 and item.status == ItemStatus.BORROWED:
        # Unit tambahan membuat barang yang habis dipinjam tersedia lagi
        changes["status"] = derive_item_status(new_available, item.status, LoanDirection.RETURN)

    if not changes:
        return item

    updated = await gateway.update_item(item_id, changes, expected_available=expected_available)
    if updated is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Item stock changed concurrently, please retry.",
        )
    logger.info(f"User '{current_user.username}' updated item {item_id}: {sorted(changes)}")
    return updated
