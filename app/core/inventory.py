# app/core/inventory.py
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping

from app.core.exceptions import InconsistentState, InsufficientStock
from app.models.borrow_request import RequestLineItem
from app.models.enum import ItemStatus
from app.models.item import InventoryItemRecord

logger = logging.getLogger(__name__)


class LoanDirection(str, Enum):
    CHECK_OUT = "check_out"   # approved -> active, stok berkurang
    RETURN = "return"         # active -> completed, stok kembali


@dataclass(frozen=True)
class StockAdjustment:
    """Perubahan available_quantity satu barang, lengkap dengan nilai sebelum/sesudah untuk kompensasi."""
    item_id: str
    item_name: str
    quantity: int
    available_before: int
    available_after: int
    status_before: ItemStatus
    status_after: ItemStatus

    def reversed(self) -> "StockAdjustment":
        return StockAdjustment(
            item_id=self.item_id,
            item_name=self.item_name,
            quantity=self.quantity,
            available_before=self.available_after,
            available_after=self.available_before,
            status_before=self.status_after,
            status_after=self.status_before,
        )


@dataclass(frozen=True)
class Shortage:
    item_id: str
    item_name: str
    requested: int
    available: int


def merge_line_items(line_items: Iterable[RequestLineItem]) -> Dict[str, int]:
    """Jumlahkan quantity per item_id, urutan kemunculan pertama dipertahankan."""
    merged: Dict[str, int] = {}
    for line in line_items:
        merged[line.item_id] = merged.get(line.item_id, 0) + line.quantity
    return merged


def derive_item_status(available_after: int, current: ItemStatus, direction: LoanDirection) -> ItemStatus:
    if direction == LoanDirection.CHECK_OUT:
        return ItemStatus.BORROWED if available_after == 0 else current
    return ItemStatus.AVAILABLE


def plan_adjustments(
    request_id: str,
    line_items: Iterable[RequestLineItem],
    items: Mapping[str, InventoryItemRecord],
    direction: LoanDirection,
) -> List[StockAdjustment]:
    """
    Computes the stock changes for starting or completing a loan without writing anything.

    Every item is checked before a plan is returned: a check-out that would drive any
    item below zero raises InsufficientStock naming every short item, and a return that
    would push an item above its total raises InconsistentState.
    """
    plan: List[StockAdjustment] = []
    shortages: List[Shortage] = []
    for item_id, quantity in merge_line_items(line_items).items():
        item = items.get(item_id)
        if item is None:
            raise InconsistentState(request_id, f"Inventory item {item_id} referenced by request {request_id} no longer exists.")

        if direction == LoanDirection.CHECK_OUT:
            after = item.available_quantity - quantity
            if after < 0:
                shortages.append(Shortage(item_id, item.name, quantity, item.available_quantity))
                continue
        else:
            after = item.available_quantity + quantity
            if after > item.quantity:
                raise InconsistentState(
                    request_id,
                    f"Returning {quantity} x '{item.name}' would exceed its total of {item.quantity} "
                    f"(available now {item.available_quantity}).",
                )

        plan.append(StockAdjustment(
            item_id=item_id,
            item_name=item.name,
            quantity=quantity,
            available_before=item.available_quantity,
            available_after=after,
            status_before=item.status,
            status_after=derive_item_status(after, item.status, direction),
        ))

    if shortages:
        logger.info(f"Request {request_id}: stock check failed for {len(shortages)} item(s).")
        raise InsufficientStock(request_id, shortages)
    return plan
