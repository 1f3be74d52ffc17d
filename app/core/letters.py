# app/core/letters.py
import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from app.core.gateway import PersistenceGateway
from app.models.borrow_request import BorrowRequestRecord

logger = logging.getLogger(__name__)


def format_letter_number(sequence: int, department_code: str, issued_at: datetime) -> str:
    """Format: NNN/KODE/MM/YYYY, misal 007/LAB/03/2025."""
    return f"{sequence:03d}/{department_code}/{issued_at:%m}/{issued_at:%Y}"


def letter_sequence_name(department_code: str, issued_at: datetime) -> str:
    return f"letter_seq_{department_code}_{issued_at:%Y%m}"


class LetterNumberIssuer:
    """Issues letter numbers from a per-department, per-month atomic counter."""

    def __init__(self, gateway: PersistenceGateway, timezone_name: str, fallback_code: str):
        self.gateway = gateway
        self.tz = ZoneInfo(timezone_name)
        self.fallback_code = fallback_code

    async def department_code(self, request: BorrowRequestRecord) -> str:
        # Kode departemen diambil dari barang pertama di permintaan
        if not request.line_items:
            return self.fallback_code
        item = await self.gateway.get_item(request.line_items[0].item_id)
        if item is None:
            return self.fallback_code
        department = await self.gateway.get_department(item.department_id)
        if department is None or not department.code:
            return self.fallback_code
        return department.code.upper()

    async def issue(self, request: BorrowRequestRecord, issued_at: datetime) -> str:
        local = issued_at.astimezone(self.tz)
        code = await self.department_code(request)
        sequence = await self.gateway.next_sequence_value(letter_sequence_name(code, local))
        number = format_letter_number(sequence, code, local)
        logger.info(f"Letter number {number} issued for request {request.id}")
        return number
