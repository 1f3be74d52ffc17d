# app/db/database.py
import logging
from typing import Optional

import motor.motor_asyncio
from beanie import init_beanie
from pymongo.errors import PyMongoError

from app.core.config import MONGODB_URL, DATABASE_NAME
from app.models.borrow_request import BorrowRequest
from app.models.category import Category
from app.models.counter import SequenceCounter
from app.models.department import Department
from app.models.item import InventoryItem
from app.models.profile import Profile
from app.models.role import UserRoleAssignment

logger = logging.getLogger(__name__)

_client: Optional[motor.motor_asyncio.AsyncIOMotorClient] = None


async def init_db():
    """Inisialisasi koneksi database dan Beanie."""
    global _client
    logger.info("Connecting to MongoDB...")
    # tz_aware agar datetime yang dibaca kembali tetap UTC-aware
    _client = motor.motor_asyncio.AsyncIOMotorClient(MONGODB_URL, tz_aware=True)

    database = _client[DATABASE_NAME]
    logger.info(f"Using database: {DATABASE_NAME}")

    await init_beanie(
        database=database,
        document_models=[
            Profile,
            UserRoleAssignment,
            Department,
            Category,
            InventoryItem,
            BorrowRequest,
            SequenceCounter,
        ]
    )
    logger.info("Beanie initialization complete for all models.")


async def ping_db() -> bool:
    if _client is None:
        return False
    try:
        await _client.admin.command("ping")
        return True
    except PyMongoError as e:
        logger.error(f"MongoDB ping failed: {e}")
        return False


def close_db():
    global _client
    if _client is not None:
        _client.close()
        _client = None
        logger.info("MongoDB connection closed.")
