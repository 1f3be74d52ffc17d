# app/core/utils.py
import logging
from datetime import datetime, timezone
from pymongo import ReturnDocument

from app.core.exceptions import GatewayError
from app.models.counter import SequenceCounter

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Mongo mengembalikan datetime naive (UTC) jika client tidak tz_aware."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def get_next_sequence_value(sequence_name: str, session=None) -> int:
    """
    Gets the next value for a named sequence, incrementing it atomically.
    Uses _id field of SequenceCounter as the sequence name.
    """
    logger.debug(f"Attempting to get next sequence value for: {sequence_name}")
    collection = SequenceCounter.get_motor_collection()

    updated_doc = await collection.find_one_and_update(
        {"_id": sequence_name},
        {"$inc": {"value": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
        session=session,
    )
    if not updated_doc or "value" not in updated_doc:
        logger.error(f"CRITICAL: find_one_and_update returned no counter for '{sequence_name}'.")
        raise GatewayError(f"Failed to get or create sequence counter: {sequence_name}", operation="next_sequence_value")

    next_value = updated_doc["value"]
    logger.debug(f"Next sequence value for '{sequence_name}': {next_value}")
    return next_value
