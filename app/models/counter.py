# app/models/counter.py
from beanie import Document


class SequenceCounter(Document):
    """Counter bernama untuk penomoran surat (_id = nama sequence)."""
    id: str
    value: int = 0

    class Settings:
        name = "sequence_counters"
