"""SQLAlchemy ORM models for docqueue.

- base: Common metadata and type definitions
- records: Queue records for the PostgreSQL record store
"""

from docqueue.db.models.base import Base, metadata
from docqueue.db.models.records import QueueRecordRow

__all__ = [
    "Base",
    "QueueRecordRow",
    "metadata",
]
