"""Base model definitions and common column types.

This module provides:
- SQLAlchemy declarative base with naming conventions
- Reusable annotated column types

Column types are chosen to work on PostgreSQL in production and on SQLite
in tests (generic Uuid, JSON with a JSONB variant).
"""

import uuid
from datetime import datetime
from typing import Annotated

from sqlalchemy import JSON, DateTime, MetaData, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, mapped_column, registry

# Naming convention for constraints ensures consistent migration generation.
# See: https://alembic.sqlalchemy.org/en/latest/naming.html
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Shared metadata with naming convention
metadata = MetaData(naming_convention=NAMING_CONVENTION)

# Custom type registry for reusable type annotations
type_registry = registry()

# Document payloads: JSONB on PostgreSQL, plain JSON elsewhere
DocumentJSON = JSON().with_variant(JSONB(), "postgresql")

# UUID primary key generated client-side so every dialect gets the same ids
UUIDPrimaryKey = Annotated[
    uuid.UUID,
    mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4),
]

# Timestamp with timezone
TimestampTZ = Annotated[
    datetime,
    mapped_column(DateTime(timezone=True), nullable=False),
]

# Optional timestamp with timezone
OptionalTimestampTZ = Annotated[
    datetime | None,
    mapped_column(DateTime(timezone=True), nullable=True),
]


class Base(DeclarativeBase):
    """Declarative base for all docqueue models.

    All models inherit from this base, which provides:
    - Consistent metadata with naming conventions
    - Type annotation support via mapped_column
    """

    metadata = metadata
    registry = type_registry
