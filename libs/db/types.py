"""Column types shared by service models."""

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB

# JSONB on PostgreSQL, plain JSON elsewhere (the SQLite test database).
JSONDocument = JSON().with_variant(JSONB(), "postgresql")
