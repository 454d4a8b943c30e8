# db/column_types.py
"""Dialect-aware column types shared by the models."""
from sqlalchemy import JSON, Enum as SAEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Dialect
from sqlalchemy.types import TypeDecorator

from competition_engine.db.enums import Level, SubmissionStatus


class UniversalJSON(TypeDecorator):
    """JSONB on PostgreSQL, plain JSON on SQLite and others."""
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())


# shared so PostgreSQL only sees one CREATE TYPE per enum
LevelType = SAEnum(Level, name="competition_level")
SubmissionStatusType = SAEnum(SubmissionStatus, name="submission_status")
