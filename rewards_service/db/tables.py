"""SQLAlchemy table definitions.

The engine stores documents, not relational rows: every collection
shares one JSONB table keyed by (collection, key).  ``version`` mirrors
the document's own ``version`` field so versioned commits can compare
it under a row lock without parsing JSON.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import BigInteger, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from rewards_service.db.engine import Base


class DocumentRow(Base):
    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(64), primary_key=True)
    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    body: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


# Queries filter with JSONB containment (body @> {"user_id": ...}), which
# only a GIN index can serve; the primary key already leads with collection.
Index(
    "ix_documents_body",
    DocumentRow.body,
    postgresql_using="gin",
    postgresql_ops={"body": "jsonb_path_ops"},
)
