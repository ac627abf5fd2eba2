"""PostgreSQL implementation of DocumentStore."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rewards_service.core.clock import now_ms
from rewards_service.core.errors import ConcurrencyConflict
from rewards_service.db.tables import DocumentRow
from rewards_service.repos.document_store import Document, Write


class PgDocumentStore:
    """Satisfies the DocumentStore Protocol using one JSONB table.

    Each call opens its own session.  ``commit`` runs every write in one
    transaction; versioned writes are conditional, so a stale version or
    a lost race on a first insert changes no row and aborts the batch.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, collection: str, key: str) -> Document | None:
        stmt = select(DocumentRow.body).where(
            DocumentRow.collection == collection, DocumentRow.key == key
        )
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def put(self, collection: str, key: str, document: Document) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(_upsert(collection, key, document))

    async def query(
        self,
        collection: str,
        *,
        equals: Mapping[str, Any] | None = None,
        at_least: Mapping[str, float] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        stmt = select(DocumentRow.body).where(DocumentRow.collection == collection)
        if equals:
            # JSONB containment (@>) compares typed values, not text.
            stmt = stmt.where(DocumentRow.body.contains(dict(equals)))
        for field_name, bound in (at_least or {}).items():
            stmt = stmt.where(DocumentRow.body[field_name].as_float() >= bound)
        if order_by is not None:
            sort_key = DocumentRow.body[order_by].as_float()
            stmt = stmt.order_by(sort_key.desc() if descending else sort_key.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def commit(self, writes: Sequence[Write]) -> None:
        async with self._session_factory() as session, session.begin():
            for w in writes:
                if w.expected_version is None:
                    await session.execute(_upsert(w.collection, w.key, w.document))
                    continue
                result = await session.execute(_versioned_write(w))
                if result.rowcount == 0:
                    found = await self._current_version(session, w)
                    # Raising inside begin() rolls the transaction back.
                    raise ConcurrencyConflict(
                        w.collection, w.key, w.expected_version, found
                    )

    @staticmethod
    async def _current_version(session: AsyncSession, w: Write) -> int:
        stmt = select(DocumentRow.version).where(
            DocumentRow.collection == w.collection, DocumentRow.key == w.key
        )
        return (await session.execute(stmt)).scalar_one_or_none() or 0


def _insert(collection: str, key: str, document: Document):
    return insert(DocumentRow).values(
        collection=collection,
        key=key,
        body=document,
        version=int(document.get("version", 0)),
        updated_at=now_ms(),
    )


def _upsert(collection: str, key: str, document: Document):
    stmt = _insert(collection, key, document)
    return stmt.on_conflict_do_update(
        index_elements=[DocumentRow.collection, DocumentRow.key],
        set_={
            "body": stmt.excluded.body,
            "version": stmt.excluded.version,
            "updated_at": stmt.excluded.updated_at,
        },
    )


def _versioned_write(w: Write):
    """Write that touches no row unless the stored version matches.

    Expecting version 0 means the key must not exist yet: a concurrent
    first insert blocks on the primary key, then hits DO NOTHING.  Any
    other expectation is an UPDATE guarded on the stored version.  The
    caller treats a rowcount of 0 as a conflict.
    """
    if w.expected_version == 0:
        return _insert(w.collection, w.key, w.document).on_conflict_do_nothing(
            index_elements=[DocumentRow.collection, DocumentRow.key]
        )
    return (
        update(DocumentRow)
        .where(
            DocumentRow.collection == w.collection,
            DocumentRow.key == w.key,
            DocumentRow.version == w.expected_version,
        )
        .values(
            body=w.document,
            version=int(w.document.get("version", 0)),
            updated_at=now_ms(),
        )
    )
