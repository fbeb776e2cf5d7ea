"""
Document store on top of SQLAlchemy's asyncio engine.

Every collection lives in one ``documents`` table. The JSON body is stored as
text; three query columns (normalized name, normalized cost center, person id)
are derived from the body on every write so that propagation can look records
up without scanning.

Notes:
- Writes use INSERT ... ON CONFLICT DO UPDATE, which SQLite and Postgres both
  accept, so local runs use ``sqlite+aiosqlite`` and deployments ``postgresql+asyncpg``.
- ``merge=True`` is a shallow merge: top-level keys replace stored keys, keys
  that are not sent are kept.
- A batch is one transaction. Events are published only after it committed.
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Iterable, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from .canonical.identity_index import identity_display_name
from .canonical.normalization import normalize_cost_center, normalize_name
from .events import WriteEvent, WriteKind
from .logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_BATCH_OPERATIONS = 500

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS documents (
        collection VARCHAR(64) NOT NULL,
        doc_id VARCHAR(128) NOT NULL,
        norm_name TEXT NOT NULL DEFAULT '',
        norm_cc TEXT NOT NULL DEFAULT '',
        person_id VARCHAR(128),
        data TEXT NOT NULL,
        updated_at VARCHAR(40) NOT NULL,
        PRIMARY KEY (collection, doc_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_documents_name ON documents (collection, norm_name, norm_cc)",
    "CREATE INDEX IF NOT EXISTS ix_documents_person ON documents (collection, person_id)",
)

_UPSERT = text(
    """
    INSERT INTO documents (collection, doc_id, norm_name, norm_cc, person_id, data, updated_at)
    VALUES (:collection, :doc_id, :norm_name, :norm_cc, :person_id, :data, :updated_at)
    ON CONFLICT (collection, doc_id) DO UPDATE SET
        norm_name = excluded.norm_name,
        norm_cc = excluded.norm_cc,
        person_id = excluded.person_id,
        data = excluded.data,
        updated_at = excluded.updated_at
    """
)

_DELETE = text("DELETE FROM documents WHERE collection = :collection AND doc_id = :doc_id")

_SELECT_ONE = text("SELECT data FROM documents WHERE collection = :collection AND doc_id = :doc_id")


def now_iso() -> str:
    """Server-side timestamp, ISO-8601 in UTC."""
    return datetime.now(timezone.utc).isoformat()


def _dumps(value: dict[str, Any]) -> str:
    return json.dumps(value, default=str, ensure_ascii=False, sort_keys=True)


def _loads(raw: str) -> dict[str, Any]:
    return json.loads(raw) if raw else {}


@dataclass(frozen=True)
class Document:
    """A stored document: id plus body."""
    collection: str
    doc_id: str
    data: dict[str, Any]

    @property
    def path(self) -> str:
        return f"{self.collection}/{self.doc_id}"

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


def query_columns(data: dict[str, Any]) -> dict[str, Any]:
    """Derive the indexed query columns from a document body."""
    person_id = data.get("personId")
    return {
        "norm_name": normalize_name(identity_display_name(data)),
        "norm_cc": normalize_cost_center(data.get("cc")),
        "person_id": str(person_id) if person_id else None,
    }


@dataclass
class _Operation:
    collection: str
    doc_id: str
    data: Optional[dict[str, Any]]
    merge: bool = True

    @property
    def is_delete(self) -> bool:
        return self.data is None


class WriteBatch:
    """
    Atomic group of writes.

    Usage:
        batch = store.batch()
        batch.set("utilization", person_id, {...})
        await batch.commit()
    """

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._operations: list[_Operation] = []

    def __len__(self) -> int:
        return len(self._operations)

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = True) -> "WriteBatch":
        self._operations.append(_Operation(collection, doc_id, dict(data), merge))
        return self

    def delete(self, collection: str, doc_id: str) -> "WriteBatch":
        self._operations.append(_Operation(collection, doc_id, None))
        return self

    async def commit(self) -> list[WriteEvent]:
        """Apply all operations in one transaction, then publish their events."""
        if not self._operations:
            return []
        limit = self._store.max_batch_operations
        if len(self._operations) > limit:
            raise ValueError(f"Batch of {len(self._operations)} operations exceeds limit {limit}")

        events: list[WriteEvent] = []
        async with self._store.engine.begin() as conn:
            # state of documents touched earlier in this same batch
            pending: dict[tuple[str, str], Optional[dict[str, Any]]] = {}
            for op in self._operations:
                key = (op.collection, op.doc_id)
                if key in pending:
                    before = pending[key]
                else:
                    before = await _fetch(conn, op.collection, op.doc_id)

                if op.is_delete:
                    await conn.execute(_DELETE, {"collection": op.collection, "doc_id": op.doc_id})
                    after = None
                    kind = WriteKind.DELETE
                else:
                    after = {**before, **op.data} if (op.merge and before) else dict(op.data)
                    await conn.execute(
                        _UPSERT,
                        {
                            "collection": op.collection,
                            "doc_id": op.doc_id,
                            "data": _dumps(after),
                            "updated_at": now_iso(),
                            **query_columns(after),
                        },
                    )
                    # normalize through JSON so events carry what a reader would load
                    after = _loads(_dumps(after))
                    kind = WriteKind.UPDATE if before is not None else WriteKind.CREATE

                pending[key] = after
                events.append(WriteEvent(op.collection, op.doc_id, kind, before, after))

        self._operations = []
        self._store._publish(events)
        return events


async def _fetch(conn: AsyncConnection, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
    row = (await conn.execute(_SELECT_ONE, {"collection": collection, "doc_id": doc_id})).fetchone()
    return _loads(row[0]) if row else None


class DocumentStore:
    """Async document store; collections are namespaces in one table."""

    def __init__(self, engine: AsyncEngine, max_batch_operations: int = DEFAULT_MAX_BATCH_OPERATIONS):
        self.engine = engine
        self.max_batch_operations = max_batch_operations
        self._listeners: list[Callable[[WriteEvent], None]] = []

    @classmethod
    def from_url(
        cls,
        url: str,
        echo: bool = False,
        max_batch_operations: int = DEFAULT_MAX_BATCH_OPERATIONS,
    ) -> "DocumentStore":
        engine = create_async_engine(url, echo=echo, pool_pre_ping=True)
        return cls(engine, max_batch_operations=max_batch_operations)

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        url: str,
        echo: bool = False,
        max_batch_operations: int = DEFAULT_MAX_BATCH_OPERATIONS,
    ) -> AsyncIterator["DocumentStore"]:
        """Create the store, ensure the schema, dispose the engine on exit."""
        store = cls.from_url(url, echo=echo, max_batch_operations=max_batch_operations)
        try:
            await store.create_schema()
            yield store
        finally:
            await store.dispose()

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            for statement in SCHEMA_STATEMENTS:
                await conn.execute(text(statement))

    async def dispose(self) -> None:
        await self.engine.dispose()

    # ─────────────────────────────────────────────────────────────────────────
    # Events
    # ─────────────────────────────────────────────────────────────────────────

    def subscribe(self, listener: Callable[[WriteEvent], None]) -> Callable[[], None]:
        """Register a listener; returns a function that removes it again."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self, events: Iterable[WriteEvent]) -> None:
        for event in events:
            for listener in list(self._listeners):
                listener(event)

    # ─────────────────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────────────────

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    async def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = True) -> WriteEvent:
        events = await self.batch().set(collection, doc_id, data, merge=merge).commit()
        return events[0]

    async def delete(self, collection: str, doc_id: str) -> WriteEvent:
        events = await self.batch().delete(collection, doc_id).commit()
        return events[0]

    # ─────────────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────────────

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        async with self.engine.connect() as conn:
            data = await _fetch(conn, collection, doc_id)
        return Document(collection, doc_id, data) if data is not None else None

    async def get_many(self, collection: str, doc_ids: Iterable[str]) -> dict[str, Document]:
        ids = list(dict.fromkeys(doc_ids))
        if not ids:
            return {}
        stmt = text(
            "SELECT doc_id, data FROM documents WHERE collection = :collection AND doc_id IN :ids"
        ).bindparams(bindparam("ids", expanding=True))
        async with self.engine.connect() as conn:
            rows = (await conn.execute(stmt, {"collection": collection, "ids": ids})).fetchall()
        return {row[0]: Document(collection, row[0], _loads(row[1])) for row in rows}

    async def all(self, collection: str) -> list[Document]:
        return await self.query(collection)

    async def query(
        self,
        collection: str,
        *,
        name: Any = None,
        cc: Any = None,
        person_id: Optional[str] = None,
        has_person_id: Optional[bool] = None,
        limit: Optional[int] = None,
    ) -> list[Document]:
        """
        Filter a collection. ``name``/``cc`` are normalized before comparison;
        ``cc=None`` means "any cost center" while ``cc=""`` means "no cost center".
        """
        clauses = ["collection = :collection"]
        params: dict[str, Any] = {"collection": collection}
        if name is not None:
            clauses.append("norm_name = :norm_name")
            params["norm_name"] = normalize_name(name)
        if cc is not None:
            clauses.append("norm_cc = :norm_cc")
            params["norm_cc"] = normalize_cost_center(cc)
        if person_id is not None:
            clauses.append("person_id = :person_id")
            params["person_id"] = str(person_id)
        if has_person_id is True:
            clauses.append("person_id IS NOT NULL")
        elif has_person_id is False:
            clauses.append("person_id IS NULL")

        sql = f"SELECT doc_id, data FROM documents WHERE {' AND '.join(clauses)} ORDER BY doc_id"
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = int(limit)

        async with self.engine.connect() as conn:
            rows = (await conn.execute(text(sql), params)).fetchall()
        return [Document(collection, row[0], _loads(row[1])) for row in rows]

    async def doc_ids(self, collection: str) -> list[str]:
        async with self.engine.connect() as conn:
            rows = (
                await conn.execute(
                    text("SELECT doc_id FROM documents WHERE collection = :collection ORDER BY doc_id"),
                    {"collection": collection},
                )
            ).fetchall()
        return [row[0] for row in rows]

    async def person_ids(self, collection: str) -> list[str]:
        """Distinct non-null ``personId`` values of a collection."""
        async with self.engine.connect() as conn:
            rows = (
                await conn.execute(
                    text(
                        "SELECT DISTINCT person_id FROM documents "
                        "WHERE collection = :collection AND person_id IS NOT NULL ORDER BY person_id"
                    ),
                    {"collection": collection},
                )
            ).fetchall()
        return [row[0] for row in rows]

    async def count(self, collection: str) -> int:
        async with self.engine.connect() as conn:
            return int(
                (
                    await conn.execute(
                        text("SELECT COUNT(*) FROM documents WHERE collection = :collection"),
                        {"collection": collection},
                    )
                ).scalar()
                or 0
            )
