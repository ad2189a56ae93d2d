# app/db/document_store.py
"""
Document store over a single Postgres JSONB table.

Every document lives in ``documents`` keyed by (collection, id) and carries a
store-managed ``version`` integer. Updates may pass ``expected_version`` to get
optimistic concurrency: a stale version makes the write fail with
ConcurrentModificationError instead of silently overwriting.

Documents are returned as plain dicts: the stored JSON plus ``id`` and
``version`` keys.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Literal, Protocol

from psycopg.types.json import Jsonb

from app.db.helpers import execute_query, fetch_all, fetch_one, fetch_val, with_db_retry
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

FilterOp = Literal["==", "in"]
Filter = tuple[str, FilterOp, Any]

RESERVED_KEYS = ("id", "version")

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS documents (
        collection TEXT NOT NULL,
        id TEXT NOT NULL,
        data JSONB NOT NULL DEFAULT '{}'::jsonb,
        version INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        PRIMARY KEY (collection, id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_documents_data ON documents USING GIN (data)",
]


class ConcurrentModificationError(Exception):
    """A versioned write lost the race against another writer."""

    def __init__(self, collection: str, doc_id: str, expected_version: int | None = None):
        super().__init__(
            f"{collection}/{doc_id} was modified concurrently"
            + (f" (expected version {expected_version})" if expected_version is not None else "")
        )
        self.collection = collection
        self.doc_id = doc_id
        self.expected_version = expected_version


class DocumentNotFoundError(Exception):
    """Update targeted a document that does not exist."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"{collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _dumps(obj: Any) -> str:
    return json.dumps(obj, default=_json_default)


def _jsonb(obj: Any) -> Jsonb:
    return Jsonb(obj, dumps=_dumps)


def _strip_reserved(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k not in RESERVED_KEYS}


def new_document_id() -> str:
    return uuid.uuid4().hex


@dataclass
class BatchOperation:
    kind: Literal["create", "update"]
    collection: str
    doc_id: str
    data: dict[str, Any]
    expected_version: int | None = None


@dataclass
class WriteBatch:
    """
    Multi-document write applied atomically by DocumentStore.commit().

    Either every operation lands or none does; a version mismatch on any
    update aborts the whole batch.
    """

    operations: list[BatchOperation] = field(default_factory=list)

    def create(self, collection: str, data: dict[str, Any], doc_id: str | None = None) -> str:
        doc_id = doc_id or new_document_id()
        self.operations.append(
            BatchOperation("create", collection, doc_id, _strip_reserved(data))
        )
        return doc_id

    def update(
        self,
        collection: str,
        doc_id: str,
        changes: dict[str, Any],
        expected_version: int | None = None,
    ) -> None:
        self.operations.append(
            BatchOperation("update", collection, doc_id, _strip_reserved(changes), expected_version)
        )

    def __len__(self) -> int:
        return len(self.operations)


class DocumentStore(Protocol):
    """Persistence contract used by the matching and lifecycle services."""

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    async def query(
        self,
        collection: str,
        filters: list[Filter] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def count(self, collection: str, filters: list[Filter] | None = None) -> int: ...

    async def create(
        self, collection: str, data: dict[str, Any], doc_id: str | None = None
    ) -> dict[str, Any]: ...

    async def update(
        self,
        collection: str,
        doc_id: str,
        changes: dict[str, Any],
        expected_version: int | None = None,
    ) -> int: ...

    async def delete(self, collection: str, doc_id: str) -> bool: ...

    def batch(self) -> WriteBatch: ...

    async def commit(self, batch: WriteBatch) -> None: ...


def _row_to_document(row: dict[str, Any]) -> dict[str, Any]:
    document = dict(row["data"] or {})
    document["id"] = row["id"]
    document["version"] = row["version"]
    return document


def _build_where(collection: str, filters: list[Filter] | None) -> tuple[str, list[Any]]:
    clauses = ["collection = %s"]
    params: list[Any] = [collection]

    for field_name, op, value in filters or []:
        if op == "==":
            clauses.append("data -> %s = %s")
            params.extend([field_name, _jsonb(value)])
        elif op == "in":
            clauses.append("data -> %s IN (SELECT jsonb_array_elements(%s))")
            params.extend([field_name, _jsonb(list(value))])
        else:
            raise ValueError(f"Unsupported filter operator: {op}")

    return " AND ".join(clauses), params


class PostgresDocumentStore:
    """DocumentStore backed by the shared psycopg pool."""

    async def ensure_schema(self) -> None:
        for statement in SCHEMA_STATEMENTS:
            await execute_query(statement)
        logger.info("Document store schema ensured")

    @with_db_retry()
    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        row = await fetch_one(
            "SELECT id, data, version FROM documents WHERE collection = %s AND id = %s",
            (collection, doc_id),
        )
        return _row_to_document(row) if row else None

    @with_db_retry()
    async def query(
        self,
        collection: str,
        filters: list[Filter] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        where, params = _build_where(collection, filters)
        sql_text = f"SELECT id, data, version FROM documents WHERE {where}"

        if order_by:
            direction = "DESC" if descending else "ASC"
            sql_text += f" ORDER BY data ->> %s {direction}"
            params.append(order_by)

        if limit is not None:
            sql_text += " LIMIT %s"
            params.append(int(limit))

        rows = await fetch_all(sql_text, tuple(params))
        return [_row_to_document(row) for row in rows]

    @with_db_retry()
    async def count(self, collection: str, filters: list[Filter] | None = None) -> int:
        where, params = _build_where(collection, filters)
        total = await fetch_val(f"SELECT COUNT(*) FROM documents WHERE {where}", tuple(params))
        return int(total or 0)

    async def create(
        self, collection: str, data: dict[str, Any], doc_id: str | None = None
    ) -> dict[str, Any]:
        doc_id = doc_id or new_document_id()
        payload = _strip_reserved(data)
        await execute_query(
            "INSERT INTO documents (collection, id, data, version) VALUES (%s, %s, %s, 1)",
            (collection, doc_id, _jsonb(payload)),
        )
        logger.debug("Document created", collection=collection, doc_id=doc_id)
        return {**payload, "id": doc_id, "version": 1}

    async def update(
        self,
        collection: str,
        doc_id: str,
        changes: dict[str, Any],
        expected_version: int | None = None,
    ) -> int:
        """Shallow-merge ``changes`` into the document and return the new version."""
        async with db_pool.transaction() as conn:
            return await self._apply_update(
                conn, collection, doc_id, _strip_reserved(changes), expected_version
            )

    async def delete(self, collection: str, doc_id: str) -> bool:
        deleted = await execute_query(
            "DELETE FROM documents WHERE collection = %s AND id = %s", (collection, doc_id)
        )
        return deleted > 0

    def batch(self) -> WriteBatch:
        return WriteBatch()

    async def commit(self, batch: WriteBatch) -> None:
        if not batch.operations:
            return

        async with db_pool.transaction() as conn:
            for op in batch.operations:
                if op.kind == "create":
                    await execute_query(
                        "INSERT INTO documents (collection, id, data, version) "
                        "VALUES (%s, %s, %s, 1)",
                        (op.collection, op.doc_id, _jsonb(op.data)),
                        connection=conn,
                    )
                else:
                    await self._apply_update(
                        conn, op.collection, op.doc_id, op.data, op.expected_version
                    )

        logger.debug("Write batch committed", operation_count=len(batch))

    async def _apply_update(
        self,
        conn,
        collection: str,
        doc_id: str,
        changes: dict[str, Any],
        expected_version: int | None,
    ) -> int:
        sql_text = (
            "UPDATE documents SET data = data || %s, version = version + 1, updated_at = NOW() "
            "WHERE collection = %s AND id = %s"
        )
        params: list[Any] = [_jsonb(changes), collection, doc_id]

        if expected_version is not None:
            sql_text += " AND version = %s"
            params.append(expected_version)

        sql_text += " RETURNING version"

        row = await fetch_one(sql_text, tuple(params), connection=conn)
        if row:
            return row["version"]

        if expected_version is not None:
            logger.warning(
                "Versioned update rejected",
                collection=collection,
                doc_id=doc_id,
                expected_version=expected_version,
            )
            raise ConcurrentModificationError(collection, doc_id, expected_version)

        raise DocumentNotFoundError(collection, doc_id)


# Global store instance
document_store = PostgresDocumentStore()


def get_document_store() -> DocumentStore:
    """FastAPI dependency returning the process-wide store."""
    return document_store
