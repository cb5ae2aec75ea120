from __future__ import annotations

import asyncio
import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generator, List, Optional, Sequence

from .store import (
    Document,
    DocumentNotFound,
    DocumentSnapshot,
    DocumentStore,
    ErrorCallback,
    ListenerHub,
    ListenerRegistration,
    Query,
    SnapshotCallback,
    StoreUnavailable,
    WriteOp,
    document_id_of,
    parent_of,
    sort_snapshots,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Cols:
    table: str = "documents"
    seq: str = "seq"
    path: str = "path"
    collection: str = "collection"
    data: str = "data"


_COLS = _Cols()


def _encode(data: Document) -> str:
    def default(value: Any) -> Any:
        if isinstance(value, datetime):
            return value.isoformat()
        raise TypeError(f"Unsupported document value: {value!r}")

    return json.dumps(data, default=default, sort_keys=True)


class SQLiteDocumentStore(DocumentStore):
    """
    Lightweight SQLite document store implementing the DocumentStore interface.

    Documents are stored as JSON rows keyed by path. Timestamps are written as
    ISO8601 strings. Blocking I/O runs in a worker thread so callers on the
    event loop are never blocked; listeners are notified from that thread.
    """

    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._hub = ListenerHub(self._query_sync)
        self._init_db()

    @property
    def listener_count(self) -> int:
        return len(self._hub)

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        try:
            conn = sqlite3.connect(self._db_path)
        except sqlite3.OperationalError as exc:
            raise StoreUnavailable(str(exc)) from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_COLS.table} (
                    {_COLS.seq} INTEGER PRIMARY KEY AUTOINCREMENT,
                    {_COLS.path} TEXT NOT NULL UNIQUE,
                    {_COLS.collection} TEXT NOT NULL,
                    {_COLS.data} TEXT NOT NULL
                )
                """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_COLS.table}_{_COLS.collection} "
                f"ON {_COLS.table}({_COLS.collection})"
            )

    def _query_sync(self, query: Query) -> List[DocumentSnapshot]:
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT {_COLS.seq}, {_COLS.path}, {_COLS.data} FROM {_COLS.table} WHERE {_COLS.collection} = ?",
                (query.collection,),
            ).fetchall()
        pairs = [
            (
                int(row[_COLS.seq]),
                DocumentSnapshot(
                    id=document_id_of(row[_COLS.path]),
                    path=row[_COLS.path],
                    data=json.loads(row[_COLS.data]),
                ),
            )
            for row in rows
        ]
        return sort_snapshots(pairs, query)

    def _get_sync(self, path: str) -> Optional[Document]:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT {_COLS.data} FROM {_COLS.table} WHERE {_COLS.path} = ?", (path,)
            ).fetchone()
        return json.loads(row[_COLS.data]) if row else None

    def _commit_sync(self, ops: Sequence[WriteOp]) -> None:
        with self._conn() as conn:
            for op in ops:
                self._apply(conn, op)
        self._hub.notify(parent_of(op.path) for op in ops)

    def _apply(self, conn: sqlite3.Connection, op: WriteOp) -> None:
        if op.kind == "set":
            conn.execute(
                f"""
                INSERT INTO {_COLS.table} ({_COLS.path}, {_COLS.collection}, {_COLS.data})
                VALUES (?, ?, ?)
                ON CONFLICT({_COLS.path}) DO UPDATE SET {_COLS.data} = excluded.{_COLS.data}
                """,
                (op.path, parent_of(op.path), _encode(op.data)),
            )
            return

        row = conn.execute(
            f"SELECT {_COLS.data} FROM {_COLS.table} WHERE {_COLS.path} = ?", (op.path,)
        ).fetchone()
        if row is None:
            raise DocumentNotFound(op.path)

        if op.kind == "update":
            merged = json.loads(row[_COLS.data])
            merged.update(json.loads(_encode(op.data)))
            conn.execute(
                f"UPDATE {_COLS.table} SET {_COLS.data} = ? WHERE {_COLS.path} = ?",
                (_encode(merged), op.path),
            )
        elif op.kind == "delete":
            conn.execute(f"DELETE FROM {_COLS.table} WHERE {_COLS.path} = ?", (op.path,))
        else:
            raise ValueError(f"Unknown write kind: {op.kind}")

    async def get(self, path: str) -> Optional[Document]:
        return await asyncio.to_thread(self._get_sync, path)

    async def set(self, path: str, data: Document) -> None:
        await self.commit([WriteOp.set(path, data)])

    async def update(self, path: str, fields: Document) -> None:
        await self.commit([WriteOp.update(path, fields)])

    async def delete(self, path: str) -> None:
        await self.commit([WriteOp.delete(path)])

    async def query(self, query: Query) -> List[DocumentSnapshot]:
        return await asyncio.to_thread(self._query_sync, query)

    async def commit(self, ops: Sequence[WriteOp]) -> None:
        if not ops:
            return
        await asyncio.to_thread(self._commit_sync, list(ops))

    def listen(
        self,
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> ListenerRegistration:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return self._hub.add(query, on_snapshot, on_error)
        # The first snapshot reads the database, so keep it off the event loop.
        return self._hub.add(query, on_snapshot, on_error, initial=lambda emit: loop.run_in_executor(None, emit))
