from __future__ import annotations

import itertools
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .settings import Settings

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
SnapshotCallback = Callable[[List["DocumentSnapshot"]], None]
ErrorCallback = Callable[[Exception], None]


class StoreError(Exception):
    """Base class for backing-store failures."""


class DocumentNotFound(StoreError):
    def __init__(self, path: str) -> None:
        super().__init__(f"No document to update or delete at {path}")
        self.path = path


class PermissionDenied(StoreError):
    pass


class StoreUnavailable(StoreError):
    """The store could not be reached; the operation may succeed later."""


def parent_of(path: str) -> str:
    """Collection path of a document path ('users/u1/todos/t1' -> 'users/u1/todos')."""
    parent, _, _ = path.rpartition("/")
    return parent


def document_id_of(path: str) -> str:
    return path.rpartition("/")[2]


@dataclass(frozen=True)
class DocumentSnapshot:
    id: str
    path: str
    data: Document


@dataclass(frozen=True)
class Query:
    """
    A read over the direct children of one collection.
    """
    collection: str
    order_by: Optional[str] = None
    descending: bool = False


@dataclass(frozen=True)
class WriteOp:
    """One write in an atomic batch: 'set', 'update' or 'delete'."""
    kind: str
    path: str
    data: Document = field(default_factory=dict)

    @classmethod
    def set(cls, path: str, data: Document) -> "WriteOp":
        return cls("set", path, dict(data))

    @classmethod
    def update(cls, path: str, fields: Document) -> "WriteOp":
        return cls("update", path, dict(fields))

    @classmethod
    def delete(cls, path: str) -> "WriteOp":
        return cls("delete", path)


class ListenerRegistration:
    """Handle returned by ``DocumentStore.listen``; ``remove`` is idempotent."""

    def __init__(self, remove: Callable[[], None]) -> None:
        self._remove: Optional[Callable[[], None]] = remove

    @property
    def active(self) -> bool:
        return self._remove is not None

    def remove(self) -> None:
        remove, self._remove = self._remove, None
        if remove is not None:
            remove()


def sort_snapshots(snapshots: Iterable[Tuple[int, DocumentSnapshot]], query: Query) -> List[DocumentSnapshot]:
    """
    Order (sequence, snapshot) pairs by ``query.order_by``. Ties keep write
    order, so with ``descending`` the most recently written document comes first.
    """
    items = list(snapshots)
    if query.order_by is None:
        items.sort(key=lambda pair: pair[0], reverse=query.descending)
    else:
        field_name = query.order_by
        items.sort(key=lambda pair: (_sort_value(pair[1].data.get(field_name)), pair[0]), reverse=query.descending)
    return [snap for _, snap in items]


def _sort_value(value: Any) -> Any:
    # Missing values sort first, like a null in the store's ordering.
    return (0, "") if value is None else (1, value)


class ListenerHub:
    """
    Keeps the change listeners of a store and fans out snapshots.

    ``snapshot`` must be a synchronous callable returning the current result of
    a query; it is invoked once on registration and after every write that
    touches the listened collection.
    """

    def __init__(self, snapshot: Callable[[Query], List[DocumentSnapshot]]) -> None:
        self._snapshot = snapshot
        self._lock = RLock()
        # Serializes snapshot-then-deliver so a listener never sees an older state after a newer one.
        self._emit_lock = RLock()
        self._listeners: Dict[int, Tuple[Query, SnapshotCallback, Optional[ErrorCallback]]] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)

    def add(
        self,
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback],
        initial: Optional[Callable[[Callable[[], None]], Any]] = None,
    ) -> ListenerRegistration:
        """
        Register a listener and deliver the current result. ``initial``, when
        given, schedules that first delivery (e.g. on a worker thread);
        otherwise it runs inline.
        """
        with self._lock:
            token = next(self._ids)
            self._listeners[token] = (query, on_snapshot, on_error)
        logger.debug("Listener %s attached to %s", token, query.collection)
        registration = ListenerRegistration(lambda: self._remove(token))

        def first() -> None:
            self._emit(token, query, on_snapshot, on_error)

        if initial is None:
            first()
        else:
            initial(first)
        return registration

    def _remove(self, token: int) -> None:
        with self._lock:
            removed = self._listeners.pop(token, None)
        if removed is not None:
            logger.debug("Listener %s detached from %s", token, removed[0].collection)

    def notify(self, collections: Iterable[str]) -> None:
        targets = set(collections)
        with self._lock:
            listeners = [
                (token, entry) for token, entry in self._listeners.items() if entry[0].collection in targets
            ]
        for token, (query, on_snapshot, on_error) in listeners:
            self._emit(token, query, on_snapshot, on_error)

    def fail(self, collection: str, error: Exception) -> int:
        """Deliver ``error`` to every listener of ``collection`` and detach them."""
        with self._lock:
            tokens = [t for t, entry in self._listeners.items() if entry[0].collection == collection]
            entries = [self._listeners.pop(t) for t in tokens]
        for _, _, on_error in entries:
            if on_error is not None:
                on_error(error)
        return len(entries)

    def _emit(
        self,
        token: int,
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback],
    ) -> None:
        with self._emit_lock:
            with self._lock:
                if token not in self._listeners:
                    return
            try:
                docs = self._snapshot(query)
                on_snapshot(docs)
            except Exception as exc:
                logger.warning("Listener %s on %s failed: %s", token, query.collection, exc)
                if on_error is None:
                    raise
                on_error(exc)


# PUBLIC_INTERFACE
class DocumentStore(ABC):
    """
    Contract of the document database backing the service layer.

    Paths alternate collection/document segments, e.g. ``users/{uid}`` and
    ``users/{uid}/todos/{todoId}``. Update and delete of a missing document
    raise DocumentNotFound.
    """

    def new_document_id(self, collection: str) -> str:
        """Return a fresh, unique document id for ``collection``."""
        return uuid.uuid4().hex[:20]

    @abstractmethod
    async def get(self, path: str) -> Optional[Document]:
        """Return the document at ``path`` or None."""

    @abstractmethod
    async def set(self, path: str, data: Document) -> None:
        """Create or overwrite the document at ``path``."""

    @abstractmethod
    async def update(self, path: str, fields: Document) -> None:
        """Merge ``fields`` into an existing document."""

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Delete an existing document."""

    @abstractmethod
    async def query(self, query: Query) -> List[DocumentSnapshot]:
        """Return the documents of ``query.collection`` in the requested order."""

    @abstractmethod
    async def commit(self, ops: Sequence[WriteOp]) -> None:
        """
        Apply ``ops`` atomically: either every write lands or none does.
        """

    @abstractmethod
    def listen(
        self,
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> ListenerRegistration:
        """
        Call ``on_snapshot`` with the current result of ``query`` now and after
        every change to the collection, until the registration is removed.
        """

    async def delete_collection(self, collection: str) -> int:
        """Delete every document directly under ``collection``; return the count."""
        docs = await self.query(Query(collection))
        if docs:
            await self.commit([WriteOp.delete(d.path) for d in docs])
        return len(docs)


class InMemoryDocumentStore(DocumentStore):
    """
    Thread-safe in-memory document store suitable for testing and default runtime.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._docs: Dict[str, Tuple[int, Document]] = {}
        self._seq = itertools.count(1)
        self._hub = ListenerHub(self._run_query)

    @property
    def listener_count(self) -> int:
        return len(self._hub)

    def _run_query(self, query: Query) -> List[DocumentSnapshot]:
        with self._lock:
            pairs = [
                (seq, DocumentSnapshot(id=document_id_of(path), path=path, data=dict(data)))
                for path, (seq, data) in self._docs.items()
                if parent_of(path) == query.collection
            ]
        return sort_snapshots(pairs, query)

    async def get(self, path: str) -> Optional[Document]:
        with self._lock:
            entry = self._docs.get(path)
            return None if entry is None else dict(entry[1])

    async def set(self, path: str, data: Document) -> None:
        await self.commit([WriteOp.set(path, data)])

    async def update(self, path: str, fields: Document) -> None:
        await self.commit([WriteOp.update(path, fields)])

    async def delete(self, path: str) -> None:
        await self.commit([WriteOp.delete(path)])

    async def query(self, query: Query) -> List[DocumentSnapshot]:
        return self._run_query(query)

    async def commit(self, ops: Sequence[WriteOp]) -> None:
        with self._lock:
            staged = dict(self._docs)
            for op in ops:
                _apply(staged, op, self._seq)
            self._docs = staged
        self._hub.notify(parent_of(op.path) for op in ops)

    def listen(
        self,
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> ListenerRegistration:
        return self._hub.add(query, on_snapshot, on_error)

    def fail_listeners(self, collection: str, error: Exception) -> int:
        """
        Terminate every listener on ``collection`` with ``error``, as the store
        does when access to a collection is revoked.
        """
        return self._hub.fail(collection, error)


def _apply(docs: Dict[str, Tuple[int, Document]], op: WriteOp, seq: Iterator[int]) -> None:
    existing = docs.get(op.path)
    if op.kind == "set":
        order = existing[0] if existing is not None else next(seq)
        docs[op.path] = (order, dict(op.data))
    elif op.kind == "update":
        if existing is None:
            raise DocumentNotFound(op.path)
        merged = dict(existing[1])
        merged.update(op.data)
        docs[op.path] = (existing[0], merged)
    elif op.kind == "delete":
        if existing is None:
            raise DocumentNotFound(op.path)
        del docs[op.path]
    else:
        raise ValueError(f"Unknown write kind: {op.kind}")


# PUBLIC_INTERFACE
def get_document_store(settings: Settings) -> DocumentStore:
    """
    Factory returning the backing store selected by settings.
    - memory: InMemoryDocumentStore
    - sqlite: SQLiteDocumentStore
    """
    if settings.persistence_backend == "sqlite":
        from .db import SQLiteDocumentStore

        return SQLiteDocumentStore(settings.sqlite_db_path)
    return InMemoryDocumentStore()
