from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, DefaultDict, Iterator, List, Sequence

from .errors import (
    AppError,
    DataAccessError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    TodoLimitExceeded,
)
from .models import (
    TODO_CREATED_AT,
    TODO_IS_COMPLETED,
    TODO_TITLE,
    TODO_UPDATED_AT,
    Todo,
    todo_path,
    todos_path,
    utcnow,
)
from .settings import Settings
from .store import (
    DocumentNotFound,
    DocumentSnapshot,
    DocumentStore,
    PermissionDenied,
    Query,
    StoreError,
    StoreUnavailable,
    WriteOp,
)
from .streams import Subscription
from .validation import trimmed, validate_todo_title

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
@contextmanager
def translate_store_errors(action: str, **context: Any) -> Iterator[None]:
    """
    Re-raise backing-store failures as DataAccessError subclasses.

    The store's own message becomes the technical description; users only
    ever see the generic data-access message.
    """
    try:
        yield
    except AppError:
        raise
    except DocumentNotFound as exc:
        raise NotFoundError(f"{action}: {exc}", context=context) from exc
    except PermissionDenied as exc:
        raise PermissionDeniedError(f"{action}: {exc}", context=context) from exc
    except StoreUnavailable as exc:
        raise NetworkError(f"{action}: {exc}", context=context) from exc
    except StoreError as exc:
        raise DataAccessError(f"{action}: {exc}", context=context) from exc


def _as_data_access_error(exc: Exception) -> DataAccessError:
    if isinstance(exc, DataAccessError):
        return exc
    message = f"Todo listener failed: {exc}"
    if isinstance(exc, PermissionDenied):
        return PermissionDeniedError(message)
    if isinstance(exc, StoreUnavailable):
        return NetworkError(message)
    return DataAccessError(message)


# PUBLIC_INTERFACE
class TodoRepository(ABC):
    """
    Owner-scoped todo CRUD plus real-time observation.

    Bulk operations and statistics are composed on top of this interface in
    ``todo_sync.operations``.
    """

    @abstractmethod
    async def create_todo(self, owner_id: str, title: str) -> Todo:
        logger.info("Creating todo for user: %s", owner_id)
        clean_title = self._validate_title(title)
        limit = self._settings.max_todos_per_user

        # Count and insert under one lock so concurrent creates cannot overshoot the limit.
        async with self._create_locks[owner_id]:
            with translate_store_errors("Failed to create todo", owner_id=owner_id):
                existing = await self._store.query(Query(todos_path(owner_id)))
            if len(existing) >= limit:
                logger.info("User %s is at the todo limit (%d)", owner_id, limit)
                raise TodoLimitExceeded(limit, context={"owner_id": owner_id})

            now = utcnow()
            with translate_store_errors("Failed to create todo", owner_id=owner_id):
                todo = Todo(
                    id=self._store.new_document_id(todos_path(owner_id)),
                    owner_id=owner_id,
                    title=clean_title,
                    completed=False,
                    created_at=now,
                    updated_at=now,
                )
                await self._store.set(todo_path(owner_id, todo.id), todo.to_document())

        logger.info("Todo created with ID: %s", todo.id)
        return todo

    async def get_todo(self, owner_id: str, todo_id: str) -> Todo:
        with translate_store_errors("Failed to fetch todo", owner_id=owner_id, todo_id=todo_id):
            data = await self._store.get(todo_path(owner_id, todo_id))
        if data is None:
            raise NotFoundError(f"Todo {todo_id} not found", context={"owner_id": owner_id})
        try:
            return Todo.from_document(data, document_id=todo_id)
        except (KeyError, ValueError, TypeError) as exc:
            raise DataAccessError(f"Malformed todo document {todo_id}: {exc}") from exc

    async def fetch_todos(self, owner_id: str) -> List[Todo]:
        logger.info("Fetching todos for user: %s", owner_id)
        with translate_store_errors("Failed to fetch todos", owner_id=owner_id):
            snapshots = await self._store.query(self._query(owner_id))
        todos = self._decode(snapshots)
        logger.info("Fetched %d todos", len(todos))
        return todos

    async def update_todo_completion(self, owner_id: str, todo_id: str, completed: bool) -> None:
        logger.info("Updating todo %s completion to: %s", todo_id, completed)
        current = await self.get_todo(owner_id, todo_id)
        updated = current.with_completion(completed, now=utcnow())
        with translate_store_errors("Failed to update todo completion", owner_id=owner_id, todo_id=todo_id):
            await self._store.update(
                todo_path(owner_id, todo_id),
                {TODO_IS_COMPLETED: completed, TODO_UPDATED_AT: updated.updated_at},
            )

    async def update_todo_title(self, owner_id: str, todo_id: str, title: str) -> None:
        logger.info("Updating todo %s title", todo_id)
        clean_title = self._validate_title(title)
        current = await self.get_todo(owner_id, todo_id)
        updated = current.with_title(clean_title, now=utcnow())
        with translate_store_errors("Failed to update todo title", owner_id=owner_id, todo_id=todo_id):
            await self._store.update(
                todo_path(owner_id, todo_id),
                {TODO_TITLE: clean_title, TODO_UPDATED_AT: updated.updated_at},
            )

    async def delete_todo(self, owner_id: str, todo_id: str) -> None:
        logger.info("Deleting todo: %s", todo_id)
        with translate_store_errors("Failed to delete todo", owner_id=owner_id, todo_id=todo_id):
            await self._store.delete(todo_path(owner_id, todo_id))

    def observe_todos(self, owner_id: str) -> Subscription[List[Todo]]:
        logger.info("Setting up real-time listener for user: %s", owner_id)
        subscription: Subscription[List[Todo]] = Subscription(name=f"todos:{owner_id}")
        policy = self._settings.listener_error_policy

        def on_snapshot(snapshots: List[DocumentSnapshot]) -> None:
            todos = self._decode(snapshots)
            logger.debug("Snapshot received: %d todos", len(todos))
            subscription.push(todos)

        def on_error(exc: Exception) -> None:
            error = _as_data_access_error(exc)
            logger.error("Snapshot listener error for user %s: %s", owner_id, error.description)
            if policy == "raise":
                subscription.fail(error)
            else:
                subscription.push([])

        registration = self._store.listen(self._query(owner_id), on_snapshot, on_error)
        subscription.bind(registration.remove)
        return subscription

    async def apply_batch(
        self,
        owner_id: str,
        delete_ids: Sequence[str] = (),
        complete_ids: Sequence[str] = (),
    ) -> None:
        if not delete_ids and not complete_ids:
            return
        now = utcnow()
        ops = [WriteOp.delete(todo_path(owner_id, todo_id)) for todo_id in delete_ids]
        if complete_ids:
            current = {todo.id: todo for todo in await self.fetch_todos(owner_id)}
            for todo_id in complete_ids:
                # Unknown ids still get an update op so the commit fails as a whole.
                todo = current.get(todo_id)
                updated_at = todo.with_completion(True, now=now).updated_at if todo is not None else now
                ops.append(
                    WriteOp.update(todo_path(owner_id, todo_id), {TODO_IS_COMPLETED: True, TODO_UPDATED_AT: updated_at})
                )
        logger.info("Applying batch of %d writes for user: %s", len(ops), owner_id)
        with translate_store_errors("Batch write failed", owner_id=owner_id):
            await self._store.commit(ops)
