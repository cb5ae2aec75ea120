import asyncio
from dataclasses import replace
from datetime import timedelta

import pytest

from todo_sync.errors import (
    DataAccessError,
    NotFoundError,
    PermissionDeniedError,
    TodoLimitExceeded,
    ValidationError,
)
from todo_sync.models import todos_path
from todo_sync.repositories import DocumentTodoRepository
from todo_sync.store import PermissionDenied

OWNER = "user-1"


class TestCrud:
    async def test_create_trims_and_defaults(self, repo):
        todo = await repo.create_todo(OWNER, "  Buy milk  ")
        assert todo.title == "Buy milk"
        assert todo.completed is False
        assert todo.created_at == todo.updated_at
        assert todo.id

    async def test_create_rejects_blank_title_without_writing(self, repo, store):
        with pytest.raises(ValidationError) as exc_info:
            await repo.create_todo(OWNER, "   ")
        assert exc_info.value.user_message == "Title cannot be empty"
        assert await repo.fetch_todos(OWNER) == []

    async def test_ids_are_unique(self, repo):
        ids = {(await repo.create_todo(OWNER, f"t{i}")).id for i in range(20)}
        assert len(ids) == 20

    async def test_fetch_newest_first(self, repo):
        for title in ("first", "second", "third"):
            await repo.create_todo(OWNER, title)
        assert [t.title for t in await repo.fetch_todos(OWNER)] == ["third", "second", "first"]

    async def test_fetch_unknown_owner_is_empty(self, repo):
        assert await repo.fetch_todos("nobody") == []

    async def test_owners_are_isolated(self, repo):
        todo = await repo.create_todo(OWNER, "mine")
        assert await repo.fetch_todos("user-2") == []
        with pytest.raises(NotFoundError):
            await repo.get_todo("user-2", todo.id)
        with pytest.raises(NotFoundError):
            await repo.update_todo_completion("user-2", todo.id, True)

    async def test_update_completion_refreshes_updated_at(self, repo):
        todo = await repo.create_todo(OWNER, "x")
        await repo.update_todo_completion(OWNER, todo.id, True)
        updated = await repo.get_todo(OWNER, todo.id)
        assert updated.completed is True
        assert updated.updated_at >= todo.updated_at
        assert updated.created_at == todo.created_at

    async def test_update_title_validates_first(self, repo):
        todo = await repo.create_todo(OWNER, "x")
        with pytest.raises(ValidationError):
            await repo.update_todo_title(OWNER, todo.id, "y" * 201)
        await repo.update_todo_title(OWNER, todo.id, "  renamed ")
        assert (await repo.get_todo(OWNER, todo.id)).title == "renamed"

    async def test_update_missing_raises_not_found(self, repo):
        with pytest.raises(NotFoundError):
            await repo.update_todo_title(OWNER, "missing", "title")

    async def test_delete(self, repo):
        todo = await repo.create_todo(OWNER, "x")
        await repo.delete_todo(OWNER, todo.id)
        assert await repo.fetch_todos(OWNER) == []
        with pytest.raises(NotFoundError):
            await repo.delete_todo(OWNER, todo.id)

    async def test_max_todos_per_user(self, store, settings):
        repo = DocumentTodoRepository(store, replace(settings, max_todos_per_user=2))
        await repo.create_todo(OWNER, "a")
        await repo.create_todo(OWNER, "b")
        with pytest.raises(TodoLimitExceeded) as exc_info:
            await repo.create_todo(OWNER, "c")
        assert exc_info.value.user_message == "You can have at most 2 todos"
        assert not isinstance(exc_info.value, ValidationError)
        assert len(await repo.fetch_todos(OWNER)) == 2
        assert len(await repo.fetch_todos("user-2")) == 0

    async def test_blank_title_never_reaches_store(self, repo, store, monkeypatch):
        calls = []

        async def spy_query(query):
            calls.append(query)
            return []

        monkeypatch.setattr(store, "query", spy_query)
        with pytest.raises(ValidationError):
            await repo.create_todo(OWNER, "   ")
        assert calls == []

    async def test_updated_at_never_precedes_created_at(self, repo, monkeypatch):
        todo = await repo.create_todo(OWNER, "x")
        monkeypatch.setattr("todo_sync.repositories.utcnow", lambda: todo.created_at - timedelta(hours=1))

        await repo.update_todo_completion(OWNER, todo.id, True)
        await repo.update_todo_title(OWNER, todo.id, "renamed")
        await repo.apply_batch(OWNER, complete_ids=[todo.id])

        [stored] = await repo.fetch_todos(OWNER)
        assert stored.title == "renamed"
        assert stored.updated_at == stored.created_at

    async def test_malformed_documents_are_skipped(self, repo, store):
        await repo.create_todo(OWNER, "ok")
        await store.set(f"{todos_path(OWNER)}/broken", {"title": "no owner"})
        assert [t.title for t in await repo.fetch_todos(OWNER)] == ["ok"]


class TestBatch:
    async def test_apply_batch_is_atomic(self, repo):
        a = await repo.create_todo(OWNER, "a")
        b = await repo.create_todo(OWNER, "b")
        with pytest.raises(NotFoundError):
            await repo.apply_batch(OWNER, delete_ids=[a.id], complete_ids=[b.id, "missing"])
        assert {t.id for t in await repo.fetch_todos(OWNER)} == {a.id, b.id}
        assert not any(t.completed for t in await repo.fetch_todos(OWNER))

    async def test_apply_batch_empty_is_noop(self, repo):
        await repo.apply_batch(OWNER)


class TestObserve:
    async def test_initial_snapshot_then_changes(self, repo):
        await repo.create_todo(OWNER, "existing")
        sub = repo.observe_todos(OWNER)
        assert [t.title for t in await sub.next(timeout=1)] == ["existing"]

        await repo.create_todo(OWNER, "new")
        assert [t.title for t in await sub.next(timeout=1)] == ["new", "existing"]
        sub.close()

    async def test_other_owners_do_not_trigger(self, repo):
        sub = repo.observe_todos(OWNER)
        assert await sub.next(timeout=1) == []
        await repo.create_todo("user-2", "theirs")
        with pytest.raises(asyncio.TimeoutError):
            await sub.next(timeout=0.05)
        sub.close()

    async def test_close_releases_store_listener_once(self, repo, store):
        sub = repo.observe_todos(OWNER)
        assert store.listener_count == 1
        sub.close()
        sub.close()
        assert store.listener_count == 0
        await repo.create_todo(OWNER, "after close")
        assert sub.emitted == 1

    async def test_listener_error_emits_empty_list_by_default(self, repo, store):
        await repo.create_todo(OWNER, "x")
        sub = repo.observe_todos(OWNER)
        assert len(await sub.next(timeout=1)) == 1
        store.fail_listeners(todos_path(OWNER), PermissionDenied("revoked"))
        assert await sub.next(timeout=1) == []
        assert not sub.closed
        sub.close()

    async def test_listener_error_raises_when_configured(self, store, settings):
        repo = DocumentTodoRepository(store, replace(settings, listener_error_policy="raise"))
        sub = repo.observe_todos(OWNER)
        assert await sub.next(timeout=1) == []
        store.fail_listeners(todos_path(OWNER), PermissionDenied("revoked"))
        with pytest.raises(PermissionDeniedError) as exc_info:
            await sub.next(timeout=1)
        assert isinstance(exc_info.value, DataAccessError)
        assert sub.closed
