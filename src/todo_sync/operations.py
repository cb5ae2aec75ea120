"""
Operations composed from TodoRepository primitives.

The default strategy is fetch-then-iterate: the full list is fetched, then
one write is issued per todo. A failure part way through propagates and
leaves the earlier writes in place; there is no rollback. Pass
``atomic=True`` to route the writes through ``TodoRepository.apply_batch``
instead, which applies all of them or none.
"""
from __future__ import annotations

import logging

from .models import TodoStatistics
from .repositories import TodoRepository

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
async def delete_all_todos(repo: TodoRepository, owner_id: str, *, atomic: bool = False) -> int:
    """Delete every todo of ``owner_id`` and return how many were targeted."""
    todos = await repo.fetch_todos(owner_id)
    if atomic:
        await repo.apply_batch(owner_id, delete_ids=[t.id for t in todos])
        return len(todos)

    done = 0
    try:
        for todo in todos:
            await repo.delete_todo(owner_id, todo.id)
            done += 1
    except Exception:
        logger.warning("delete_all_todos stopped after %d of %d todos for user %s", done, len(todos), owner_id)
        raise
    logger.info("Deleted %d todos for user %s", done, owner_id)
    return done


# PUBLIC_INTERFACE
async def complete_all_todos(repo: TodoRepository, owner_id: str, *, atomic: bool = False) -> int:
    """Mark every active todo of ``owner_id`` completed; return how many changed."""
    active = [t for t in await repo.fetch_todos(owner_id) if not t.completed]
    if atomic:
        await repo.apply_batch(owner_id, complete_ids=[t.id for t in active])
        return len(active)

    done = 0
    try:
        for todo in active:
            await repo.update_todo_completion(owner_id, todo.id, True)
            done += 1
    except Exception:
        logger.warning("complete_all_todos stopped after %d of %d todos for user %s", done, len(active), owner_id)
        raise
    logger.info("Completed %d todos for user %s", done, owner_id)
    return done


# PUBLIC_INTERFACE
async def get_todo_statistics(repo: TodoRepository, owner_id: str) -> TodoStatistics:
    """Aggregate counts client-side from a fresh fetch."""
    return TodoStatistics.from_todos(await repo.fetch_todos(owner_id))
