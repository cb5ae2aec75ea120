from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Response, status

from .. import operations
from ..dependencies import get_app_settings, get_todo_repository, require_user
from ..models import User
from ..repositories import TodoRepository
from ..schemas import (
    BulkResult,
    StatisticsOut,
    TodoCompletionUpdate,
    TodoCreate,
    TodoOut,
    TodoTitleUpdate,
)
from ..settings import Settings

router = APIRouter(
    prefix="/api/v1/todos",
    tags=["todos"],
)

_NOT_FOUND = {404: {"description": "Todo not found"}}
_UNAUTHENTICATED = {401: {"description": "No user is signed in"}}


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=TodoOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Todo",
    description="Create a new, active Todo for the signed-in user. The title is stored trimmed.",
    responses={
        201: {"description": "Todo created successfully"},
        422: {"description": "Validation error"},
        **_UNAUTHENTICATED,
    },
)
async def create_todo(
    payload: TodoCreate,
    user: User = Depends(require_user),
    repo: TodoRepository = Depends(get_todo_repository),
) -> TodoOut:
    """
    Create a new Todo.
    """
    todo = await repo.create_todo(user.id, payload.title)
    return TodoOut.from_todo(todo)


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=List[TodoOut],
    summary="List Todos",
    description="List every todo of the signed-in user, newest first.",
    responses={200: {"description": "List retrieved successfully"}, **_UNAUTHENTICATED},
)
async def list_todos(
    user: User = Depends(require_user),
    repo: TodoRepository = Depends(get_todo_repository),
) -> List[TodoOut]:
    return [TodoOut.from_todo(t) for t in await repo.fetch_todos(user.id)]


# PUBLIC_INTERFACE
@router.get(
    "/statistics",
    response_model=StatisticsOut,
    summary="Todo Statistics",
    description="Total, completed and active counts with the completion percentage.",
    responses=_UNAUTHENTICATED,
)
async def todo_statistics(
    user: User = Depends(require_user),
    repo: TodoRepository = Depends(get_todo_repository),
) -> StatisticsOut:
    stats = await operations.get_todo_statistics(repo, user.id)
    return StatisticsOut.from_statistics(stats)


# PUBLIC_INTERFACE
@router.post(
    "/complete-all",
    response_model=BulkResult,
    summary="Complete All Todos",
    description=(
        "Mark every active todo completed. In sequential mode a failure part way "
        "leaves earlier todos completed; in atomic mode nothing changes on failure."
    ),
    responses=_UNAUTHENTICATED,
)
async def complete_all_todos(
    user: User = Depends(require_user),
    repo: TodoRepository = Depends(get_todo_repository),
    settings: Settings = Depends(get_app_settings),
) -> BulkResult:
    affected = await operations.complete_all_todos(repo, user.id, atomic=settings.atomic_bulk_writes)
    return BulkResult(affected=affected)


# PUBLIC_INTERFACE
@router.delete(
    "/",
    response_model=BulkResult,
    summary="Delete All Todos",
    description="Delete every todo of the signed-in user.",
    responses=_UNAUTHENTICATED,
)
async def delete_all_todos(
    user: User = Depends(require_user),
    repo: TodoRepository = Depends(get_todo_repository),
    settings: Settings = Depends(get_app_settings),
) -> BulkResult:
    affected = await operations.delete_all_todos(repo, user.id, atomic=settings.atomic_bulk_writes)
    return BulkResult(affected=affected)


# PUBLIC_INTERFACE
@router.get(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Get Todo",
    description="Retrieve a single Todo by its ID.",
    responses={200: {"description": "Todo found"}, **_NOT_FOUND, **_UNAUTHENTICATED},
)
async def get_todo(
    todo_id: str,
    user: User = Depends(require_user),
    repo: TodoRepository = Depends(get_todo_repository),
) -> TodoOut:
    return TodoOut.from_todo(await repo.get_todo(user.id, todo_id))


# PUBLIC_INTERFACE
@router.patch(
    "/{todo_id}/title",
    response_model=TodoOut,
    summary="Rename Todo",
    description="Replace the title of a Todo. The new title is validated and stored trimmed.",
    responses={200: {"description": "Todo updated"}, **_NOT_FOUND, **_UNAUTHENTICATED},
)
async def update_todo_title(
    todo_id: str,
    payload: TodoTitleUpdate,
    user: User = Depends(require_user),
    repo: TodoRepository = Depends(get_todo_repository),
) -> TodoOut:
    await repo.update_todo_title(user.id, todo_id, payload.title)
    return TodoOut.from_todo(await repo.get_todo(user.id, todo_id))


# PUBLIC_INTERFACE
@router.patch(
    "/{todo_id}/completion",
    response_model=TodoOut,
    summary="Set Todo Completion",
    description="Mark a Todo completed or active again.",
    responses={200: {"description": "Todo updated"}, **_NOT_FOUND, **_UNAUTHENTICATED},
)
async def update_todo_completion(
    todo_id: str,
    payload: TodoCompletionUpdate,
    user: User = Depends(require_user),
    repo: TodoRepository = Depends(get_todo_repository),
) -> TodoOut:
    await repo.update_todo_completion(user.id, todo_id, payload.completed)
    return TodoOut.from_todo(await repo.get_todo(user.id, todo_id))


# PUBLIC_INTERFACE
@router.delete(
    "/{todo_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Todo",
    description="Delete a Todo by its ID.",
    responses={204: {"description": "Todo deleted"}, **_NOT_FOUND, **_UNAUTHENTICATED},
)
async def delete_todo(
    todo_id: str,
    user: User = Depends(require_user),
    repo: TodoRepository = Depends(get_todo_repository),
) -> Response:
    """
    Delete a Todo.
    """
    await repo.delete_todo(user.id, todo_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
