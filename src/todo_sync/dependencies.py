from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .auth import AuthService
from .errors import AuthError
from .identity import NO_CURRENT_USER, AccountDirectory, InMemoryIdentityProvider
from .models import User
from .repositories import DocumentTodoRepository, TodoRepository
from .sessions import ClientSession, SessionRegistry
from .settings import Settings
from .store import DocumentStore, get_document_store

_bearer = HTTPBearer(auto_error=False)


@dataclass
class Services:
    """Collaborators shared by every request of one application instance."""

    settings: Settings
    store: DocumentStore
    accounts: AccountDirectory
    sessions: SessionRegistry
    todos: TodoRepository


# PUBLIC_INTERFACE
def build_services(settings: Settings) -> Services:
    """
    Wire the store, account directory and services selected by ``settings``.

    Every HTTP session gets its own identity-provider client over the shared
    account directory, and with it its own AuthService.
    """
    store = get_document_store(settings)
    accounts = AccountDirectory(
        min_password_length=settings.min_password_length,
        max_failed_attempts=settings.max_failed_sign_ins,
        recent_login_window=timedelta(seconds=settings.recent_login_window_seconds),
    )

    def new_auth() -> AuthService:
        return AuthService(InMemoryIdentityProvider(accounts), store, settings)

    return Services(
        settings=settings,
        store=store,
        accounts=accounts,
        sessions=SessionRegistry(new_auth),
        todos=DocumentTodoRepository(store, settings),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_session_registry(services: Services = Depends(get_services)) -> SessionRegistry:
    return services.sessions


def get_todo_repository(services: Services = Depends(get_services)) -> TodoRepository:
    return services.todos


def get_app_settings(services: Services = Depends(get_services)) -> Settings:
    return services.settings


def _unauthenticated() -> AuthError:
    return AuthError("No user is currently signed in", code=NO_CURRENT_USER)


# PUBLIC_INTERFACE
def get_optional_session(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    sessions: SessionRegistry = Depends(get_session_registry),
) -> Optional[ClientSession]:
    """Session named by the bearer token, or None when absent or unknown."""
    return sessions.get(creds.credentials if creds is not None else None)


# PUBLIC_INTERFACE
def require_session(session: Optional[ClientSession] = Depends(get_optional_session)) -> ClientSession:
    """Dependency resolving the caller's session; 401 (via AuthError) without a valid token."""
    if session is None:
        raise _unauthenticated()
    return session


def get_auth_service(session: ClientSession = Depends(require_session)) -> AuthService:
    return session.auth


# PUBLIC_INTERFACE
def require_user(auth: AuthService = Depends(get_auth_service)) -> User:
    """
    Dependency resolving the user signed in on the caller's session; 401
    (via AuthError) when the caller has no session or it is signed out.
    """
    user = auth.current_user
    if user is None:
        raise _unauthenticated()
    return user
