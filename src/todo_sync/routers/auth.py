from __future__ import annotations

from typing import Awaitable, Callable, Optional, Tuple, TypeVar

from fastapi import APIRouter, Depends, Response, status

from ..auth import AuthService
from ..dependencies import (
    get_auth_service,
    get_optional_session,
    get_session_registry,
    require_session,
    require_user,
)
from ..models import User
from ..schemas import (
    Credentials,
    DisplayNameUpdate,
    PasswordResetRequest,
    ReauthenticateRequest,
    SessionOut,
    SignUpRequest,
    UserOut,
)
from ..sessions import ClientSession, SessionRegistry

R = TypeVar("R")

router = APIRouter(
    prefix="/api/v1/auth",
    tags=["auth"],
)


async def _on_session(
    sessions: SessionRegistry,
    existing: Optional[ClientSession],
    action: Callable[[AuthService], Awaitable[R]],
) -> Tuple[ClientSession, R]:
    """Run ``action`` on the caller's session, opening one when there is none."""
    session = sessions.open(existing)
    try:
        result = await action(session.auth)
    finally:
        sessions.release_if_signed_out(session)
    return session, result


def _session_out(session: ClientSession, user: User) -> SessionOut:
    return SessionOut(access_token=session.token, user=UserOut.from_user(user))


# PUBLIC_INTERFACE
@router.post(
    "/sign-in",
    response_model=SessionOut,
    summary="Sign In",
    description="Start a session with email and password. Returns the bearer token for later requests.",
    responses={401: {"description": "Invalid credentials"}, 422: {"description": "Validation error"}},
)
async def sign_in(
    payload: Credentials,
    existing: Optional[ClientSession] = Depends(get_optional_session),
    sessions: SessionRegistry = Depends(get_session_registry),
) -> SessionOut:
    session, user = await _on_session(sessions, existing, lambda auth: auth.sign_in(payload.email, payload.password))
    return _session_out(session, user)


# PUBLIC_INTERFACE
@router.post(
    "/sign-up",
    response_model=SessionOut,
    status_code=status.HTTP_201_CREATED,
    summary="Sign Up",
    description="Register a new email/password account and sign it in.",
    responses={401: {"description": "Account could not be created"}, 422: {"description": "Validation error"}},
)
async def sign_up(
    payload: SignUpRequest,
    existing: Optional[ClientSession] = Depends(get_optional_session),
    sessions: SessionRegistry = Depends(get_session_registry),
) -> SessionOut:
    session, user = await _on_session(sessions, existing, lambda auth: auth.sign_up(payload.email, payload.password))
    return _session_out(session, user)


# PUBLIC_INTERFACE
@router.post(
    "/anonymous",
    response_model=SessionOut,
    summary="Continue as Guest",
    description="Start an anonymous session. Reuses the caller's guest session when there is one.",
)
async def sign_in_anonymously(
    existing: Optional[ClientSession] = Depends(get_optional_session),
    sessions: SessionRegistry = Depends(get_session_registry),
) -> SessionOut:
    session, user = await _on_session(sessions, existing, lambda auth: auth.sign_in_anonymously())
    return _session_out(session, user)


# PUBLIC_INTERFACE
@router.post(
    "/sign-out",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Sign Out",
    description="End the caller's session; its token stops working.",
    responses={401: {"description": "No user is signed in"}},
)
async def sign_out(
    session: ClientSession = Depends(require_session),
    sessions: SessionRegistry = Depends(get_session_registry),
) -> Response:
    try:
        session.auth.sign_out()
    finally:
        sessions.release_if_signed_out(session)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# PUBLIC_INTERFACE
@router.post(
    "/password-reset",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Send Password Reset",
    responses={401: {"description": "No account for this email"}, 422: {"description": "Validation error"}},
)
async def send_password_reset(
    payload: PasswordResetRequest,
    existing: Optional[ClientSession] = Depends(get_optional_session),
    sessions: SessionRegistry = Depends(get_session_registry),
) -> dict:
    await _on_session(sessions, existing, lambda auth: auth.send_password_reset(payload.email))
    return {"message": "Password reset email sent"}


# PUBLIC_INTERFACE
@router.post(
    "/reauthenticate",
    response_model=UserOut,
    summary="Reauthenticate",
    description="Confirm the password of the signed-in account to refresh the session.",
)
async def reauthenticate(
    payload: ReauthenticateRequest, auth: AuthService = Depends(get_auth_service)
) -> UserOut:
    return UserOut.from_user(await auth.reauthenticate(payload.password))


# PUBLIC_INTERFACE
@router.get("/me", response_model=UserOut, summary="Current User")
async def current_user(user: User = Depends(require_user)) -> UserOut:
    return UserOut.from_user(user)


# PUBLIC_INTERFACE
@router.patch("/me", response_model=UserOut, summary="Update Display Name")
async def update_display_name(
    payload: DisplayNameUpdate,
    _: User = Depends(require_user),
    auth: AuthService = Depends(get_auth_service),
) -> UserOut:
    return UserOut.from_user(await auth.update_display_name(payload.display_name))


# PUBLIC_INTERFACE
@router.delete(
    "/me",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Account",
    description=(
        "Permanently delete the signed-in account with its todos. Fails with 401 "
        "ReauthenticationRequired when the session is too old; reauthenticate and retry."
    ),
)
async def delete_account(
    session: ClientSession = Depends(require_session),
    sessions: SessionRegistry = Depends(get_session_registry),
) -> Response:
    await session.auth.delete_account()
    sessions.release_if_signed_out(session)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
