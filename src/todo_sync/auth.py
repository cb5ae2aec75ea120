from __future__ import annotations

import logging
from typing import Dict, Optional

from .errors import AppError, AuthError, NetworkError, ReauthenticationRequired
from .identity import (
    EMAIL_ALREADY_IN_USE,
    INVALID_EMAIL,
    NETWORK_REQUEST_FAILED,
    NO_CURRENT_USER,
    REQUIRES_RECENT_LOGIN,
    TOO_MANY_REQUESTS,
    USER_NOT_FOUND,
    WEAK_PASSWORD,
    WRONG_PASSWORD,
    IdentityProvider,
    ProviderAccount,
    ProviderError,
)
from .models import USER_DISPLAY_NAME, User, todos_path, user_path
from .repositories import translate_store_errors
from .settings import Settings
from .store import DocumentStore
from .streams import Subscription
from .validation import trimmed, validate_email, validate_length, validate_password

logger = logging.getLogger(__name__)

MAX_DISPLAY_NAME_LENGTH = 100


# PUBLIC_INTERFACE
class AuthService:
    """
    Sign-in/up/out, anonymous sessions and auth-state observation.

    Input is validated locally before the identity provider is contacted, so
    a ValidationError always means no network call was made. Provider
    failures surface as AuthError (or NetworkError for connectivity issues).
    """

    def __init__(self, provider: IdentityProvider, store: DocumentStore, settings: Settings) -> None:
        self._provider = provider
        self._store = store
        self._settings = settings
        self._messages: Dict[str, str] = {
            INVALID_EMAIL: "Invalid email address",
            WRONG_PASSWORD: "Incorrect password",
            USER_NOT_FOUND: "No account found with this email",
            EMAIL_ALREADY_IN_USE: "An account already exists with this email",
            WEAK_PASSWORD: f"Password must be at least {settings.min_password_length} characters",
            TOO_MANY_REQUESTS: "Too many failed attempts. Please try again later.",
            NO_CURRENT_USER: "No user is currently signed in",
        }

    @property
    def current_user(self) -> Optional[User]:
        account = self._provider.current_account
        return None if account is None else self._to_user(account)

    @property
    def is_authenticated(self) -> bool:
        return self._provider.current_account is not None

    @property
    def is_anonymous(self) -> bool:
        account = self._provider.current_account
        return account is not None and account.is_anonymous

    def _to_user(self, account: ProviderAccount) -> User:
        return User(
            id=account.uid,
            email=None if account.is_anonymous else account.email,
            display_name=account.display_name,
            is_anonymous=account.is_anonymous,
            created_at=account.created_at,
        )

    def _map_error(self, exc: ProviderError) -> AppError:
        if exc.code == REQUIRES_RECENT_LOGIN:
            return ReauthenticationRequired()
        if exc.code == NETWORK_REQUEST_FAILED:
            return NetworkError("Network connection error. Please try again.")
        return AuthError(self._messages.get(exc.code, exc.message), code=exc.code)

    def _validate_credentials(self, email: str, password: str) -> None:
        validate_email(email).raise_for_failure("Invalid email")
        validate_password(password, self._settings.min_password_length).raise_for_failure("Invalid password")

    async def sign_in(self, email: str, password: str) -> User:
        logger.info("Attempting sign in for email: %s", email)
        self._validate_credentials(email, password)
        try:
            account = await self._provider.sign_in_with_password(trimmed(email), password)
        except ProviderError as exc:
            logger.error("Sign in failed: %s", exc)
            raise self._map_error(exc) from exc
        logger.info("Sign in successful for user: %s", account.uid)
        return self._to_user(account)

    async def sign_up(self, email: str, password: str) -> User:
        logger.info("Attempting sign up for email: %s", email)
        self._validate_credentials(email, password)
        try:
            account = await self._provider.create_account(trimmed(email), password)
        except ProviderError as exc:
            logger.error("Sign up failed: %s", exc)
            raise self._map_error(exc) from exc
        user = self._to_user(account)
        await self._create_user_document(user)
        logger.info("Sign up successful for user: %s", user.id)
        return user

    async def sign_in_anonymously(self) -> User:
        logger.info("Attempting anonymous sign in")
        try:
            account = await self._provider.sign_in_anonymously()
        except ProviderError as exc:
            logger.error("Anonymous sign in failed: %s", exc)
            raise self._map_error(exc) from exc
        user = self._to_user(account)
        await self._create_user_document(user)
        logger.info("Anonymous sign in successful for user: %s", user.id)
        return user

    def sign_out(self) -> None:
        logger.info("Attempting sign out")
        try:
            self._provider.sign_out()
        except ProviderError as exc:
            logger.error("Sign out failed: %s", exc)
            raise self._map_error(exc) from exc
        logger.info("Sign out successful")

    def observe_auth_state(self) -> Subscription[Optional[User]]:
        """
        Subscribe to session changes. The state at subscription time is
        emitted first; closing the subscription removes the provider listener.
        """
        subscription: Subscription[Optional[User]] = Subscription(name="auth-state")

        def on_change(account: Optional[ProviderAccount]) -> None:
            user = None if account is None else self._to_user(account)
            logger.info("Auth state changed. User: %s", user.id if user else "none")
            subscription.push(user)

        registration = self._provider.add_state_listener(on_change)
        subscription.bind(registration.remove)
        return subscription

    async def send_password_reset(self, email: str) -> None:
        logger.info("Sending password reset email to: %s", email)
        validate_email(email).raise_for_failure("Invalid email")
        try:
            await self._provider.send_password_reset(trimmed(email))
        except ProviderError as exc:
            logger.error("Failed to send password reset email: %s", exc)
            raise self._map_error(exc) from exc
        logger.info("Password reset email sent successfully")

    async def reauthenticate(self, password: str) -> User:
        validate_password(password, self._settings.min_password_length).raise_for_failure("Invalid password")
        try:
            account = await self._provider.reauthenticate(password)
        except ProviderError as exc:
            logger.error("Reauthentication failed: %s", exc)
            raise self._map_error(exc) from exc
        return self._to_user(account)

    async def update_display_name(self, display_name: Optional[str]) -> User:
        """Set (or clear, with None/blank) the display name of the signed-in user."""
        name = trimmed(display_name) if display_name else ""
        if name:
            validate_length(name, 1, MAX_DISPLAY_NAME_LENGTH, "Display name").raise_for_failure()
        try:
            account = await self._provider.update_profile(name or None)
        except ProviderError as exc:
            raise self._map_error(exc) from exc
        user = self._to_user(account)
        with translate_store_errors("Failed to update user document", user_id=user.id):
            if await self._store.get(user_path(user.id)) is None:
                await self._store.set(user_path(user.id), user.to_document())
            else:
                await self._store.update(user_path(user.id), {USER_DISPLAY_NAME: user.display_name})
        logger.info("Display name updated for user: %s", user.id)
        return user

    async def delete_account(self) -> None:
        """
        Permanently delete the signed-in account together with its todos and
        user document.

        Raises ReauthenticationRequired when the session is not recent enough;
        call ``reauthenticate`` and retry.
        """
        logger.info("Attempting to delete user account")
        account = self._provider.current_account
        if account is None:
            raise AuthError(self._messages[NO_CURRENT_USER], code=NO_CURRENT_USER)
        try:
            await self._provider.delete_current_account()
        except ProviderError as exc:
            logger.error("Failed to delete user account: %s", exc)
            raise self._map_error(exc) from exc

        with translate_store_errors("Failed to remove user data", user_id=account.uid):
            removed = await self._store.delete_collection(todos_path(account.uid))
            if await self._store.get(user_path(account.uid)) is not None:
                await self._store.delete(user_path(account.uid))
        logger.info("User account deleted successfully (%d todos removed)", removed)

    async def _create_user_document(self, user: User) -> None:
        with translate_store_errors("Failed to create user document", user_id=user.id):
            await self._store.set(user_path(user.id), user.to_document())
        logger.info("User document created for: %s", user.id)
