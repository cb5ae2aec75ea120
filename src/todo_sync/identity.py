from __future__ import annotations

import asyncio
import hashlib
import hmac
import itertools
import logging
import os
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from threading import RLock
from typing import Callable, Dict, List, Optional, Tuple

from .models import utcnow
from .store import ListenerRegistration
from .validation import EMAIL_PATTERN

logger = logging.getLogger(__name__)

# Provider error codes.
INVALID_EMAIL = "invalid-email"
WRONG_PASSWORD = "wrong-password"
USER_NOT_FOUND = "user-not-found"
EMAIL_ALREADY_IN_USE = "email-already-in-use"
WEAK_PASSWORD = "weak-password"
TOO_MANY_REQUESTS = "too-many-requests"
REQUIRES_RECENT_LOGIN = "requires-recent-login"
NO_CURRENT_USER = "no-current-user"
NETWORK_REQUEST_FAILED = "network-request-failed"
OPERATION_NOT_ALLOWED = "operation-not-allowed"

AuthStateCallback = Callable[[Optional["ProviderAccount"]], None]


class ProviderError(Exception):
    """Failure reported by the identity provider, identified by ``code``."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass(frozen=True)
class ProviderAccount:
    """An identity as the provider sees it."""

    uid: str
    email: Optional[str]
    display_name: Optional[str]
    is_anonymous: bool
    created_at: datetime
    last_sign_in_at: datetime


# PUBLIC_INTERFACE
class IdentityProvider(ABC):
    """
    Contract of the external authentication service.

    The provider owns the current session. State listeners are called with
    the current account immediately on registration and again on every
    sign-in, sign-out and account deletion.
    """

    @property
    @abstractmethod
    def current_account(self) -> Optional[ProviderAccount]:
        """The signed-in account, or None."""

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> ProviderAccount:
        """Start a session for an existing email/password account."""

    @abstractmethod
    async def create_account(self, email: str, password: str) -> ProviderAccount:
        """Register a new email/password account and sign it in."""

    @abstractmethod
    async def sign_in_anonymously(self) -> ProviderAccount:
        """Start a session for a new (or the current) anonymous account."""

    @abstractmethod
    def sign_out(self) -> None:
        """End the current session. Raises ProviderError when there is none."""

    @abstractmethod
    def add_state_listener(self, callback: AuthStateCallback) -> ListenerRegistration:
        """Register ``callback`` for session changes."""

    @abstractmethod
    async def send_password_reset(self, email: str) -> None:
        """Send a password reset message to ``email``."""

    @abstractmethod
    async def reauthenticate(self, password: str) -> ProviderAccount:
        """Refresh the current session by confirming the password."""

    @abstractmethod
    async def update_profile(self, display_name: Optional[str]) -> ProviderAccount:
        """Change the current account's display name."""

    @abstractmethod
    async def delete_current_account(self) -> None:
        """
        Permanently delete the signed-in account. Raises ProviderError with
        ``requires-recent-login`` when the session is older than the provider
        allows for this operation.
        """


@dataclass
class _AccountRecord:
    account: ProviderAccount
    salt: bytes = b""
    password_hash: bytes = b""
    failed_attempts: int = 0


@dataclass(frozen=True)
class PasswordResetMessage:
    email: str
    sent_at: datetime


def _email_key(email: str) -> str:
    return email.strip().lower()


# PUBLIC_INTERFACE
class AccountDirectory:
    """
    Thread-safe in-memory account database shared by every provider client.

    Passwords are stored as salted PBKDF2 hashes; hashing runs in a worker
    thread and never under the lock. Repeated wrong passwords lock an account
    with ``too-many-requests`` until a password reset is requested.
    """

    def __init__(
        self,
        min_password_length: int = 6,
        max_failed_attempts: int = 5,
        recent_login_window: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = utcnow,
        hash_iterations: int = 100_000,
    ) -> None:
        self._lock = RLock()
        self._accounts: Dict[str, _AccountRecord] = {}
        self._uid_by_email: Dict[str, str] = {}
        self._sent_resets: List[PasswordResetMessage] = []
        self.min_password_length = min_password_length
        self.max_failed_attempts = max_failed_attempts
        self.recent_login_window = recent_login_window
        self.clock = clock
        self._hash_iterations = hash_iterations

    @property
    def sent_password_resets(self) -> List[PasswordResetMessage]:
        with self._lock:
            return list(self._sent_resets)

    def __len__(self) -> int:
        with self._lock:
            return len(self._accounts)

    def _hash(self, password: str, salt: bytes) -> bytes:
        return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, self._hash_iterations)

    def check_email(self, email: str) -> str:
        key = _email_key(email)
        if EMAIL_PATTERN.fullmatch(key) is None:
            raise ProviderError(INVALID_EMAIL, "The email address is badly formatted.")
        return key

    def get(self, uid: str) -> Optional[_AccountRecord]:
        with self._lock:
            return self._accounts.get(uid)

    def find(self, email: str) -> _AccountRecord:
        key = self.check_email(email)
        with self._lock:
            uid = self._uid_by_email.get(key)
            if uid is None:
                raise ProviderError(USER_NOT_FOUND, "There is no user record corresponding to this identifier.")
            return self._accounts[uid]

    async def register(self, email: str, password: str) -> _AccountRecord:
        key = self.check_email(email)
        if len(password) < self.min_password_length:
            raise ProviderError(WEAK_PASSWORD, f"Password should be at least {self.min_password_length} characters.")
        salt = os.urandom(16)
        password_hash = await asyncio.to_thread(self._hash, password, salt)
        now = self.clock()
        with self._lock:
            if key in self._uid_by_email:
                raise ProviderError(EMAIL_ALREADY_IN_USE, "The email address is already in use by another account.")
            account = ProviderAccount(
                uid=uuid.uuid4().hex,
                email=email.strip(),
                display_name=None,
                is_anonymous=False,
                created_at=now,
                last_sign_in_at=now,
            )
            record = _AccountRecord(account=account, salt=salt, password_hash=password_hash)
            self._accounts[account.uid] = record
            self._uid_by_email[key] = account.uid
        return record

    def register_anonymous(self) -> _AccountRecord:
        now = self.clock()
        account = ProviderAccount(
            uid=uuid.uuid4().hex,
            email=None,
            display_name=None,
            is_anonymous=True,
            created_at=now,
            last_sign_in_at=now,
        )
        record = _AccountRecord(account=account)
        with self._lock:
            self._accounts[account.uid] = record
        return record

    async def verify_password(self, record: _AccountRecord, password: str) -> None:
        """Raise ``too-many-requests`` or ``wrong-password``; reset the failure count on success."""
        with self._lock:
            if record.failed_attempts >= self.max_failed_attempts:
                raise ProviderError(
                    TOO_MANY_REQUESTS,
                    "Access to this account has been temporarily disabled due to many failed login attempts.",
                )
            salt, expected = record.salt, record.password_hash
        actual = await asyncio.to_thread(self._hash, password, salt)
        with self._lock:
            if not hmac.compare_digest(expected, actual):
                record.failed_attempts += 1
                raise ProviderError(WRONG_PASSWORD, "The password is invalid.")
            record.failed_attempts = 0

    def touch_sign_in(self, record: _AccountRecord) -> ProviderAccount:
        with self._lock:
            record.account = replace(record.account, last_sign_in_at=self.clock())
            return record.account

    def update_display_name(self, record: _AccountRecord, display_name: Optional[str]) -> ProviderAccount:
        with self._lock:
            record.account = replace(record.account, display_name=display_name)
            return record.account

    def record_reset(self, email: str) -> None:
        record = self.find(email)
        with self._lock:
            record.failed_attempts = 0
            self._sent_resets.append(PasswordResetMessage(email=email.strip(), sent_at=self.clock()))

    def remove(self, uid: str) -> None:
        with self._lock:
            record = self._accounts.pop(uid, None)
            if record is not None and record.account.email is not None:
                self._uid_by_email.pop(_email_key(record.account.email), None)


class InMemoryIdentityProvider(IdentityProvider):
    """
    One client's view of an AccountDirectory: the current session and its
    state listeners. Clients sharing a directory see the same accounts but
    keep independent sessions.

    A guest account cannot be resumed once its session ends, so it is removed
    from the directory on sign-out or when another account signs in.
    """

    def __init__(
        self,
        directory: Optional[AccountDirectory] = None,
        *,
        min_password_length: int = 6,
        max_failed_attempts: int = 5,
        recent_login_window: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = utcnow,
        hash_iterations: int = 100_000,
    ) -> None:
        self._directory = directory or AccountDirectory(
            min_password_length=min_password_length,
            max_failed_attempts=max_failed_attempts,
            recent_login_window=recent_login_window,
            clock=clock,
            hash_iterations=hash_iterations,
        )
        self._lock = RLock()
        self._current_uid: Optional[str] = None
        self._listeners: Dict[int, AuthStateCallback] = {}
        self._listener_ids = itertools.count(1)

    @property
    def directory(self) -> AccountDirectory:
        return self._directory

    @property
    def sent_password_resets(self) -> List[PasswordResetMessage]:
        return self._directory.sent_password_resets

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    @property
    def current_account(self) -> Optional[ProviderAccount]:
        with self._lock:
            if self._current_uid is None:
                return None
            record = self._directory.get(self._current_uid)
            return None if record is None else record.account

    async def sign_in_with_password(self, email: str, password: str) -> ProviderAccount:
        record = self._directory.find(email)
        await self._directory.verify_password(record, password)
        account = self._start_session(record)
        self._notify()
        return account

    async def create_account(self, email: str, password: str) -> ProviderAccount:
        record = await self._directory.register(email, password)
        account = self._start_session(record)
        self._notify()
        return account

    async def sign_in_anonymously(self) -> ProviderAccount:
        current = self.current_account
        if current is not None and current.is_anonymous:
            return current
        account = self._start_session(self._directory.register_anonymous())
        self._notify()
        return account

    def sign_out(self) -> None:
        with self._lock:
            if self._current_uid is None:
                raise ProviderError(NO_CURRENT_USER, "No user is currently signed in.")
            self._end_session()
        self._notify()

    def add_state_listener(self, callback: AuthStateCallback) -> ListenerRegistration:
        with self._lock:
            token = next(self._listener_ids)
            self._listeners[token] = callback
            current = self.current_account
        callback(current)
        return ListenerRegistration(lambda: self._remove_listener(token))

    def _remove_listener(self, token: int) -> None:
        with self._lock:
            self._listeners.pop(token, None)

    async def send_password_reset(self, email: str) -> None:
        self._directory.record_reset(email)

    async def reauthenticate(self, password: str) -> ProviderAccount:
        record = self._require_current()
        if record.account.is_anonymous:
            raise ProviderError(OPERATION_NOT_ALLOWED, "Anonymous accounts cannot reauthenticate with a password.")
        await self._directory.verify_password(record, password)
        return self._directory.touch_sign_in(record)

    async def update_profile(self, display_name: Optional[str]) -> ProviderAccount:
        return self._directory.update_display_name(self._require_current(), display_name)

    async def delete_current_account(self) -> None:
        record = self._require_current()
        age = self._directory.clock() - record.account.last_sign_in_at
        if age > self._directory.recent_login_window:
            raise ProviderError(
                REQUIRES_RECENT_LOGIN,
                "This operation is sensitive and requires recent authentication.",
            )
        with self._lock:
            self._directory.remove(record.account.uid)
            self._current_uid = None
        logger.info("Identity provider deleted account %s", record.account.uid)
        self._notify()

    def _require_current(self) -> _AccountRecord:
        with self._lock:
            record = None if self._current_uid is None else self._directory.get(self._current_uid)
        if record is None:
            raise ProviderError(NO_CURRENT_USER, "No user is currently signed in.")
        return record

    def _start_session(self, record: _AccountRecord) -> ProviderAccount:
        with self._lock:
            if self._current_uid != record.account.uid:
                self._end_session()
            self._current_uid = record.account.uid
            return self._directory.touch_sign_in(record)

    def _end_session(self) -> None:
        current = self.current_account
        if current is not None and current.is_anonymous:
            self._directory.remove(current.uid)
            logger.info("Discarded guest account %s", current.uid)
        self._current_uid = None

    def _notify(self) -> None:
        with self._lock:
            callbacks: List[Tuple[int, AuthStateCallback]] = list(self._listeners.items())
            current = self.current_account
        for _, callback in callbacks:
            callback(current)
