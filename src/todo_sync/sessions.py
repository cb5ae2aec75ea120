from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from threading import RLock
from typing import Callable, Dict, Optional

from .auth import AuthService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientSession:
    """An HTTP client's own AuthService, addressed by an opaque bearer token."""

    token: str
    auth: AuthService


# PUBLIC_INTERFACE
class SessionRegistry:
    """
    Maps bearer tokens to per-client AuthService instances.

    Each client signs in through its own identity-provider client, so one
    caller's session is never visible to another. Sessions that end signed
    out are dropped.
    """

    def __init__(self, auth_factory: Callable[[], AuthService]) -> None:
        self._auth_factory = auth_factory
        self._lock = RLock()
        self._sessions: Dict[str, ClientSession] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def get(self, token: Optional[str]) -> Optional[ClientSession]:
        if not token:
            return None
        with self._lock:
            return self._sessions.get(token)

    def open(self, existing: Optional[ClientSession] = None) -> ClientSession:
        """Return ``existing`` or a new, signed-out session."""
        if existing is not None:
            return existing
        session = ClientSession(token=secrets.token_urlsafe(32), auth=self._auth_factory())
        with self._lock:
            self._sessions[session.token] = session
        return session

    def release_if_signed_out(self, session: ClientSession) -> None:
        if session.auth.is_authenticated:
            return
        with self._lock:
            removed = self._sessions.pop(session.token, None)
        if removed is not None:
            logger.debug("Dropped signed-out session")
