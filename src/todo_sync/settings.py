from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List

_ENVIRONMENTS = {"development", "staging", "production"}
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Built once at process start (see ``create_app``) and passed to every
    collaborator that needs it.

    Env vars:
    - APP_ENV: 'development' (default), 'staging' or 'production'
    - LOG_LEVEL: logging level name; DEBUG in development, INFO otherwise
    - PERSISTENCE_BACKEND: 'memory' (default) or 'sqlite'
    - SQLITE_DB_PATH: path to sqlite db file. Default './data/todos.db'
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - MIN_PASSWORD_LENGTH: minimum password length (default 6)
    - MAX_TODO_TITLE_LENGTH: maximum trimmed todo title length (default 200)
    - MAX_TODOS_PER_USER: maximum number of todos one owner may hold (default 1000)
    - LISTENER_ERROR_POLICY: 'empty' (default) emits [] on listener errors,
      'raise' delivers the error to the subscriber
    - BULK_WRITE_MODE: 'sequential' (default) or 'atomic'
    - RECENT_LOGIN_WINDOW_SECONDS: session age allowed for sensitive
      operations such as account deletion (default 300)
    - MAX_FAILED_SIGN_INS: failed password attempts before the identity
      provider rate limits an account (default 5)
    """

    environment: str = "development"
    log_level: str = "DEBUG"
    persistence_backend: str = "memory"
    sqlite_db_path: str = "./data/todos.db"
    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])
    min_password_length: int = 6
    max_todo_title_length: int = 200
    max_todos_per_user: int = 1000
    listener_error_policy: str = "empty"
    bulk_write_mode: str = "sequential"
    recent_login_window_seconds: int = 300
    max_failed_sign_ins: int = 5

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def atomic_bulk_writes(self) -> bool:
        return self.bulk_write_mode == "atomic"


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_int(value: str, default: int, minimum: int = 0) -> int:
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _parse_choice(value: str, choices: set, default: str) -> str:
    v = value.strip().lower()
    return v if v in choices else default


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    environment = _parse_choice(_get_env("APP_ENV", "development"), _ENVIRONMENTS, "development")

    default_level = "DEBUG" if environment == "development" else "INFO"
    log_level = _get_env("LOG_LEVEL", default_level).strip().upper()
    if log_level not in _LOG_LEVELS:
        log_level = default_level

    return Settings(
        environment=environment,
        log_level=log_level,
        persistence_backend=_parse_choice(
            _get_env("PERSISTENCE_BACKEND", "memory"), {"memory", "sqlite"}, "memory"
        ),
        sqlite_db_path=_get_env("SQLITE_DB_PATH", "./data/todos.db").strip(),
        cors_allow_origins=_parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*")),
        min_password_length=_parse_int(_get_env("MIN_PASSWORD_LENGTH", "6"), 6, minimum=1),
        max_todo_title_length=_parse_int(_get_env("MAX_TODO_TITLE_LENGTH", "200"), 200, minimum=1),
        max_todos_per_user=_parse_int(_get_env("MAX_TODOS_PER_USER", "1000"), 1000, minimum=1),
        listener_error_policy=_parse_choice(
            _get_env("LISTENER_ERROR_POLICY", "empty"), {"empty", "raise"}, "empty"
        ),
        bulk_write_mode=_parse_choice(
            _get_env("BULK_WRITE_MODE", "sequential"), {"sequential", "atomic"}, "sequential"
        ),
        recent_login_window_seconds=_parse_int(
            _get_env("RECENT_LOGIN_WINDOW_SECONDS", "300"), 300, minimum=1
        ),
        max_failed_sign_ins=_parse_int(_get_env("MAX_FAILED_SIGN_INS", "5"), 5, minimum=1),
    )
