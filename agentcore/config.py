import logging
import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load .env from current directory so PROVIDER, WORKSPACE_ROOT and API keys are set automatically.
load_dotenv()

logger = logging.getLogger("agent-core")


class Settings(BaseModel):
    """Runtime configuration loaded from environment variables."""

    provider_name: str
    workspace_root: Optional[str]
    auth_token: Optional[str]
    db_path: str = "./data/agentcore.db"
    cors_origins: str = "*"
    log_level: str = "INFO"

    max_tasks_per_response: int = Field(default=10, ge=1)
    stream_max_chunks: int = Field(default=1000, ge=1)
    stream_max_chars: int = Field(default=100_000, ge=1)
    stream_repetition_window: int = Field(default=1000, ge=1)
    empty_file_placeholder: bool = True
    terminal_mode: str = "shell"

    service_name: str = "agent-core"
    http_port: int = 4280


@lru_cache(maxsize=1)
def _base_settings() -> Settings:
    """
    Base settings lookup.

    NOTE: only defaults live here. `get_settings` below re-creates Settings
    each time from the current environment.
    """

    return Settings(
        provider_name="stub",
        workspace_root=None,
        auth_token=None,
    )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    # Positive integers only; anything else keeps the default.
    try:
        value = int(raw)
    except ValueError:
        value = 0
    if value < 1:
        logger.warning("ignoring %s=%r (expected a positive integer); using %d", name, raw, default)
        return default
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def get_settings() -> Settings:
    """
    Return Settings built from the *current* environment.

    Tests mutate os.environ at runtime via the `env_vars` helper, so we must
    read directly from the environment on each call instead of caching.
    """

    base = _base_settings()
    provider_name = (os.getenv("PROVIDER") or base.provider_name).lower()
    workspace_root = os.getenv("WORKSPACE_ROOT") or None
    auth_token = os.getenv("AUTH_TOKEN") or None
    db_path = os.getenv("DB_PATH") or base.db_path
    cors_origins = os.getenv("CORS_ORIGINS") or base.cors_origins
    log_level = (os.getenv("LOG_LEVEL") or base.log_level).upper()

    return Settings(
        provider_name=provider_name,
        workspace_root=workspace_root,
        auth_token=auth_token,
        db_path=db_path,
        cors_origins=cors_origins,
        log_level=log_level,
        max_tasks_per_response=_env_int("MAX_TASKS_PER_RESPONSE", base.max_tasks_per_response),
        stream_max_chunks=_env_int("STREAM_MAX_CHUNKS", base.stream_max_chunks),
        stream_max_chars=_env_int("STREAM_MAX_CHARS", base.stream_max_chars),
        stream_repetition_window=_env_int("STREAM_REPETITION_WINDOW", base.stream_repetition_window),
        empty_file_placeholder=_env_bool("EMPTY_FILE_PLACEHOLDER", base.empty_file_placeholder),
        terminal_mode=(os.getenv("TERMINAL_MODE") or base.terminal_mode).lower(),
        service_name=os.getenv("SERVICE_NAME") or base.service_name,
        http_port=_env_int("PORT", base.http_port),
    )
