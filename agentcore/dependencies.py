from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request

from .config import get_settings
from .engine import AgentService
from .providers import BaseProvider, build_provider
from .registry import AgentRegistry
from .storage.memory_store import SqlMemoryStore

_registry: Optional[AgentRegistry] = None


def get_provider() -> BaseProvider:
    """
    Dependency returning the active provider.

    Tests rely on this function name to override the provider with a
    ScriptedProvider/RaisingProvider via FastAPI's dependency_overrides.
    """

    return build_provider()


def get_registry() -> AgentRegistry:
    """Process-wide registry; created on first use, flushed at shutdown."""
    global _registry
    if _registry is None:
        _registry = AgentRegistry(SqlMemoryStore())
    return _registry


def reset_registry() -> None:
    global _registry
    _registry = None


def get_service(provider: BaseProvider = Depends(get_provider)) -> AgentService:
    return AgentService(provider=provider, registry=get_registry())


def _get_bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        return token or None
    return None


def enforce_auth(request: Request) -> None:
    """
    Auth guard used by mutating endpoints.

    If AUTH_TOKEN is set, accept only that bearer token; otherwise
    authentication is disabled (dev/tests).
    """
    settings = get_settings()
    if not settings.auth_token:
        return
    supplied = _get_bearer_token(request)
    if supplied is None:
        raise AuthError("Missing or invalid Authorization header")
    if supplied != settings.auth_token:
        raise AuthError("Invalid bearer token")


class AuthError(RuntimeError):
    """Raised when authentication fails."""
