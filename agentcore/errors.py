"""Exception hierarchy for the agent core.

Per-invocation errors (authorization, not found, content mismatch) are
caught by the executor and reported; they never abort a response.
Environment-level errors (workspace, provider) abort the whole response.
"""
from __future__ import annotations

from typing import Optional


class AgentCoreError(Exception):
    """Base exception for all agent core errors."""


class AuthorizationError(AgentCoreError):
    """Capability missing or target outside the granted scope."""

    MISSING_CAPABILITY = "missing_capability"
    SCOPE_VIOLATION = "scope_violation"

    def __init__(self, message: str, reason: str, capability: Optional[str] = None, target: Optional[str] = None):
        self.reason = reason
        self.capability = capability
        self.target = target
        super().__init__(message)


class NotFoundError(AgentCoreError):
    """Target file is missing."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"File not found: {path}")


class ContentMismatchError(AgentCoreError):
    """FIND text is not present verbatim in the target file."""

    def __init__(self, path: str, find: str):
        self.path = path
        self.find = find
        super().__init__(f"Text not found in {path}: {find[:80]}")


class MalformedInputError(AgentCoreError):
    """Unterminated tag, empty body or unparseable target. Logged, never fatal."""

    def __init__(self, kind: str, target: str, reason: str, offset: int = 0):
        self.kind = kind
        self.target = target
        self.reason = reason
        self.offset = offset
        super().__init__(f"Malformed [{kind}: {target}] at offset {offset}: {reason}")


class RunawayResponseError(AgentCoreError):
    """Chunk count, length or repetition trip-wire fired."""

    def __init__(self, trigger: str, detail: str = ""):
        self.trigger = trigger
        self.detail = detail
        super().__init__(f"Response force-stopped ({trigger}){': ' + detail if detail else ''}")


class ReentrancyError(AgentCoreError):
    """A second request arrived for an agent that is already streaming."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(
            f"Agent {agent_id} is already processing a message; "
            "request rejected to prevent a response loop"
        )


class WorkspaceUnavailableError(AgentCoreError):
    """No workspace root, or a path that resolves outside of it."""

    def __init__(self, message: str = "No workspace folder open"):
        super().__init__(message)


class ProviderError(AgentCoreError):
    """The model provider failed while producing a response."""
