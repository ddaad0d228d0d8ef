"""
Data models for the agent core.

Defines the permission model (Capability, PermissionEntry, PermissionSet),
agent and model configuration, the command invocation value object, the
per-agent memory record, and the streaming chunk type.
Do not duplicate these definitions elsewhere.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Capability(str, Enum):
    """Named permission classes, granted independently per agent."""

    READ_FILES = "read_files"
    WRITE_FILES = "write_files"
    EXECUTE_COMMANDS = "execute_commands"
    GIT_OPERATIONS = "git_operations"
    NETWORK_ACCESS = "network_access"


class PermissionEntry(BaseModel):
    """One capability grant with an optional scope allow-list."""

    model_config = ConfigDict(frozen=True)

    capability: Capability
    granted: bool = False
    scope: Optional[List[str]] = None


class PermissionSet(BaseModel):
    """
    Typed mapping from capability to its grant.

    A capability with no entry is denied.
    """

    entries: Dict[Capability, PermissionEntry] = Field(default_factory=dict)

    @classmethod
    def from_entries(cls, entries: Iterable[PermissionEntry | Dict[str, Any]]) -> "PermissionSet":
        mapping: Dict[Capability, PermissionEntry] = {}
        for raw in entries:
            entry = raw if isinstance(raw, PermissionEntry) else PermissionEntry(**raw)
            mapping[entry.capability] = entry
        return cls(entries=mapping)

    def lookup(self, capability: Capability) -> PermissionEntry:
        entry = self.entries.get(capability)
        if entry is None:
            return PermissionEntry(capability=capability, granted=False)
        return entry

    def as_list(self) -> List[Dict[str, Any]]:
        return [entry.model_dump(mode="json") for entry in self.entries.values()]


class ModelConfig(BaseModel):
    """Model selection for an agent. max_tokens drives the memory budgets."""

    provider: str = "stub"
    model_name: str = "stub"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4096, ge=1)
    api_key: Optional[str] = Field(default=None, exclude=True, repr=False)


class AgentConfig(BaseModel):
    """The slice of an agent's identity this service needs to process a message."""

    id: str
    name: str
    system_prompt: str = ""
    model: ModelConfig = Field(default_factory=ModelConfig)
    permissions: PermissionSet = Field(default_factory=PermissionSet)

    @field_validator("permissions", mode="before")
    @classmethod
    def _coerce_permissions(cls, value: Any) -> Any:
        if value is None:
            return PermissionSet()
        if isinstance(value, list):
            return PermissionSet.from_entries(value)
        return value


class IntentHint(BaseModel):
    """Advisory label/confidence pair from an external intent classifier."""

    label: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class CommandKind(str, Enum):
    """Command kinds in processing order; values are the literal tag names."""

    CREATE_FILE = "CREATE_FILE"
    EDIT_FILE = "EDIT_FILE"
    READ_FILE = "READ_FILE"
    DELETE_FILE = "DELETE_FILE"
    GREP = "GREP"
    FIND_FILES = "FIND_FILES"
    INSERT_CODE = "INSERT_CODE"
    REPLACE_CODE = "REPLACE_CODE"
    OPEN_EDITOR = "OPEN_EDITOR"
    FORMAT_FILE = "FORMAT_FILE"
    GIT_COMMAND = "GIT_COMMAND"
    GIT_COMMIT = "GIT_COMMIT"
    RUN_COMMAND = "RUN_COMMAND"


@dataclass(frozen=True)
class CommandInvocation:
    """A parsed command. Created once per scan and consumed once by the executor."""

    kind: CommandKind
    target: str
    content: Optional[str] = None
    find: Optional[str] = None
    replace: Optional[str] = None
    line: Optional[int] = None
    glob: Optional[str] = None
    empty_body: bool = False
    offset: int = 0

    def describe(self) -> str:
        return f"[{self.kind.value}: {self.target}]"


@dataclass(frozen=True)
class StreamChunk:
    """One increment of a streaming model response."""

    content: str
    done: bool = False


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ConversationTurn(BaseModel):
    """A single turn in conversation memory."""

    role: str  # "user" | "assistant" | "system"
    content: str
    ts: Optional[str] = None


class TextSnippet(BaseModel):
    content: str
    file_name: Optional[str] = None


class AgentMemory(BaseModel):
    """Per-agent memory record. Mutated only by the memory manager."""

    agent_id: str
    conversations: List[ConversationTurn] = Field(default_factory=list)
    shared_files: List[str] = Field(default_factory=list)
    text_snippets: List[TextSnippet] = Field(default_factory=list)
    context_summary: Optional[str] = None
    session_count: int = 0
    last_interaction: datetime = Field(default_factory=utc_now)
