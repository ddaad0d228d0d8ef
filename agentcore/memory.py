"""
Conversational memory manager.

Owns every mutation of an AgentMemory record:

- token accounting (ceil(len / 4) per text)
- budget enforcement before each prompt: keep the last 5 turns verbatim and
  fold older ones into a digest; if still over budget trim shared files to
  the newest 3 and snippets to the newest 5
- the bounded history slice sent to the model
- shared file / snippet bookkeeping
- fire-and-forget persistence after every mutation
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from typing import Dict, Iterable, List, Optional, Set

from .errors import NotFoundError, WorkspaceUnavailableError
from .models import AgentMemory, ConversationTurn, TextSnippet, utc_now
from .workspace import Workspace

logger = logging.getLogger("agent-core")

MEMORY_BUDGET_RATIO = 0.7
HISTORY_BUDGET_RATIO = 0.3
RETAINED_TURNS = 5
RETAINED_FILES = 3
RETAINED_SNIPPETS = 5

SUMMARY_HEADER = "Conversation summary"

TOPIC_KEYWORDS: Dict[str, Iterable[str]] = {
    "python": ("python", ".py", "pip", "django", "flask"),
    "javascript": ("javascript", ".js", "node", "npm"),
    "typescript": ("typescript", ".ts"),
    "react": ("react", "jsx", "component"),
    "web": ("html", "css", "frontend", "webpage"),
    "api": ("api", "endpoint", "rest", "http"),
    "database": ("database", "sql", "query", "schema", "table"),
    "authentication": ("auth", "login", "password", "token"),
    "testing": ("test", "pytest", "jest", "coverage"),
    "git": ("git", "commit", "branch", "merge"),
    "docker": ("docker", "container", "compose"),
    "performance": ("performance", "optimiz", "slow", "speed"),
    "documentation": ("readme", "docs", "documentation", "comment"),
    "refactoring": ("refactor", "cleanup", "clean up", "restructure"),
}

REQUEST_KEYWORDS: Dict[str, Iterable[str]] = {
    "creation": ("create", "make", "build", "generate", "write", "add", "new"),
    "bug-fixing": ("fix", "bug", "error", "broken", "issue", "debug", "crash"),
    "explanation": ("explain", "what is", "how does", "why", "describe", "understand"),
    "testing": ("test", "verify", "coverage", "assert"),
}

ACTION_TAGS: Dict[str, Iterable[str]] = {
    "file creation": ("[CREATE_FILE:",),
    "code modification": ("[EDIT_FILE:", "[REPLACE_CODE:", "[INSERT_CODE:", "[DELETE_FILE:", "[FORMAT_FILE:"),
    "command execution": ("[RUN_COMMAND:",),
    "git operations": ("[GIT_COMMAND:", "[GIT_COMMIT:"),
}

_EXCHANGES = re.compile(re.escape(SUMMARY_HEADER) + r" \((\d+) exchanges?\)")


def estimate_tokens(text: Optional[str]) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def _matches(text: str, keywords: Dict[str, Iterable[str]]) -> Set[str]:
    lowered = text.lower()
    return {label for label, words in keywords.items() if any(w.lower() in lowered for w in words)}


def _summary_field(summary: Optional[str], name: str) -> List[str]:
    if not summary:
        return []
    for line in summary.splitlines():
        if line.startswith(f"{name}:"):
            values = line.split(":", 1)[1]
            return [v.strip() for v in values.split(",") if v.strip() and v.strip() != "none"]
    return []


def _summary_exchanges(summary: Optional[str]) -> int:
    if not summary:
        return 0
    match = _EXCHANGES.search(summary)
    return int(match.group(1)) if match else 0


def build_digest(turns: List[ConversationTurn], previous: Optional[str] = None) -> str:
    """
    Digest of folded turns, merged with the categories of `previous` so a
    recompression never loses what an earlier one recorded.
    """
    topics: Set[str] = set(_summary_field(previous, "Topics"))
    requests: Set[str] = set(_summary_field(previous, "Requests"))
    actions: Set[str] = set(_summary_field(previous, "Actions"))
    exchanges = _summary_exchanges(previous)

    for turn in turns:
        topics |= _matches(turn.content, TOPIC_KEYWORDS)
        if turn.role == "user":
            exchanges += 1
            requests |= _matches(turn.content, REQUEST_KEYWORDS)
        elif turn.role == "assistant":
            actions |= {label for label, tags in ACTION_TAGS.items() if any(t in turn.content for t in tags)}

    def _join(values: Set[str]) -> str:
        return ", ".join(sorted(values)) or "none"

    noun = "exchange" if exchanges == 1 else "exchanges"
    return "\n".join(
        [
            f"{SUMMARY_HEADER} ({exchanges} {noun})",
            f"Topics: {_join(topics)}",
            f"Requests: {_join(requests)}",
            f"Actions: {_join(actions)}",
        ]
    )


class MemoryStore:
    """External key-value store for AgentMemory records."""

    def load(self, agent_id: str) -> Optional[AgentMemory]:  # pragma: no cover - interface only
        raise NotImplementedError

    def save(self, memory: AgentMemory) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def delete(self, agent_id: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError


class InMemoryStore(MemoryStore):
    def __init__(self) -> None:
        self.records: Dict[str, str] = {}

    def load(self, agent_id: str) -> Optional[AgentMemory]:
        raw = self.records.get(agent_id)
        return AgentMemory.model_validate_json(raw) if raw is not None else None

    def save(self, memory: AgentMemory) -> None:
        self.records[memory.agent_id] = memory.model_dump_json()

    def delete(self, agent_id: str) -> None:
        self.records.pop(agent_id, None)


class MemoryManager:
    def __init__(self, store: Optional[MemoryStore] = None) -> None:
        self.store = store or InMemoryStore()
        self._pending: Set[asyncio.Task] = set()
        self._latest: Dict[str, asyncio.Task] = {}

    # -- accounting -----------------------------------------------------------

    def file_cost(self, path: str, workspace: Optional[Workspace]) -> int:
        if workspace is None:
            return 0
        try:
            return estimate_tokens(workspace.read_text(path))
        except (NotFoundError, WorkspaceUnavailableError, OSError, UnicodeDecodeError):
            return 0

    def memory_cost(self, memory: AgentMemory, workspace: Optional[Workspace] = None) -> int:
        total = sum(estimate_tokens(turn.content) for turn in memory.conversations)
        total += sum(self.file_cost(path, workspace) for path in memory.shared_files)
        total += sum(estimate_tokens(snippet.content) for snippet in memory.text_snippets)
        total += estimate_tokens(memory.context_summary)
        return total

    # -- budget ---------------------------------------------------------------

    def enforce_budget(self, memory: AgentMemory, max_tokens: int, workspace: Optional[Workspace] = None) -> bool:
        """Compress and trim until the record fits. Returns True when anything changed."""
        budget = math.floor(max_tokens * MEMORY_BUDGET_RATIO)
        cost = self.memory_cost(memory, workspace)
        if cost <= budget:
            return False

        logger.info("agent=%s memory over budget (%d > %d tokens); compressing", memory.agent_id, cost, budget)
        if len(memory.conversations) > RETAINED_TURNS:
            self.compress(memory)

        if self.memory_cost(memory, workspace) > budget:
            dropped_files = max(len(memory.shared_files) - RETAINED_FILES, 0)
            dropped_snippets = max(len(memory.text_snippets) - RETAINED_SNIPPETS, 0)
            memory.shared_files = memory.shared_files[-RETAINED_FILES:]
            memory.text_snippets = memory.text_snippets[-RETAINED_SNIPPETS:]
            if dropped_files or dropped_snippets:
                logger.info(
                    "agent=%s trimmed %d shared file(s) and %d snippet(s)",
                    memory.agent_id,
                    dropped_files,
                    dropped_snippets,
                )
        self.persist(memory)
        return True

    def compress(self, memory: AgentMemory) -> None:
        folded = memory.conversations[:-RETAINED_TURNS]
        if not folded:
            return
        memory.context_summary = build_digest(folded, memory.context_summary)
        memory.conversations = memory.conversations[-RETAINED_TURNS:]
        memory.session_count += 1
        logger.info(
            "agent=%s compressed %d turn(s) into summary (session %d)",
            memory.agent_id,
            len(folded),
            memory.session_count,
        )

    def history_for_prompt(self, memory: AgentMemory, max_tokens: int) -> List[ConversationTurn]:
        """Newest turns that fit in the history budget, chronological, summary first."""
        budget = math.floor(max_tokens * HISTORY_BUDGET_RATIO)
        selected: List[ConversationTurn] = []
        used = 0
        for turn in reversed(memory.conversations):
            cost = estimate_tokens(turn.content)
            if used + cost > budget:
                break
            selected.append(turn)
            used += cost
        selected.reverse()
        if memory.context_summary:
            summary = ConversationTurn(role="system", content=f"Previous conversation summary:\n{memory.context_summary}")
            selected.insert(0, summary)
        return selected

    # -- mutations ------------------------------------------------------------

    def record_exchange(self, memory: AgentMemory, user_message: str, assistant_message: str) -> None:
        now = utc_now()
        memory.conversations.append(ConversationTurn(role="user", content=user_message, ts=now.isoformat()))
        memory.conversations.append(ConversationTurn(role="assistant", content=assistant_message, ts=now.isoformat()))
        memory.last_interaction = now
        self.persist(memory)

    def add_shared_file(self, memory: AgentMemory, path: str) -> bool:
        if path in memory.shared_files:
            return False
        memory.shared_files.append(path)
        self.persist(memory)
        return True

    def remove_shared_file(self, memory: AgentMemory, path: str) -> bool:
        if path not in memory.shared_files:
            return False
        memory.shared_files.remove(path)
        self.persist(memory)
        return True

    def add_snippet(self, memory: AgentMemory, content: str, file_name: Optional[str] = None) -> int:
        memory.text_snippets.append(TextSnippet(content=content, file_name=file_name))
        self.persist(memory)
        return len(memory.text_snippets) - 1

    def remove_snippet(self, memory: AgentMemory, index: int) -> TextSnippet:
        if index < 0 or index >= len(memory.text_snippets):
            raise IndexError(f"No snippet at index {index}")
        removed = memory.text_snippets.pop(index)
        self.persist(memory)
        return removed

    def clear(self, memory: AgentMemory) -> None:
        memory.conversations = []
        memory.shared_files = []
        memory.text_snippets = []
        memory.context_summary = None
        memory.session_count = 0
        memory.last_interaction = utc_now()
        self.persist(memory)

    # -- persistence ----------------------------------------------------------

    def persist(self, memory: AgentMemory) -> None:
        """Schedule a save of a snapshot; never blocks and never raises."""
        snapshot = memory.model_copy(deep=True)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._save(snapshot)
            return
        previous = self._latest.get(memory.agent_id)
        if previous is not None and (previous.done() or previous.get_loop() is not loop):
            previous = None
        task = loop.create_task(self._save_after(previous, snapshot))
        self._pending.add(task)
        self._latest[memory.agent_id] = task
        task.add_done_callback(self._save_done)

    async def _save_after(self, previous: Optional[asyncio.Task], memory: AgentMemory) -> None:
        # Saves for one agent land in call order; a newer snapshot is never overwritten by an older one.
        if previous is not None:
            await asyncio.wait([previous])
        await asyncio.to_thread(self._save, memory)

    def _save_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        for agent_id, latest in list(self._latest.items()):
            if latest is task:
                del self._latest[agent_id]

    def _save(self, memory: AgentMemory) -> None:
        try:
            self.store.save(memory)
        except Exception as exc:
            logger.warning("agent=%s failed to persist memory: %s", memory.agent_id, exc)

    async def flush(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
