"""
Streaming safety monitor.

One StreamMonitor per in-flight response. Every chunk is appended to the
buffer and checked against three trip-wires (chunk count, total length,
repetition in the trailing window). A trip moves the stream to
FORCE_STOPPED; the whole buffer is still handed downstream so the commands
produced before the cutoff can run.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional

from .config import Settings
from .errors import RunawayResponseError
from .grammar import count_blocks, find_unterminated
from .models import CommandKind, StreamChunk

logger = logging.getLogger("agent-core")

DEFAULT_MAX_CHUNKS = 1000
DEFAULT_MAX_CHARS = 100_000
DEFAULT_REPETITION_WINDOW = 1000

# Phrases where a model promises ongoing behaviour it cannot deliver; repeated, they mark a loop.
PROMISE_PHRASES = (
    "i'll automatically",
    "i will automatically",
    "from now on",
    "i'll continue to",
    "i will continue to",
    "i'll keep",
    "going forward, i",
)

_PROMISE = re.compile("|".join(re.escape(p) for p in PROMISE_PHRASES), re.IGNORECASE)


class CompletionMode(str, Enum):
    STREAMING = "streaming"
    COMPLETED = "completed"
    FORCE_STOPPED = "force_stopped"
    CANCELLED = "cancelled"


@dataclass
class StreamState:
    """Ephemeral state of one response. Owned by its monitor."""

    agent_id: str
    parts: List[str] = field(default_factory=list)
    length: int = 0
    chunk_count: int = 0
    authorized: bool = True
    cancelled: bool = False
    mode: CompletionMode = CompletionMode.STREAMING
    trigger: Optional[str] = None
    error: Optional[RunawayResponseError] = None
    possible_truncation: bool = False

    @property
    def text(self) -> str:
        return "".join(self.parts)

    def tail(self, size: int) -> str:
        # Joins only the trailing parts that cover `size` characters.
        pieces: List[str] = []
        covered = 0
        for part in reversed(self.parts):
            pieces.append(part)
            covered += len(part)
            if covered >= size:
                break
        return "".join(reversed(pieces))[-size:]

    def cancel(self) -> None:
        self.cancelled = True


@dataclass(frozen=True)
class StreamOutcome:
    text: str
    mode: CompletionMode
    chunks: int
    trigger: Optional[str] = None
    possible_truncation: bool = False

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "trigger": self.trigger,
            "possible_truncation": self.possible_truncation,
            "chunks": self.chunks,
        }


def detect_repetition(window: str) -> Optional[str]:
    """
    Describe the loop signature found in `window`, or None.

    Two complete CREATE_FILE blocks, two complete EDIT_FILE blocks or two
    ongoing-behaviour promises in one window mark a runaway response; the
    blocks need not be identical (a loop that stamps each block with a new
    timestamp still trips).
    """
    for kind in (CommandKind.CREATE_FILE, CommandKind.EDIT_FILE):
        count = count_blocks(window, kind)
        if count >= 2:
            return f"{count} complete {kind.value} blocks"

    promises = _PROMISE.findall(window)
    if len(promises) >= 2:
        return f"{len(promises)} ongoing-behaviour promises"
    return None


class StreamMonitor:
    def __init__(
        self,
        agent_id: str,
        *,
        max_chunks: int = DEFAULT_MAX_CHUNKS,
        max_chars: int = DEFAULT_MAX_CHARS,
        repetition_window: int = DEFAULT_REPETITION_WINDOW,
        state: Optional[StreamState] = None,
    ) -> None:
        self.max_chunks = max_chunks
        self.max_chars = max_chars
        self.repetition_window = repetition_window
        self.state = state or StreamState(agent_id=agent_id)

    @classmethod
    def from_settings(cls, agent_id: str, settings: Settings, state: Optional[StreamState] = None) -> "StreamMonitor":
        return cls(
            agent_id,
            max_chunks=settings.stream_max_chunks,
            max_chars=settings.stream_max_chars,
            repetition_window=settings.stream_repetition_window,
            state=state,
        )

    @property
    def active(self) -> bool:
        return self.state.mode is CompletionMode.STREAMING

    def feed(self, chunk: StreamChunk) -> CompletionMode:
        state = self.state
        if not self.active:
            return state.mode
        if state.cancelled:
            state.authorized = False
            state.mode = CompletionMode.CANCELLED
            logger.info("agent=%s stream cancelled after %d chunk(s)", state.agent_id, state.chunk_count)
            self._mark_truncation()
            return state.mode

        if chunk.content:
            state.parts.append(chunk.content)
            state.length += len(chunk.content)
        state.chunk_count += 1

        if state.chunk_count > self.max_chunks:
            return self._force_stop("chunk_count", f"{state.chunk_count} chunks > {self.max_chunks}")
        if state.length > self.max_chars:
            return self._force_stop("length", f"{state.length} chars > {self.max_chars}")
        signature = detect_repetition(state.tail(self.repetition_window))
        if signature:
            return self._force_stop("repetition", signature)

        if chunk.done:
            return self.complete()
        return state.mode

    def feed_all(self, chunks: Iterable[StreamChunk]) -> StreamOutcome:
        for chunk in chunks:
            if self.feed(chunk) is not CompletionMode.STREAMING:
                break
        return self.finish()

    def complete(self) -> CompletionMode:
        if self.active:
            self.state.mode = CompletionMode.COMPLETED
            self._mark_truncation()
        return self.state.mode

    def finish(self) -> StreamOutcome:
        """Close the stream (provider ended without done=True counts as completion)."""
        self.complete()
        state = self.state
        return StreamOutcome(
            text=state.text,
            mode=state.mode,
            chunks=state.chunk_count,
            trigger=state.trigger,
            possible_truncation=state.possible_truncation,
        )

    def _force_stop(self, trigger: str, detail: str) -> CompletionMode:
        state = self.state
        state.authorized = False
        state.mode = CompletionMode.FORCE_STOPPED
        state.trigger = trigger
        state.error = RunawayResponseError(trigger, detail)
        logger.warning(
            "agent=%s force-stopped response trigger=%s detail=%s chunks=%d chars=%d",
            state.agent_id,
            trigger,
            detail,
            state.chunk_count,
            state.length,
        )
        self._mark_truncation()
        return state.mode

    def _mark_truncation(self) -> None:
        unterminated = find_unterminated(self.state.text)
        if unterminated:
            self.state.possible_truncation = True
            logger.warning(
                "agent=%s possible truncation: %s",
                self.state.agent_id,
                ", ".join(f"[{w.kind}: {w.target}]" for w in unterminated),
            )
