"""
In-process registry: agent_id -> AgentMemory and agent_id -> StreamState.

Created once at service start and flushed at shutdown. A StreamState entry
exists only while that agent has a response in flight; its presence is the
one-stream-per-agent guard.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from .errors import ReentrancyError
from .memory import MemoryManager, MemoryStore
from .models import AgentMemory
from .safety import StreamState

logger = logging.getLogger("agent-core")


class AgentRegistry:
    def __init__(self, store: Optional[MemoryStore] = None) -> None:
        self.memory_manager = MemoryManager(store)
        self.memories: Dict[str, AgentMemory] = {}
        self.streams: Dict[str, StreamState] = {}

    def memory(self, agent_id: str) -> AgentMemory:
        """Cached record, else the stored one, else a new empty record."""
        memory = self.memories.get(agent_id)
        if memory is not None:
            return memory
        memory = self._load(agent_id) or AgentMemory(agent_id=agent_id)
        self.memories[agent_id] = memory
        return memory

    def _load(self, agent_id: str) -> Optional[AgentMemory]:
        try:
            return self.memory_manager.store.load(agent_id)
        except Exception:
            logger.exception("agent=%s failed to load stored memory; starting empty", agent_id)
            return None

    def forget(self, agent_id: str) -> None:
        """Drop the record from the registry and the store ("clear memory")."""
        self.memories.pop(agent_id, None)
        self.memory_manager.store.delete(agent_id)

    # -- stream guard ---------------------------------------------------------

    def is_streaming(self, agent_id: str) -> bool:
        return agent_id in self.streams

    def start_stream(self, agent_id: str) -> StreamState:
        if agent_id in self.streams:
            logger.warning("agent=%s rejected concurrent request (stream already active)", agent_id)
            raise ReentrancyError(agent_id)
        state = StreamState(agent_id=agent_id)
        self.streams[agent_id] = state
        return state

    def release_stream(self, agent_id: str) -> None:
        self.streams.pop(agent_id, None)

    @contextmanager
    def stream(self, agent_id: str) -> Iterator[StreamState]:
        state = self.start_stream(agent_id)
        try:
            yield state
        finally:
            self.release_stream(agent_id)

    def cancel(self, agent_id: str) -> bool:
        state = self.streams.get(agent_id)
        if state is None:
            return False
        state.cancel()
        logger.info("agent=%s cancel requested", agent_id)
        return True

    async def shutdown(self) -> None:
        for state in self.streams.values():
            state.cancel()
        await self.memory_manager.flush()
        for memory in self.memories.values():
            self.memory_manager.persist(memory)
        await self.memory_manager.flush()
