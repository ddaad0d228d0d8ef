"""
Agent memory store: one row per agent holding the serialized AgentMemory.

agent_memory table: (agent_id, payload, updated_at)
One connection per call; DB_PATH from env (default ./data/agentcore.db).
"""

from __future__ import annotations

import logging
from typing import Optional

from agentcore.memory import MemoryStore
from agentcore.models import AgentMemory, utc_now
from agentcore.storage.db import connect, is_postgres, sql

logger = logging.getLogger("agent-core")

_CREATE_TABLE = """
    CREATE TABLE IF NOT EXISTS agent_memory (
        agent_id TEXT PRIMARY KEY,
        payload TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
"""


def init_db() -> None:
    """
    Create the table (and SQLite PRAGMAs). Idempotent; called at app startup
    and lazily before the first read or write.
    """
    with connect() as conn:
        if not is_postgres():
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("PRAGMA busy_timeout=3000")
        conn.execute(_CREATE_TABLE)
        conn.commit()


def load_memory(agent_id: str) -> Optional[AgentMemory]:
    init_db()
    with connect() as conn:
        row = conn.execute(sql("SELECT payload FROM agent_memory WHERE agent_id = ?"), (agent_id,)).fetchone()
    if row is None:
        return None
    return AgentMemory.model_validate_json(row["payload"])


def save_memory(memory: AgentMemory) -> None:
    init_db()
    payload = memory.model_dump_json()
    updated_at = utc_now().isoformat()
    with connect() as conn:
        conn.execute(
            sql(
                "INSERT INTO agent_memory (agent_id, payload, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT (agent_id) DO UPDATE SET payload = excluded.payload, updated_at = excluded.updated_at"
            ),
            (memory.agent_id, payload, updated_at),
        )
        conn.commit()
    logger.debug("saved memory agent=%s bytes=%d", memory.agent_id, len(payload))


def delete_memory(agent_id: str) -> bool:
    init_db()
    with connect() as conn:
        cur = conn.execute(sql("DELETE FROM agent_memory WHERE agent_id = ?"), (agent_id,))
        conn.commit()
        return (cur.rowcount or 0) > 0


class SqlMemoryStore(MemoryStore):
    """MemoryStore backed by the module-level functions above."""

    def load(self, agent_id: str) -> Optional[AgentMemory]:
        return load_memory(agent_id)

    def save(self, memory: AgentMemory) -> None:
        save_memory(memory)

    def delete(self, agent_id: str) -> None:
        delete_memory(agent_id)
