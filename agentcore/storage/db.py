"""
Where agent memory rows live.

A local SQLite file (DB_PATH) unless DATABASE_URL points at Postgres.
Every store call opens its own connection.
"""

from __future__ import annotations

import os
import sqlite3
from pathlib import Path
from typing import Any, Optional

from agentcore.config import get_settings

try:
    import psycopg
    from psycopg.rows import dict_row
except ImportError:  # pragma: no cover - only needed with DATABASE_URL
    psycopg = None
    dict_row = None


def _database_url() -> Optional[str]:
    return os.getenv("DATABASE_URL") or None


def is_postgres() -> bool:
    return _database_url() is not None


def connect() -> Any:
    """Open a connection whose rows are addressable by column name."""
    url = _database_url()
    if url is not None:
        if psycopg is None:
            raise RuntimeError("DATABASE_URL is set but psycopg is not installed (pip install agent-core[postgres])")
        return psycopg.connect(url, row_factory=dict_row)
    db_file = Path(get_settings().db_path)
    db_file.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_file)
    conn.row_factory = sqlite3.Row
    return conn


def sql(query: str) -> str:
    # Queries are written with '?' placeholders; psycopg expects '%s'.
    return query.replace("?", "%s") if is_postgres() else query
