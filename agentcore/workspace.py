"""
Host collaborators used by the executor: workspace filesystem, terminal,
editor, notifications and the operator log.

The base classes are interfaces; the local implementations are what the
service and CLI use. Hosts with their own UI plug in their own subclasses.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .errors import NotFoundError, WorkspaceUnavailableError

logger = logging.getLogger("agent-core")


class Workspace:
    """Filesystem rooted at a single, externally supplied workspace root."""

    @property
    def root(self) -> Path:  # pragma: no cover - interface only
        raise NotImplementedError

    def exists(self, rel_path: str) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    def read_text(self, rel_path: str) -> str:  # pragma: no cover - interface only
        raise NotImplementedError

    def write_text(self, rel_path: str, content: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def delete(self, rel_path: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def glob(self, pattern: str) -> List[str]:  # pragma: no cover - interface only
        raise NotImplementedError


class LocalWorkspace(Workspace):
    def __init__(self, root: str | Path) -> None:
        resolved = Path(root).expanduser().resolve()
        if not resolved.is_dir():
            raise WorkspaceUnavailableError(f"Workspace folder does not exist: {resolved}")
        self._root = resolved

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, rel_path: str) -> Path:
        candidate = (self._root / rel_path).resolve()
        if candidate != self._root and self._root not in candidate.parents:
            raise WorkspaceUnavailableError(f"Path escapes workspace: {rel_path}")
        return candidate

    def exists(self, rel_path: str) -> bool:
        return self.resolve(rel_path).is_file()

    def read_text(self, rel_path: str) -> str:
        path = self.resolve(rel_path)
        if not path.is_file():
            raise NotFoundError(rel_path)
        return path.read_text(encoding="utf-8")

    def write_text(self, rel_path: str, content: str) -> None:
        path = self.resolve(rel_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

    def delete(self, rel_path: str) -> None:
        path = self.resolve(rel_path)
        if not path.is_file():
            raise NotFoundError(rel_path)
        path.unlink()

    def glob(self, pattern: str) -> List[str]:
        pattern = pattern.strip().lstrip("/")
        if not pattern:
            return []
        matches = []
        for path in self._root.glob(pattern):
            if path.is_file():
                matches.append(path.relative_to(self._root).as_posix())
        return sorted(matches)


def open_workspace(root: Optional[str]) -> Workspace:
    """Build the local workspace, failing with "No workspace folder open" when unset."""
    if not root:
        raise WorkspaceUnavailableError()
    return LocalWorkspace(root)


class Terminal:
    """Fire-and-show command dispatch. Output and exit codes are not captured."""

    def send_text(self, terminal_name: str, command: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError


class ShellTerminal(Terminal):
    def __init__(self, cwd: str | Path | None = None) -> None:
        self.cwd = str(cwd) if cwd is not None else None

    def send_text(self, terminal_name: str, command: str) -> None:
        logger.info("terminal=%s dispatch: %s", terminal_name, command)
        subprocess.Popen(command, shell=True, cwd=self.cwd)


class LoggingTerminal(Terminal):
    """Records dispatched commands without running them."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str]] = []

    def send_text(self, terminal_name: str, command: str) -> None:
        logger.info("terminal=%s (log only): %s", terminal_name, command)
        self.sent.append((terminal_name, command))


class Editor:
    def open_file(self, path: Path) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def format_file(self, path: Path) -> None:  # pragma: no cover - interface only
        raise NotImplementedError


class LoggingEditor(Editor):
    """Headless editor: records open/format requests for the host UI to pick up."""

    def __init__(self) -> None:
        self.opened: List[str] = []
        self.formatted: List[str] = []

    def open_file(self, path: Path) -> None:
        logger.info("editor open: %s", path)
        self.opened.append(str(path))

    def format_file(self, path: Path) -> None:
        logger.info("editor format: %s", path)
        self.formatted.append(str(path))


class Notifier:
    def info(self, message: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def warning(self, message: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def error(self, message: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError


class CollectingNotifier(Notifier):
    """Keeps every notification (level, message) and mirrors it to the log."""

    def __init__(self) -> None:
        self.messages: List[Tuple[str, str]] = []

    def info(self, message: str) -> None:
        logger.info("notify: %s", message)
        self.messages.append(("info", message))

    def warning(self, message: str) -> None:
        logger.warning("notify: %s", message)
        self.messages.append(("warning", message))

    def error(self, message: str) -> None:
        logger.error("notify: %s", message)
        self.messages.append(("error", message))

    def of_level(self, level: str) -> List[str]:
        return [message for lvl, message in self.messages if lvl == level]

    def drain(self) -> List[Tuple[str, str]]:
        drained, self.messages = self.messages, []
        return drained


class OperatorLog:
    """Named output channels for query results, e.g. "Agent Find: *.txt"."""

    def __init__(self) -> None:
        self.channels: Dict[str, List[str]] = {}

    def channel(self, name: str) -> List[str]:
        return self.channels.setdefault(name, [])

    def append_line(self, name: str, line: str) -> None:
        self.channel(name).append(line)
        logger.info("[%s] %s", name, line)
