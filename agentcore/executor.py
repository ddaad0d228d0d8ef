"""
Task executor: one authorized invocation -> one side effect -> one result line.

Invocations run strictly one after another in scan order. Every failure is
isolated to its invocation; only a missing workspace aborts the batch. A
per-response task cap halts execution once reached; that is reported
separately from task failures.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .errors import (
    ContentMismatchError,
    MalformedInputError,
    NotFoundError,
    WorkspaceUnavailableError,
)
from .models import AgentConfig, CommandInvocation, CommandKind, utc_now
from .permissions import PermissionGuard
from .workspace import Editor, LoggingEditor, Notifier, OperatorLog, Terminal, Workspace

logger = logging.getLogger("agent-core")

GIT_TERMINAL = "AI Agent Git"
COMMAND_TERMINAL = "AI Agent Command"
DEFAULT_MAX_TASKS = 10
PLACEHOLDER_NOTE = "(with default content - original was empty)"

_FAILURE_VERBS: Dict[CommandKind, str] = {
    CommandKind.CREATE_FILE: "create file",
    CommandKind.EDIT_FILE: "edit file",
    CommandKind.READ_FILE: "read file",
    CommandKind.DELETE_FILE: "delete file",
    CommandKind.GREP: "search files",
    CommandKind.FIND_FILES: "find files",
    CommandKind.INSERT_CODE: "insert code",
    CommandKind.REPLACE_CODE: "replace code",
    CommandKind.OPEN_EDITOR: "open file",
    CommandKind.FORMAT_FILE: "format file",
    CommandKind.GIT_COMMAND: "execute git command",
    CommandKind.GIT_COMMIT: "commit",
    CommandKind.RUN_COMMAND: "execute command",
}


class TaskStatus(str, Enum):
    OK = "ok"
    DENIED = "denied"
    NOT_FOUND = "not_found"
    MISMATCH = "mismatch"
    MALFORMED = "malformed"
    FAILED = "failed"


@dataclass
class TaskResult:
    kind: CommandKind
    target: str
    status: TaskStatus
    message: str
    data: Any = None

    @property
    def ok(self) -> bool:
        return self.status is TaskStatus.OK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "target": self.target,
            "status": self.status.value,
            "message": self.message,
            "data": self.data,
        }


@dataclass
class ExecutionReport:
    results: List[TaskResult] = field(default_factory=list)
    limit_reached: bool = False
    skipped: int = 0
    aborted: Optional[str] = None

    @property
    def succeeded(self) -> List[TaskResult]:
        return [r for r in self.results if r.ok]

    def summary_lines(self) -> List[str]:
        lines = [r.message for r in self.results]
        if self.limit_reached:
            lines.append(f"Task limit reached; {self.skipped} task(s) not executed")
        if self.aborted:
            lines.append(self.aborted)
        return lines

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "executed": len(self.succeeded),
            "limit_reached": self.limit_reached,
            "skipped": self.skipped,
            "aborted": self.aborted,
        }


def placeholder_body(target: str, created_at: datetime) -> str:
    """Content written instead of an empty CREATE_FILE body."""
    stem = PurePosixPath(target).stem or target
    title = re.sub(r"[_\-.\s]+", " ", stem).strip().upper() or target.upper()
    return (
        f"# {title}\n"
        f"\n"
        f"File: {target}\n"
        f"Created on: {created_at.isoformat()}\n"
        f"\n"
        f"This file was created by an agent without initial content.\n"
    )


class TaskExecutor:
    def __init__(
        self,
        *,
        workspace: Optional[Workspace],
        terminal: Terminal,
        notifier: Notifier,
        operator_log: Optional[OperatorLog] = None,
        editor: Optional[Editor] = None,
        guard: Optional[PermissionGuard] = None,
        max_tasks: int = DEFAULT_MAX_TASKS,
        empty_file_placeholder: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.workspace = workspace
        self.terminal = terminal
        self.notifier = notifier
        self.operator_log = operator_log or OperatorLog()
        self.editor = editor or LoggingEditor()
        self.guard = guard or PermissionGuard()
        self.max_tasks = max_tasks
        self.empty_file_placeholder = empty_file_placeholder
        self.clock = clock

    async def execute(self, agent: AgentConfig, invocations: Iterable[CommandInvocation]) -> ExecutionReport:
        pending = list(invocations)
        report = ExecutionReport()
        if not pending:
            logger.info("agent=%s no tasks to execute", agent.id)
            return report

        if self.workspace is None:
            message = "No workspace folder open"
            self.notifier.error(message)
            report.aborted = message
            logger.error("agent=%s aborted %d task(s): %s", agent.id, len(pending), message)
            return report

        for index, invocation in enumerate(pending):
            if index >= self.max_tasks:
                report.limit_reached = True
                report.skipped = len(pending) - index
                logger.warning(
                    "agent=%s task limit reached (%d); %d remaining task(s) not executed",
                    agent.id,
                    self.max_tasks,
                    report.skipped,
                )
                self.notifier.warning(
                    f"Task limit of {self.max_tasks} reached; {report.skipped} remaining task(s) were not executed."
                )
                break
            result = await self._run_one(agent, invocation)
            report.results.append(result)
            logger.info(
                "agent=%s task=%s target=%s status=%s",
                agent.id,
                invocation.kind.value,
                invocation.target,
                result.status.value,
            )

        succeeded = report.succeeded
        if succeeded:
            lines = "\n".join(f"- {r.message}" for r in succeeded)
            self.notifier.info(f"Agent executed {len(succeeded)} task(s):\n{lines}")
        return report

    async def _run_one(self, agent: AgentConfig, invocation: CommandInvocation) -> TaskResult:
        authorization = self.guard.authorize_invocation(agent.permissions, invocation, agent_name=agent.name)
        if not authorization.allowed:
            self.notifier.error(authorization.message)
            return TaskResult(invocation.kind, invocation.target, TaskStatus.DENIED, authorization.message,
                              data={"reason": authorization.reason})

        verb = _FAILURE_VERBS[invocation.kind]
        try:
            message, data = await self._dispatch(invocation)
        except ContentMismatchError as exc:
            self.notifier.warning(str(exc))
            return TaskResult(invocation.kind, invocation.target, TaskStatus.MISMATCH, str(exc))
        except MalformedInputError as exc:
            self.notifier.warning(f"Skipped {invocation.describe()}: {exc.reason}")
            return TaskResult(invocation.kind, invocation.target, TaskStatus.MALFORMED, exc.reason)
        except NotFoundError as exc:
            message = f"Failed to {verb}: {exc}"
            self.notifier.error(message)
            return TaskResult(invocation.kind, invocation.target, TaskStatus.NOT_FOUND, message)
        except (WorkspaceUnavailableError, OSError, UnicodeDecodeError) as exc:
            message = f"Failed to {verb}: {exc}"
            self.notifier.error(message)
            logger.warning("agent=%s %s failed: %s", agent.id, invocation.describe(), exc)
            return TaskResult(invocation.kind, invocation.target, TaskStatus.FAILED, message)
        return TaskResult(invocation.kind, invocation.target, TaskStatus.OK, message, data)

    async def _dispatch(self, invocation: CommandInvocation) -> Tuple[str, Any]:
        handler = getattr(self, f"_do_{invocation.kind.value.lower()}")
        return await handler(invocation)

    # -- file mutations -------------------------------------------------------

    async def _do_create_file(self, inv: CommandInvocation) -> Tuple[str, Any]:
        content = inv.content or ""
        note = ""
        if inv.empty_body:
            if not self.empty_file_placeholder:
                raise MalformedInputError(inv.kind.value, inv.target, "empty body", inv.offset)
            content = placeholder_body(inv.target, self.clock())
            note = f" {PLACEHOLDER_NOTE}"
            logger.warning("empty CREATE_FILE body for %s; wrote placeholder content", inv.target)
        await asyncio.to_thread(self.workspace.write_text, inv.target, content)
        return f"Created file: {inv.target}{note}", {"placeholder": inv.empty_body}

    async def _replace_text(self, inv: CommandInvocation) -> int:
        if not inv.find:
            raise MalformedInputError(inv.kind.value, inv.target, "empty FIND block", inv.offset)
        if not await asyncio.to_thread(self.workspace.exists, inv.target):
            raise NotFoundError(inv.target)
        original = await asyncio.to_thread(self.workspace.read_text, inv.target)
        occurrences = original.count(inv.find)
        if occurrences == 0:
            raise ContentMismatchError(inv.target, inv.find)
        updated = original.replace(inv.find, inv.replace or "")
        await asyncio.to_thread(self.workspace.write_text, inv.target, updated)
        return occurrences

    async def _do_edit_file(self, inv: CommandInvocation) -> Tuple[str, Any]:
        count = await self._replace_text(inv)
        return f"Edited file: {inv.target}", {"replacements": count}

    async def _do_replace_code(self, inv: CommandInvocation) -> Tuple[str, Any]:
        count = await self._replace_text(inv)
        return f"Replaced code in {inv.target}", {"replacements": count}

    async def _do_delete_file(self, inv: CommandInvocation) -> Tuple[str, Any]:
        await asyncio.to_thread(self.workspace.delete, inv.target)
        return f"Deleted file: {inv.target}", None

    async def _do_insert_code(self, inv: CommandInvocation) -> Tuple[str, Any]:
        if not await asyncio.to_thread(self.workspace.exists, inv.target):
            raise NotFoundError(inv.target)
        original = await asyncio.to_thread(self.workspace.read_text, inv.target)
        lines = original.split("\n")
        index = min(max((inv.line or 1) - 1, 0), len(lines))
        lines[index:index] = (inv.content or "").split("\n")
        await asyncio.to_thread(self.workspace.write_text, inv.target, "\n".join(lines))
        return f"Inserted code in {inv.target} at line {inv.line}", None

    async def _do_format_file(self, inv: CommandInvocation) -> Tuple[str, Any]:
        if not await asyncio.to_thread(self.workspace.exists, inv.target):
            raise NotFoundError(inv.target)
        self.editor.format_file(self.workspace.root / inv.target)
        return f"Formatted file: {inv.target}", None

    # -- reads and queries ----------------------------------------------------

    async def _do_read_file(self, inv: CommandInvocation) -> Tuple[str, Any]:
        content = await asyncio.to_thread(self.workspace.read_text, inv.target)
        channel = f"Agent Read: {inv.target}"
        for line in content.split("\n"):
            self.operator_log.append_line(channel, line)
        return f"Read file: {inv.target} ({len(content)} chars)", {"content": content}

    async def _do_open_editor(self, inv: CommandInvocation) -> Tuple[str, Any]:
        if not await asyncio.to_thread(self.workspace.exists, inv.target):
            raise NotFoundError(inv.target)
        self.editor.open_file(self.workspace.root / inv.target)
        return f"Opened file: {inv.target}", None

    async def _do_grep(self, inv: CommandInvocation) -> Tuple[str, Any]:
        matches = await asyncio.to_thread(self._grep, inv.target, inv.glob or "**/*")
        channel = f"Agent Grep: {inv.target}"
        if not matches:
            self.operator_log.append_line(channel, "No matches found.")
        for path, line_no, text in matches:
            self.operator_log.append_line(channel, f"{path}:{line_no}: {text}")
        files = len({m[0] for m in matches})
        message = f'Found {len(matches)} match(es) for "{inv.target}" in {files} file(s)'
        return message, [{"file": p, "line": n, "content": t} for p, n, t in matches]

    def _grep(self, pattern: str, glob: str) -> List[Tuple[str, int, str]]:
        try:
            regex = re.compile(pattern, re.IGNORECASE)
        except re.error:
            regex = re.compile(re.escape(pattern), re.IGNORECASE)
        matches: List[Tuple[str, int, str]] = []
        for rel_path in self.workspace.glob(glob):
            try:
                text = self.workspace.read_text(rel_path)
            except (UnicodeDecodeError, OSError):
                continue
            for line_no, line in enumerate(text.split("\n"), start=1):
                if regex.search(line):
                    matches.append((rel_path, line_no, line.strip()))
        return matches

    async def _do_find_files(self, inv: CommandInvocation) -> Tuple[str, Any]:
        glob = inv.glob or inv.target
        files = await asyncio.to_thread(self.workspace.glob, glob)
        channel = f"Agent Find: {glob}"
        if not files:
            self.operator_log.append_line(channel, "No files found.")
        for rel_path in files:
            self.operator_log.append_line(channel, rel_path)
        return f"Found {len(files)} file(s) matching {glob}", files

    # -- terminal dispatch ----------------------------------------------------

    async def _do_git_command(self, inv: CommandInvocation) -> Tuple[str, Any]:
        self.terminal.send_text(GIT_TERMINAL, inv.target)
        return f"Executed git command: {inv.target}", None

    async def _do_git_commit(self, inv: CommandInvocation) -> Tuple[str, Any]:
        self.terminal.send_text(GIT_TERMINAL, f'git add -A && git commit -m "{inv.target}"')
        return f"Committed changes: {inv.target}", None

    async def _do_run_command(self, inv: CommandInvocation) -> Tuple[str, Any]:
        self.terminal.send_text(COMMAND_TERMINAL, inv.target)
        return f"Executed command: {inv.target}", None
