from __future__ import annotations

import inspect
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from .config import Settings, get_settings
from .errors import ReentrancyError, WorkspaceUnavailableError
from .executor import ExecutionReport, TaskExecutor
from .grammar import CommandScanner
from .memory import MemoryManager
from .models import AgentConfig, AgentMemory, IntentHint, TextSnippet
from .permissions import PermissionGuard
from .prompts import analyze_tasks, build_messages, read_shared_files
from .providers import BaseProvider
from .registry import AgentRegistry
from .safety import CompletionMode, StreamMonitor, StreamOutcome
from .workspace import (
    CollectingNotifier,
    Editor,
    LoggingEditor,
    LoggingTerminal,
    Notifier,
    OperatorLog,
    ShellTerminal,
    Terminal,
    Workspace,
    open_workspace,
)

logger = logging.getLogger("agent-core")

OnResponse = Callable[[str, bool], Union[None, Awaitable[None]]]


class ErrorEnvelope(Exception):
    """
    Custom exception used internally to simplify control flow.

    Handlers in `agentcore.main` convert this into the standardized error envelope.
    """

    def __init__(self, status_code: int, code: str, message: str, details: Any = None):
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details
        super().__init__(message)


def new_request_id() -> str:
    return str(uuid.uuid4())


def build_error_envelope(
    *,
    request_id: str,
    agent_id: Optional[str],
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> Tuple[int, Dict[str, Any]]:
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details,
        },
        "meta": {
            "request_id": request_id,
            "agent": agent_id or "unknown",
        },
    }
    return status_code, body


def apology(detail: str) -> str:
    return f"I apologize, but I encountered an error: {detail}"


@dataclass
class MessageOutcome:
    agent_id: str
    response: str
    stream: Optional[StreamOutcome] = None
    report: ExecutionReport = field(default_factory=ExecutionReport)
    notifications: List[Tuple[str, str]] = field(default_factory=list)
    operator_log: Dict[str, List[str]] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "completion": self.stream.to_dict() if self.stream else None,
            "tasks": self.report.to_dict(),
            "notifications": [{"level": lvl, "message": msg} for lvl, msg in self.notifications],
            "operator_log": self.operator_log,
            "error": self.error,
        }


async def _emit(on_response: Optional[OnResponse], text: str, done: bool) -> None:
    if on_response is None:
        return
    result = on_response(text, done)
    if inspect.isawaitable(result):
        await result


def execution_results_block(report: ExecutionReport) -> str:
    lines = report.summary_lines()
    if not lines:
        return ""
    return "Execution results:\n" + "\n".join(f"- {line}" for line in lines)


class AgentService:
    """
    Per-message pipeline: memory budget -> prompt -> monitored stream ->
    scan -> authorize + execute -> memory turn.

    One AgentService (and its registry) lives for the whole process.
    """

    def __init__(
        self,
        *,
        provider: BaseProvider,
        registry: Optional[AgentRegistry] = None,
        settings: Optional[Settings] = None,
        workspace: Optional[Workspace] = None,
        terminal: Optional[Terminal] = None,
        editor: Optional[Editor] = None,
        notifier: Optional[Notifier] = None,
        scanner: Optional[CommandScanner] = None,
        guard: Optional[PermissionGuard] = None,
    ) -> None:
        self.provider = provider
        self.registry = registry or AgentRegistry()
        self._settings = settings
        self._workspace = workspace
        self._terminal = terminal
        self.editor = editor or LoggingEditor()
        self._notifier = notifier
        self.scanner = scanner or CommandScanner()
        self.guard = guard or PermissionGuard()

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    @property
    def memory_manager(self) -> MemoryManager:
        return self.registry.memory_manager

    def workspace(self) -> Optional[Workspace]:
        if self._workspace is not None:
            return self._workspace
        try:
            return open_workspace(self.settings.workspace_root)
        except WorkspaceUnavailableError as exc:
            logger.info("workspace unavailable: %s", exc)
            return None

    def terminal(self, workspace: Optional[Workspace]) -> Terminal:
        if self._terminal is not None:
            return self._terminal
        if self.settings.terminal_mode == "log":
            return LoggingTerminal()
        return ShellTerminal(cwd=workspace.root if workspace is not None else None)

    def build_executor(self, workspace: Optional[Workspace], notifier: Notifier, operator_log: OperatorLog) -> TaskExecutor:
        settings = self.settings
        return TaskExecutor(
            workspace=workspace,
            terminal=self.terminal(workspace),
            notifier=notifier,
            operator_log=operator_log,
            editor=self.editor,
            guard=self.guard,
            max_tasks=settings.max_tasks_per_response,
            empty_file_placeholder=settings.empty_file_placeholder,
        )

    async def process_message(
        self,
        agent: AgentConfig,
        user_message: str,
        on_response: Optional[OnResponse] = None,
        *,
        intent: Optional[IntentHint] = None,
    ) -> MessageOutcome:
        """
        Process one user message for `agent`.

        `on_response(text, done)` receives each streamed increment with
        done=False, then the full accumulated response once with done=True.
        Raises ReentrancyError, before doing any work, when the agent already
        has a response in flight.
        """
        self.registry.start_stream(agent.id)
        start = time.monotonic()
        try:
            outcome = await self._process(agent, user_message, on_response, intent)
        finally:
            self.registry.release_stream(agent.id)
        logger.info(
            "message agent=%s provider=%s mode=%s tasks=%d error=%s latency_ms=%.2f",
            agent.id,
            getattr(self.provider, "name", type(self.provider).__name__),
            outcome.stream.mode.value if outcome.stream else "aborted",
            len(outcome.report.results),
            outcome.error,
            (time.monotonic() - start) * 1000.0,
        )
        return outcome

    async def _process(
        self,
        agent: AgentConfig,
        user_message: str,
        on_response: Optional[OnResponse],
        intent: Optional[IntentHint],
    ) -> MessageOutcome:
        settings = self.settings
        notifier = self._notifier or CollectingNotifier()
        operator_log = OperatorLog()
        workspace = self.workspace()
        memory = self.registry.memory(agent.id)
        manager = self.memory_manager

        # 1) Bound memory, then build the prompt.
        manager.enforce_budget(memory, agent.model.max_tokens, workspace)
        history = manager.history_for_prompt(memory, agent.model.max_tokens)
        analysis = analyze_tasks(user_message, intent)
        messages = build_messages(
            system_prompt=agent.system_prompt,
            user_message=user_message,
            history=history,
            shared_files=read_shared_files(memory, workspace),
            snippets=[(s.content, s.file_name) for s in memory.text_snippets],
            analysis=analysis,
        )

        # 2) Stream through the safety monitor.
        monitor = StreamMonitor.from_settings(agent.id, settings, state=self.registry.streams[agent.id])
        stream = self.provider.generate_streaming_response(messages, agent.model)
        try:
            async for chunk in stream:
                if monitor.feed(chunk) is not CompletionMode.STREAMING:
                    break
                if chunk.content:
                    await _emit(on_response, chunk.content, False)
        except Exception as exc:
            logger.exception("agent=%s provider failure", agent.id)
            message = apology(str(exc) or type(exc).__name__)
            notifier.error(message)
            await _emit(on_response, message, True)
            return self._outcome(agent.id, message, notifier, operator_log, error=str(exc))
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        result = monitor.finish()
        await _emit(on_response, result.text, True)

        # 3) Scan, authorize and execute against the full buffer.
        scanned = self.scanner.scan(result.text)
        report = ExecutionReport()
        if len(scanned):
            executor = self.build_executor(workspace, notifier, operator_log)
            report = await executor.execute(agent, scanned)

        # 4) Record the exchange; execution results become part of the assistant turn.
        assistant = result.text
        block = execution_results_block(report)
        if block:
            assistant = f"{assistant}\n\n{block}" if assistant else block
        manager.record_exchange(memory, user_message, assistant)

        return self._outcome(
            agent.id, result.text, notifier, operator_log, stream=result, report=report
        )

    def _outcome(
        self,
        agent_id: str,
        response: str,
        notifier: Notifier,
        operator_log: OperatorLog,
        *,
        stream: Optional[StreamOutcome] = None,
        report: Optional[ExecutionReport] = None,
        error: Optional[str] = None,
    ) -> MessageOutcome:
        notifications = list(notifier.messages) if isinstance(notifier, CollectingNotifier) else []
        return MessageOutcome(
            agent_id=agent_id,
            response=response,
            stream=stream,
            report=report or ExecutionReport(),
            notifications=notifications,
            operator_log={name: list(lines) for name, lines in operator_log.channels.items()},
            error=error,
        )

    # -- shared context -------------------------------------------------------

    def get_memory(self, agent_id: str) -> AgentMemory:
        return self.registry.memory(agent_id)

    def add_shared_file(self, agent_id: str, path: str) -> bool:
        return self.memory_manager.add_shared_file(self.registry.memory(agent_id), path)

    def remove_shared_file(self, agent_id: str, path: str) -> bool:
        return self.memory_manager.remove_shared_file(self.registry.memory(agent_id), path)

    def add_text_snippet(self, agent_id: str, content: str, file_name: Optional[str] = None) -> int:
        return self.memory_manager.add_snippet(self.registry.memory(agent_id), content, file_name)

    def remove_text_snippet(self, agent_id: str, index: int) -> TextSnippet:
        return self.memory_manager.remove_snippet(self.registry.memory(agent_id), index)

    def get_shared_context(self, agent_id: str) -> Dict[str, Any]:
        memory = self.registry.memory(agent_id)
        return {
            "files": list(memory.shared_files),
            "text_snippets": [s.model_dump() for s in memory.text_snippets],
        }

    async def clear_memory(self, agent_id: str) -> None:
        """Forget the agent's memory. Raises ReentrancyError while a stream is active."""
        if self.registry.is_streaming(agent_id):
            raise ReentrancyError(agent_id)
        # No pending save may land after the delete.
        await self.memory_manager.flush()
        self.registry.forget(agent_id)
        logger.info("agent=%s memory cleared", agent_id)

    def cancel_stream(self, agent_id: str) -> bool:
        return self.registry.cancel(agent_id)

    async def shutdown(self) -> None:
        await self.registry.shutdown()
