"""
Prompt construction: advisory task analysis, grammar instructions and the
contextual message list sent to the provider.

The instruction text reproduces the command tags exactly as the scanner
reads them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import NotFoundError, WorkspaceUnavailableError
from .models import AgentMemory, ConversationTurn, IntentHint
from .workspace import Workspace

logger = logging.getLogger("agent-core")

INTENT_CONFIDENCE_THRESHOLD = 0.5

FILE_OPERATIONS = "file_operations"
GIT_OPERATIONS = "git_operations"
COMMAND_EXECUTION = "command_execution"
CODE_ANALYSIS = "code_analysis"

TASK_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    FILE_OPERATIONS: (
        "create file",
        "write file",
        "save to file",
        "generate file",
        "edit file",
        "delete file",
        "update file",
        "modify file",
    ),
    GIT_OPERATIONS: ("git commit", "commit changes", "push to git", "create branch", "git status"),
    COMMAND_EXECUTION: ("run command", "execute", "npm install", "npm run", "pip install", "docker"),
    CODE_ANALYSIS: ("analyze code", "review code", "check for bugs", "lint code", "find files", "search for"),
}

TASK_INSTRUCTIONS: Dict[str, str] = {
    FILE_OPERATIONS: (
        "- Create a file: `[CREATE_FILE: path]\\n<content>\\n[/CREATE_FILE]`\n"
        "- Edit a file: `[EDIT_FILE: path]\\n[FIND]exact text[/FIND]\\n[REPLACE]new text[/REPLACE]\\n[/EDIT_FILE]`\n"
        "- Replace code: `[REPLACE_CODE: path]\\n[FIND]exact code[/FIND]\\n[REPLACE]new code[/REPLACE]\\n[/REPLACE_CODE]`\n"
        "- Insert code before a line: `[INSERT_CODE: path:line]\\n<code>\\n[/INSERT_CODE]`\n"
        "- Delete a file: `[DELETE_FILE: path]`\n"
        "- Open or format a file: `[OPEN_EDITOR: path]`, `[FORMAT_FILE: path]`\n"
    ),
    GIT_OPERATIONS: "- Git: `[GIT_COMMAND: git status]` or `[GIT_COMMIT: commit message]`\n",
    COMMAND_EXECUTION: "- Shell commands: `[RUN_COMMAND: npm install]`\n",
    CODE_ANALYSIS: (
        "- Read a file: `[READ_FILE: path]`\n"
        "- Search file contents: `[GREP: pattern, glob]`\n"
        "- Find files: `[FIND_FILES: glob]`\n"
    ),
}


@dataclass(frozen=True)
class TaskAnalysis:
    tasks: Tuple[str, ...] = ()
    source: str = "keywords"

    @property
    def has_tasks(self) -> bool:
        return bool(self.tasks)


def analyze_tasks(message: str, intent: Optional[IntentHint] = None) -> TaskAnalysis:
    """
    Keyword scan of the user message. An intent hint from an external
    classifier is consumed as-is when its label is a known task category
    and its confidence reaches the threshold.
    """
    lowered = message.lower()
    detected = [task for task, words in TASK_KEYWORDS.items() if any(w in lowered for w in words)]
    source = "keywords"
    if intent is not None and intent.label in TASK_KEYWORDS and intent.confidence >= INTENT_CONFIDENCE_THRESHOLD:
        if intent.label not in detected:
            detected.append(intent.label)
        source = "intent"
    ordered = tuple(task for task in TASK_KEYWORDS if task in detected)
    if ordered:
        logger.info("task analysis (%s): %s", source, ", ".join(ordered))
    return TaskAnalysis(tasks=ordered, source=source)


def task_instructions(tasks: Sequence[str]) -> str:
    lines = ["Task Execution Capabilities:"]
    for task in TASK_KEYWORDS:
        if task in tasks:
            lines.append(TASK_INSTRUCTIONS[task].rstrip("\n"))
    lines.append("")
    lines.append(
        "When the user asks you to perform these tasks, use the appropriate format in your "
        "response and I will execute them for you."
    )
    return "\n".join(lines)


def _shared_file_block(files: Sequence[Tuple[str, Optional[str]]]) -> str:
    parts = ["Shared Files Context:", "The user has shared the following files with you:"]
    for path, content in files:
        if content is None:
            parts.append(f"- {path} (unavailable)")
        else:
            parts.append(f"- {path}\n```\n{content}\n```")
    return "\n".join(parts)


def _snippet_block(snippets: Sequence[Tuple[str, Optional[str]]]) -> str:
    parts = ["Shared Text Snippets:"]
    for idx, (content, file_name) in enumerate(snippets, start=1):
        source = f" (from {file_name})" if file_name else ""
        parts.append(f"{idx}.{source}\n```\n{content}\n```")
    return "\n\n".join(parts)


def read_shared_files(memory: AgentMemory, workspace: Optional[Workspace]) -> List[Tuple[str, Optional[str]]]:
    files: List[Tuple[str, Optional[str]]] = []
    for path in memory.shared_files:
        content: Optional[str] = None
        if workspace is not None:
            try:
                content = workspace.read_text(path)
            except (NotFoundError, WorkspaceUnavailableError, OSError, UnicodeDecodeError) as exc:
                logger.info("shared file %s unavailable: %s", path, exc)
        files.append((path, content))
    return files


def build_messages(
    *,
    system_prompt: str,
    user_message: str,
    history: Sequence[ConversationTurn],
    shared_files: Sequence[Tuple[str, Optional[str]]] = (),
    snippets: Sequence[Tuple[str, Optional[str]]] = (),
    analysis: Optional[TaskAnalysis] = None,
) -> List[Dict[str, str]]:
    """[system + context + instructions] -> history (summary first) -> user message."""
    system = system_prompt
    if shared_files:
        system += "\n\n" + _shared_file_block(shared_files)
    if snippets:
        system += "\n\n" + _snippet_block(snippets)
    if analysis is not None and analysis.has_tasks:
        system += "\n\n" + task_instructions(analysis.tasks)

    messages: List[Dict[str, str]] = [{"role": "system", "content": system}]
    for turn in history:
        messages.append({"role": turn.role, "content": turn.content})
    messages.append({"role": "user", "content": user_message})
    return messages
