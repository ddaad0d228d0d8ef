"""CLI entry point for the agent-core package."""

from __future__ import annotations

import asyncio
import json
import os
import platform
import shutil
import subprocess
import sys
from pathlib import Path
from typing import List, Optional

# OpenRouter: one API key for many models (OpenAI, Claude, Gemini, etc.)
OPENROUTER_KEYS_URL = "https://openrouter.ai/keys"
MIN_PYTHON = (3, 10)


def _print_setup_banner(
    provider: str,
    workspace: Optional[str],
    port: int,
    *,
    for_startup: bool = True,
) -> None:
    """Print setup/LLM instructions. If for_startup, show 'started' line; else show 'Setup' header."""
    provider_note = "no API key required" if provider == "stub" else "API key from .env"
    base = f"http://localhost:{port}"
    print()
    if for_startup:
        print("✅ Agent core started — provider: {} ({})".format(provider, provider_note))
    else:
        print("Agent Core — Setup")
        print("Provider: {} ({})".format(provider, provider_note))
    print("Workspace: {}".format(workspace or "not set (file commands will fail: No workspace folder open)"))
    print()
    print("Docs:     {}/docs".format(base))
    print("Health:   {}/health".format(base))
    print()
    print("────────────────────────────────────────────")
    print("Get an API key from OpenRouter (one key for many models):")
    print("   {}".format(OPENROUTER_KEYS_URL))
    print()
    print("Create a .env file in this folder (or edit it if you already have one)")
    print("and copy the block below into it, replacing YOUR_KEY_HERE and the path:")
    print()
    print("   PROVIDER=openrouter")
    print("   OPENROUTER_API_KEY=YOUR_KEY_HERE")
    print("   OPENROUTER_MODEL=openai/gpt-4o-mini")
    print("   WORKSPACE_ROOT=/path/to/your/project")
    print()
    print("Then restart: stop the server (Ctrl+C) and run agent-core again.")
    print()


def _python_version_str() -> str:
    return ".".join(str(part) for part in sys.version_info[:3])


def _print_help() -> None:
    print("Agent Core CLI")
    print()
    print("Usage:")
    print("  agent-core                                   Start the HTTP service")
    print("  agent-core setup                             Print setup/env guidance")
    print("  agent-core doctor                            Print install/environment diagnostics")
    print("  agent-core scan <response.txt>               Print the commands found in a saved response")
    print("  agent-core exec <profile.yaml> <response.txt> [workspace_dir]")
    print("                                               Authorize and execute a saved response")
    print()


def _print_doctor() -> None:
    from .config import get_settings
    from .storage.db import is_postgres

    settings = get_settings()
    print("Agent Core Doctor")
    print()
    print(f"Platform:  {platform.platform()}")
    print(f"Python:    {_python_version_str()}")
    print(f"Exe:       {sys.executable}")
    print(f"In venv:   {'yes' if sys.prefix != sys.base_prefix else 'no'}")
    print(f"PATH bin:  {shutil.which('agent-core') or 'not found'}")

    try:
        pip_version = subprocess.check_output(
            [sys.executable, "-m", "pip", "--version"],
            text=True,
            stderr=subprocess.STDOUT,
        ).strip()
    except (OSError, subprocess.CalledProcessError) as exc:  # pragma: no cover - diagnostics fallback
        pip_version = f"unavailable ({exc})"
    print(f"Pip:       {pip_version}")
    print()
    print(f"Provider:  {settings.provider_name}")
    workspace = settings.workspace_root
    if workspace is None:
        print("Workspace: not set")
    else:
        state = "ok" if Path(workspace).is_dir() else "missing"
        print(f"Workspace: {workspace} ({state})")
    print(f"Database:  {'postgres' if is_postgres() else settings.db_path}")
    print(f"Terminal:  {settings.terminal_mode}")
    print(f"Limits:    {settings.max_tasks_per_response} tasks/response, "
          f"{settings.stream_max_chunks} chunks, {settings.stream_max_chars} chars")
    if sys.version_info < MIN_PYTHON:
        print(f"Issue: Python is below required minimum {MIN_PYTHON[0]}.{MIN_PYTHON[1]}.")


def _read_text(path: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        print(f"Error: cannot read {path}: {exc}", file=sys.stderr)
        sys.exit(2)


def _run_scan(response_path: str) -> None:
    from .grammar import scan

    result = scan(_read_text(response_path))
    payload = {
        "invocations": [
            {
                "kind": inv.kind.value,
                "target": inv.target,
                "line": inv.line,
                "glob": inv.glob,
                "empty_body": inv.empty_body,
                "offset": inv.offset,
            }
            for inv in result
        ],
        "warnings": [str(w) for w in result.warnings],
        "possible_truncation": result.possible_truncation,
    }
    print(json.dumps(payload, indent=2))


def _run_exec(args: List[str]) -> int:
    from .config import get_settings
    from .errors import WorkspaceUnavailableError
    from .executor import TaskExecutor
    from .grammar import scan
    from .profile_loader import ProfileLoadError, load_agent_profile
    from .workspace import CollectingNotifier, LoggingTerminal, OperatorLog, ShellTerminal, open_workspace

    if len(args) < 2:
        _print_help()
        return 2
    settings = get_settings()
    try:
        agent = load_agent_profile(args[0])
    except ProfileLoadError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        if exc.details:
            print(json.dumps(exc.details, indent=2), file=sys.stderr)
        return 2

    text = _read_text(args[1])
    root = args[2] if len(args) > 2 else settings.workspace_root
    try:
        workspace = open_workspace(root)
    except WorkspaceUnavailableError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    terminal = LoggingTerminal() if settings.terminal_mode == "log" else ShellTerminal(cwd=workspace.root)
    notifier = CollectingNotifier()
    operator_log = OperatorLog()
    executor = TaskExecutor(
        workspace=workspace,
        terminal=terminal,
        notifier=notifier,
        operator_log=operator_log,
        max_tasks=settings.max_tasks_per_response,
        empty_file_placeholder=settings.empty_file_placeholder,
    )
    report = asyncio.run(executor.execute(agent, scan(text)))

    for result in report.results:
        print(f"[{result.status.value}] {result.message}")
    for line in report.summary_lines()[len(report.results):]:
        print(line)
    for channel, lines in operator_log.channels.items():
        print()
        print(f"== {channel} ==")
        for line in lines:
            print(line)
    return 0


def main() -> None:
    """Run the HTTP service or handle setup/doctor/scan/exec commands."""
    from .config import get_settings

    port = int(os.environ.get("PORT", "4280"))
    host = os.environ.get("HOST", "0.0.0.0")
    settings = get_settings()

    if len(sys.argv) > 1:
        subcommand = sys.argv[1].strip().lower()
        if subcommand in {"-h", "--help", "help"}:
            _print_help()
            sys.exit(0)
        if subcommand == "setup":
            _print_setup_banner(
                provider=settings.provider_name,
                workspace=settings.workspace_root,
                port=port,
                for_startup=False,
            )
            sys.exit(0)
        if subcommand == "doctor":
            _print_doctor()
            sys.exit(0)
        if subcommand == "scan":
            if len(sys.argv) < 3:
                _print_help()
                sys.exit(2)
            _run_scan(sys.argv[2])
            sys.exit(0)
        if subcommand == "exec":
            sys.exit(_run_exec(sys.argv[2:]))

    import uvicorn

    _print_setup_banner(
        provider=settings.provider_name,
        workspace=settings.workspace_root,
        port=port,
        for_startup=True,
    )

    uvicorn.run(
        "agentcore.main:app",
        host=host,
        port=port,
        factory=False,
    )


if __name__ == "__main__":
    main()
    sys.exit(0)
