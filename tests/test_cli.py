from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace

import pytest

from agentcore import cli

PROFILE = """\
id: writer
name: Writer
system_prompt: You write files.
permissions:
  - capability: write_files
    granted: true
"""


def test_print_help_includes_subcommands(capsys: pytest.CaptureFixture[str]) -> None:
    cli._print_help()
    output = capsys.readouterr().out
    assert "agent-core doctor" in output
    assert "agent-core scan <response.txt>" in output
    assert "agent-core exec <profile.yaml> <response.txt> [workspace_dir]" in output


def test_main_setup_subcommand_prints_setup_and_exits(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    calls = {}

    def fake_get_settings() -> SimpleNamespace:
        return SimpleNamespace(provider_name="stub", workspace_root="/srv/project")

    def fake_setup_banner(provider: str, workspace: str, port: int, *, for_startup: bool) -> None:
        calls["provider"] = provider
        calls["workspace"] = workspace
        calls["port"] = port
        calls["for_startup"] = for_startup

    monkeypatch.delenv("PORT", raising=False)
    monkeypatch.setattr("agentcore.config.get_settings", fake_get_settings)
    monkeypatch.setattr(cli, "_print_setup_banner", fake_setup_banner)
    monkeypatch.setattr(cli.sys, "argv", ["agent-core", "setup"])

    with pytest.raises(SystemExit) as exc:
        cli.main()

    assert exc.value.code == 0
    assert calls == {
        "provider": "stub",
        "workspace": "/srv/project",
        "port": 4280,
        "for_startup": False,
    }


def test_print_doctor_reports_runtime_info(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
) -> None:
    monkeypatch.setenv("WORKSPACE_ROOT", str(tmp_path))
    monkeypatch.setenv("TERMINAL_MODE", "log")
    monkeypatch.setattr(cli.shutil, "which", lambda _name: "/tmp/agent-core")
    monkeypatch.setattr(cli.subprocess, "check_output", lambda *_args, **_kwargs: "pip X.Y.Z")

    cli._print_doctor()
    output = capsys.readouterr().out
    assert "Agent Core Doctor" in output
    assert "PATH bin:  /tmp/agent-core" in output
    assert "pip X.Y.Z" in output
    assert f"Workspace: {tmp_path} (ok)" in output
    assert "Terminal:  log" in output


def test_scan_prints_invocations_as_json(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
) -> None:
    response = tmp_path / "response.txt"
    response.write_text(
        "[RUN_COMMAND: npm test]\n[CREATE_FILE: a.txt]\nhi\n[/CREATE_FILE]\n[CREATE_FILE: b.txt]\ncut off",
        encoding="utf-8",
    )
    monkeypatch.setattr(cli.sys, "argv", ["agent-core", "scan", str(response)])

    with pytest.raises(SystemExit) as exc:
        cli.main()

    assert exc.value.code == 0
    payload = json.loads(capsys.readouterr().out)
    assert [(i["kind"], i["target"]) for i in payload["invocations"]] == [
        ("CREATE_FILE", "a.txt"),
        ("RUN_COMMAND", "npm test"),
    ]
    assert payload["possible_truncation"] is True
    assert len(payload["warnings"]) == 1


def test_exec_runs_saved_response_against_workspace(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
) -> None:
    workspace = tmp_path / "ws"
    workspace.mkdir()
    profile = tmp_path / "writer.yaml"
    profile.write_text(PROFILE, encoding="utf-8")
    response = tmp_path / "response.txt"
    response.write_text(
        "[CREATE_FILE: notes.txt]\nbuy milk\n[/CREATE_FILE]\n[RUN_COMMAND: rm -rf /]\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("TERMINAL_MODE", "log")

    code = cli._run_exec([str(profile), str(response), str(workspace)])

    assert code == 0
    output = capsys.readouterr().out
    assert "[ok] Created file: notes.txt" in output
    assert "[denied]" in output
    assert (workspace / "notes.txt").read_text(encoding="utf-8") == "buy milk"


def test_exec_rejects_invalid_profile(
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
) -> None:
    profile = tmp_path / "broken.yaml"
    profile.write_text("name: No id\n", encoding="utf-8")
    response = tmp_path / "response.txt"
    response.write_text("nothing to do", encoding="utf-8")

    assert cli._run_exec([str(profile), str(response), str(tmp_path)]) == 2
    assert "Agent profile failed validation" in capsys.readouterr().err


def test_exec_requires_two_arguments(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli._run_exec(["only-profile.yaml"]) == 2
    assert "Usage:" in capsys.readouterr().out
