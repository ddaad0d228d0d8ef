import json
from pathlib import Path
from typing import Any, Dict, Iterator, List

import pytest
from fastapi.testclient import TestClient

from agentcore.dependencies import get_provider, get_registry, reset_registry
from agentcore.providers import ScriptedProvider
from tests.conftest import env_vars


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def app(tmp_path: Path, workspace: Path) -> Iterator[Any]:
    """App wired to a temp DB and workspace, commands logged instead of run."""
    from agentcore.main import app as fastapi_app

    env = {
        "DB_PATH": str(tmp_path / "agentcore.db"),
        "WORKSPACE_ROOT": str(workspace),
        "TERMINAL_MODE": "log",
        "PROVIDER": "stub",
        "AUTH_TOKEN": "",
    }
    with env_vars(env):
        reset_registry()
        try:
            yield fastapi_app
        finally:
            fastapi_app.dependency_overrides.clear()
            reset_registry()


@pytest.fixture
def client(app) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


def _script(app, chunks: List[str]) -> ScriptedProvider:
    provider = ScriptedProvider(chunks)
    app.dependency_overrides[get_provider] = lambda: provider
    return provider


def _agent(agent_id: str = "writer", *capabilities: str) -> Dict[str, Any]:
    return {
        "id": agent_id,
        "name": "Writer",
        "system_prompt": "You write files.",
        "permissions": [{"capability": cap, "granted": True} for cap in capabilities],
    }


def _assert_error_envelope(resp_json: Dict[str, Any], expected_code: str) -> None:
    assert resp_json["error"]["code"] == expected_code
    assert isinstance(resp_json["error"]["message"], str)
    assert isinstance(resp_json["meta"]["request_id"], str)
    assert isinstance(resp_json["meta"]["agent"], str)


def _sse_events(body: str) -> List[Dict[str, Any]]:
    events = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append({"event": lines["event"], "data": json.loads(lines["data"])})
    return events


def test_health(client: TestClient, workspace: Path) -> None:
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "service": "agent-core", "provider": "stub", "workspace": True}


def test_message_executes_create_file(app, client: TestClient, workspace: Path) -> None:
    _script(app, ["On it.\n", "[CREATE_FILE: hello.txt]\nHello World\n[/CREATE_FILE]"])

    resp = client.post(
        "/agents/writer/messages",
        json={"message": "create file hello.txt", "agent": _agent("writer", "write_files")},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["completion"]["mode"] == "completed"
    assert body["tasks"]["executed"] == 1
    assert body["tasks"]["results"][0]["message"] == "Created file: hello.txt"
    assert body["meta"]["agent"] == "writer"
    assert (workspace / "hello.txt").read_text(encoding="utf-8") == "Hello World"
    assert any(level == "info" for level in (n["level"] for n in body["notifications"]))


def test_message_without_permission_reports_denial(app, client: TestClient, workspace: Path) -> None:
    _script(app, ["[CREATE_FILE: hello.txt]\nHello\n[/CREATE_FILE]"])

    resp = client.post("/agents/writer/messages", json={"message": "hi", "agent": _agent("writer")})

    assert resp.status_code == 200
    result = resp.json()["tasks"]["results"][0]
    assert result["status"] == "denied"
    assert "does not have permission to write files" in result["message"]
    assert not (workspace / "hello.txt").exists()


def test_profile_id_must_match_path(app, client: TestClient) -> None:
    _script(app, ["ok"])

    resp = client.post("/agents/writer/messages", json={"message": "hi", "agent": _agent("someone-else")})

    assert resp.status_code == 422
    _assert_error_envelope(resp.json(), "AGENT_CONFIG_INVALID")


@pytest.mark.parametrize(
    "content",
    [b"{not json", b"[1, 2]", json.dumps({"agent": {"id": "writer", "name": "W"}}).encode()],
)
def test_malformed_message_request(app, client: TestClient, content: bytes) -> None:
    _script(app, ["ok"])

    resp = client.post("/agents/writer/messages", content=content, headers={"Content-Type": "application/json"})

    assert resp.status_code == 400
    _assert_error_envelope(resp.json(), "MALFORMED_REQUEST")


def test_auth_token_is_enforced(app, client: TestClient) -> None:
    _script(app, ["ok"])
    payload = {"message": "hi", "agent": _agent("writer")}

    with env_vars({"AUTH_TOKEN": "secret"}):
        missing = client.post("/agents/writer/messages", json=payload)
        wrong = client.post("/agents/writer/messages", json=payload, headers={"Authorization": "Bearer nope"})
        ok = client.post("/agents/writer/messages", json=payload, headers={"Authorization": "Bearer secret"})

    assert missing.status_code == 401
    _assert_error_envelope(missing.json(), "UNAUTHORIZED")
    assert wrong.status_code == 401
    assert ok.status_code == 200


def test_concurrent_request_is_rejected(app, client: TestClient) -> None:
    _script(app, ["ok"])
    payload = {"message": "hi", "agent": _agent("writer")}

    with get_registry().stream("writer"):
        message = client.post("/agents/writer/messages", json=payload)
        stream = client.post("/agents/writer/stream", json=payload)

    assert message.status_code == 409
    _assert_error_envelope(message.json(), "REENTRANT_REQUEST")
    assert stream.status_code == 409
    assert client.post("/agents/writer/messages", json=payload).status_code == 200


def test_stream_emits_chunks_then_done(app, client: TestClient) -> None:
    _script(app, ["Hello ", "there"])

    resp = client.post("/agents/writer/stream", json={"message": "hi", "agent": _agent("writer")})

    assert resp.status_code == 200
    events = _sse_events(resp.text)
    assert [e["event"] for e in events] == ["chunk", "chunk", "done"]
    assert [e["data"]["content"] for e in events[:2]] == ["Hello ", "there"]
    assert events[-1]["data"]["response"] == "Hello there"
    assert events[-1]["data"]["completion"]["mode"] == "completed"


def test_cancel_without_active_stream(client: TestClient) -> None:
    resp = client.post("/agents/writer/cancel")

    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "agent_id": "writer", "cancelled": False}


def test_memory_records_exchange_and_can_be_cleared(app, client: TestClient) -> None:
    _script(app, ["Sure."])
    client.post("/agents/writer/messages", json={"message": "remember this", "agent": _agent("writer")})

    memory = client.get("/agents/writer/memory").json()
    assert [t["content"] for t in memory["conversations"]] == ["remember this", "Sure."]

    assert client.delete("/agents/writer/memory").status_code == 200
    assert client.get("/agents/writer/memory").json()["conversations"] == []


def test_shared_files_and_snippets(client: TestClient) -> None:
    added = client.post("/agents/writer/files", json={"path": "src/app.py"})
    assert added.status_code == 200
    assert added.json()["added"] is True
    assert client.post("/agents/writer/files", json={"path": "src/app.py"}).json()["added"] is False

    snippet = client.post("/agents/writer/snippets", json={"content": "x = 1", "file_name": "util.py"})
    assert snippet.json()["index"] == 0

    context = client.get("/agents/writer/context").json()
    assert context == {"files": ["src/app.py"], "text_snippets": [{"content": "x = 1", "file_name": "util.py"}]}

    assert client.delete("/agents/writer/snippets/3").status_code == 404
    assert client.delete("/agents/writer/snippets/0").status_code == 200
    assert client.delete("/agents/writer/files", params={"path": "src/app.py"}).status_code == 200
    missing = client.delete("/agents/writer/files", params={"path": "src/app.py"})
    assert missing.status_code == 404
    _assert_error_envelope(missing.json(), "NOT_FOUND")

    assert client.get("/agents/writer/context").json() == {"files": [], "text_snippets": []}


def test_snippet_requires_content(client: TestClient) -> None:
    resp = client.post("/agents/writer/snippets", json={"file_name": "a.py"})

    assert resp.status_code == 400
    _assert_error_envelope(resp.json(), "MALFORMED_REQUEST")


def test_memory_clear_is_rejected_during_active_stream(app, client: TestClient) -> None:
    with get_registry().stream("writer"):
        resp = client.delete("/agents/writer/memory")

    assert resp.status_code == 409
    _assert_error_envelope(resp.json(), "REENTRANT_REQUEST")
    assert client.delete("/agents/writer/memory").status_code == 200
