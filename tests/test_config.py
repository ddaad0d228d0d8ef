import logging

import pytest

from agentcore.config import get_settings


def test_limits_are_read_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MAX_TASKS_PER_RESPONSE", "3")
    monkeypatch.setenv("STREAM_MAX_CHUNKS", "50")

    settings = get_settings()

    assert settings.max_tasks_per_response == 3
    assert settings.stream_max_chunks == 50


@pytest.mark.parametrize("raw", ["0", "-5", "ten", "1.5"])
def test_invalid_limits_fall_back_to_defaults(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture, raw: str
) -> None:
    monkeypatch.setenv("MAX_TASKS_PER_RESPONSE", raw)
    monkeypatch.setenv("STREAM_MAX_CHARS", raw)
    monkeypatch.setenv("PORT", raw)

    with caplog.at_level(logging.WARNING, logger="agent-core"):
        settings = get_settings()

    assert settings.max_tasks_per_response == 10
    assert settings.stream_max_chars == 100_000
    assert settings.http_port == 4280
    assert "MAX_TASKS_PER_RESPONSE" in caplog.text


def test_blank_value_uses_default_silently(monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture) -> None:
    monkeypatch.setenv("STREAM_MAX_CHUNKS", "  ")

    with caplog.at_level(logging.WARNING, logger="agent-core"):
        assert get_settings().stream_max_chunks == 1000

    assert caplog.text == ""
