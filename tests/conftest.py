import os
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import pytest

from agentcore.models import AgentConfig, ModelConfig


@contextmanager
def env_vars(env: Dict[str, str]):
    """
    Temporarily set environment variables for a test.

    Restores previous values afterwards, even if the test fails.
    """
    old_values: Dict[str, Any] = {}
    for key, value in env.items():
        old_values[key] = os.environ.get(key)
        os.environ[key] = value
    try:
        yield
    finally:
        for key, old in old_values.items():
            if old is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = old


@pytest.fixture
def make_agent():
    """Factory for AgentConfig with the given capability grants."""

    def _make(
        *capabilities: str,
        agent_id: str = "agent-1",
        name: str = "Tester",
        scope: Optional[Dict[str, List[str]]] = None,
        max_tokens: int = 4096,
    ) -> AgentConfig:
        scope = scope or {}
        permissions = [
            {"capability": cap, "granted": True, "scope": scope.get(cap)} for cap in capabilities
        ]
        return AgentConfig(
            id=agent_id,
            name=name,
            system_prompt="You are a helpful coding agent.",
            model=ModelConfig(max_tokens=max_tokens),
            permissions=permissions,
        )

    return _make
