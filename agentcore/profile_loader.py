from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from jsonschema import Draft7Validator
from pydantic import ValidationError

from .models import AgentConfig, Capability

logger = logging.getLogger("agent-core")

_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")

# Draft-07 schema for agent profiles (YAML files or request bodies).
AGENT_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["id", "name"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "name": {"type": "string", "minLength": 1},
        "system_prompt": {"type": "string"},
        "model": {
            "type": "object",
            "properties": {
                "provider": {"type": "string"},
                "model_name": {"type": "string"},
                "temperature": {"type": "number", "minimum": 0, "maximum": 2},
                "max_tokens": {"type": "integer", "minimum": 1},
            },
        },
        "permissions": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["capability"],
                "properties": {
                    "capability": {"type": "string", "enum": [c.value for c in Capability]},
                    "granted": {"type": "boolean"},
                    "scope": {"type": ["array", "null"], "items": {"type": "string"}},
                },
            },
        },
    },
}


class ProfileLoadError(RuntimeError):
    """Raised when an agent profile cannot be read or validated."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.details = details


def validate_profile(raw: Any) -> List[Dict[str, Any]]:
    validator = Draft7Validator(AGENT_SCHEMA)
    errors: List[Dict[str, Any]] = []
    for err in validator.iter_errors(raw):
        errors.append({"path": list(err.path), "message": err.message})
    return errors


def parse_agent_config(raw: Any, *, expected_id: Optional[str] = None) -> AgentConfig:
    """Validate a profile mapping and build the AgentConfig."""
    if not isinstance(raw, dict):
        raise ProfileLoadError("Agent profile must be a mapping")

    errors = validate_profile(raw)
    if errors:
        raise ProfileLoadError("Agent profile failed validation", details=errors)

    agent_id = str(raw["id"])
    if not _ID_RE.match(agent_id):
        raise ProfileLoadError(f"Invalid agent id: {agent_id!r}")
    if expected_id is not None and agent_id != expected_id:
        raise ProfileLoadError(f"Profile id {agent_id!r} does not match {expected_id!r}")

    try:
        return AgentConfig.model_validate(raw)
    except ValidationError as exc:
        details = [{"path": list(e["loc"]), "message": e["msg"]} for e in exc.errors()]
        raise ProfileLoadError("Agent profile failed validation", details=details) from exc


def load_agent_profile(path: str | Path) -> AgentConfig:
    """Load an agent profile from a YAML (or JSON) file."""
    profile_path = Path(path)
    if not profile_path.exists():
        raise ProfileLoadError(f"Profile file not found: {profile_path}")

    with profile_path.open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ProfileLoadError(f"Profile must be valid YAML: {exc}") from exc

    agent = parse_agent_config(data)
    logger.info("loaded agent profile id=%s from %s", agent.id, profile_path)
    return agent
