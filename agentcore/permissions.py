"""
Permission guard.

authorize(permission_set, capability, target) -> Authorization

Default-deny: a capability without an entry, or with granted=False, is
denied. A non-empty scope list narrows a grant to targets matching at least
one pattern (substring, or a simple glob where `*` is "any characters").
The guard has no side effects; callers query it right before every
invocation instead of caching results, since grants can change between
requests.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from .errors import AuthorizationError
from .models import Capability, CommandInvocation, CommandKind, PermissionSet

logger = logging.getLogger("agent-core")


CAPABILITY_FOR_KIND: Dict[CommandKind, Capability] = {
    CommandKind.CREATE_FILE: Capability.WRITE_FILES,
    CommandKind.EDIT_FILE: Capability.WRITE_FILES,
    CommandKind.DELETE_FILE: Capability.WRITE_FILES,
    CommandKind.INSERT_CODE: Capability.WRITE_FILES,
    CommandKind.REPLACE_CODE: Capability.WRITE_FILES,
    CommandKind.FORMAT_FILE: Capability.WRITE_FILES,
    CommandKind.READ_FILE: Capability.READ_FILES,
    CommandKind.GREP: Capability.READ_FILES,
    CommandKind.FIND_FILES: Capability.READ_FILES,
    CommandKind.OPEN_EDITOR: Capability.READ_FILES,
    CommandKind.GIT_COMMAND: Capability.GIT_OPERATIONS,
    CommandKind.GIT_COMMIT: Capability.GIT_OPERATIONS,
    CommandKind.RUN_COMMAND: Capability.EXECUTE_COMMANDS,
}

# "does not have permission to <verb>."
_CAPABILITY_VERBS: Dict[Capability, str] = {
    Capability.READ_FILES: "read files",
    Capability.WRITE_FILES: "write files",
    Capability.EXECUTE_COMMANDS: "execute commands",
    Capability.GIT_OPERATIONS: "perform Git operations",
    Capability.NETWORK_ACCESS: "access the network",
}

# "does not have permission to <action> "<target>". <noun> not in allowed scope."
_SCOPE_WORDING: Dict[Capability, tuple[str, str]] = {
    Capability.READ_FILES: ("read", "File"),
    Capability.WRITE_FILES: ("write", "File"),
    Capability.EXECUTE_COMMANDS: ("run", "Command"),
    Capability.GIT_OPERATIONS: ("run", "Command"),
    Capability.NETWORK_ACCESS: ("access", "Target"),
}


@dataclass(frozen=True)
class Authorization:
    allowed: bool
    capability: Capability
    target: str
    reason: Optional[str] = None
    message: str = ""

    def raise_for_denial(self) -> None:
        if not self.allowed:
            raise AuthorizationError(self.message, self.reason or "", self.capability.value, self.target)


def scope_target(invocation: CommandInvocation) -> str:
    """The string a scope pattern is matched against for this invocation."""
    if invocation.kind is CommandKind.GREP:
        return invocation.glob or invocation.target
    return invocation.target


def _glob_to_regex(pattern: str) -> re.Pattern[str]:
    parts = [re.escape(part) for part in pattern.split("*")]
    return re.compile("^" + ".*".join(parts) + "$", re.DOTALL)


def matches_scope(target: str, patterns: Sequence[str]) -> bool:
    for pattern in patterns:
        if not pattern:
            continue
        if "*" in pattern:
            if _glob_to_regex(pattern).match(target):
                return True
        elif pattern in target:
            return True
    return False


class PermissionGuard:
    """Authorizes one capability use against an agent's permission set."""

    def authorize(
        self,
        permissions: PermissionSet,
        capability: Capability,
        target: str,
        *,
        agent_name: str = "Agent",
    ) -> Authorization:
        entry = permissions.lookup(capability)
        if not entry.granted:
            message = (
                f'Agent "{agent_name}" does not have permission to '
                f"{_CAPABILITY_VERBS[capability]}. Please update agent permissions."
            )
            logger.warning("permission denied agent=%s capability=%s target=%s", agent_name, capability.value, target)
            return Authorization(False, capability, target, AuthorizationError.MISSING_CAPABILITY, message)

        if entry.scope and not matches_scope(target, entry.scope):
            action, noun = _SCOPE_WORDING[capability]
            message = (
                f'Agent "{agent_name}" does not have permission to {action} "{target}". '
                f"{noun} not in allowed scope."
            )
            logger.warning(
                "scope violation agent=%s capability=%s target=%s scope=%s",
                agent_name,
                capability.value,
                target,
                entry.scope,
            )
            return Authorization(False, capability, target, AuthorizationError.SCOPE_VIOLATION, message)

        return Authorization(True, capability, target)

    def authorize_invocation(
        self,
        permissions: PermissionSet,
        invocation: CommandInvocation,
        *,
        agent_name: str = "Agent",
    ) -> Authorization:
        capability = CAPABILITY_FOR_KIND[invocation.kind]
        return self.authorize(permissions, capability, scope_target(invocation), agent_name=agent_name)


def authorize(permissions: PermissionSet, capability: Capability, target: str, *, agent_name: str = "Agent") -> Authorization:
    return PermissionGuard().authorize(permissions, capability, target, agent_name=agent_name)
