"""
Command grammar scanner.

Model output embeds a flat, fixed command language:

    [CREATE_FILE: path] ... [/CREATE_FILE]
    [EDIT_FILE: path] [FIND]...[/FIND] [REPLACE]...[/REPLACE] [/EDIT_FILE]
    [READ_FILE: path]            [DELETE_FILE: path]
    [GREP: pattern, glob]        [FIND_FILES: glob]
    [INSERT_CODE: path:line] ... [/INSERT_CODE]
    [REPLACE_CODE: path] [FIND]...[/FIND] [REPLACE]...[/REPLACE] [/REPLACE_CODE]
    [OPEN_EDITOR: path]          [FORMAT_FILE: path]
    [GIT_COMMAND: cmd]           [GIT_COMMIT: message]
    [RUN_COMMAND: cmd]

Each kind has its own compiled pattern, applied independently to the whole
text. Output is grouped kind-by-kind (all creates, then all edits, ...) and
keeps document order within a kind. Scanning holds no state between calls,
so concurrent scans of different responses never interfere.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from .errors import MalformedInputError
from .models import CommandInvocation, CommandKind

logger = logging.getLogger("agent-core")

_TARGET = r"\s*([^\]\n]+)\]"

BLOCK_KINDS: Tuple[CommandKind, ...] = (
    CommandKind.CREATE_FILE,
    CommandKind.EDIT_FILE,
    CommandKind.INSERT_CODE,
    CommandKind.REPLACE_CODE,
)

# Kinds whose unterminated opening tag at the end of a stream hints at truncation.
FILE_MUTATION_KINDS: Tuple[CommandKind, ...] = BLOCK_KINDS

DEFAULT_GREP_GLOB = "**/*"


def _opening(kind: CommandKind) -> str:
    return r"\[" + kind.value + ":"


def _lazy_without_reopen(*kinds: CommandKind) -> str:
    # Lazy text that may not run into an opening tag of any of `kinds`.
    openings = "|".join(_opening(k) for k in kinds)
    return r"((?:(?!" + openings + r")[\s\S])*?)"


def _find_replace_pattern(kind: CommandKind) -> re.Pattern[str]:
    segment = _lazy_without_reopen(CommandKind.EDIT_FILE, CommandKind.REPLACE_CODE)
    return re.compile(
        _opening(kind)
        + _TARGET
        + r"\s*\[FIND\]" + segment + r"\[/FIND\]"
        + r"\s*\[REPLACE\]" + segment + r"\[/REPLACE\]"
        + r"\s*\[/" + kind.value + r"\]"
    )


def _body_pattern(kind: CommandKind) -> re.Pattern[str]:
    return re.compile(_opening(kind) + _TARGET + _lazy_without_reopen(kind) + r"\[/" + kind.value + r"\]")


def _inline_pattern(kind: CommandKind) -> re.Pattern[str]:
    return re.compile(_opening(kind) + _TARGET)


_PATTERNS: Dict[CommandKind, re.Pattern[str]] = {
    CommandKind.CREATE_FILE: _body_pattern(CommandKind.CREATE_FILE),
    CommandKind.EDIT_FILE: _find_replace_pattern(CommandKind.EDIT_FILE),
    CommandKind.INSERT_CODE: _body_pattern(CommandKind.INSERT_CODE),
    CommandKind.REPLACE_CODE: _find_replace_pattern(CommandKind.REPLACE_CODE),
}
for _kind in CommandKind:
    _PATTERNS.setdefault(_kind, _inline_pattern(_kind))

_OPENINGS: Dict[CommandKind, re.Pattern[str]] = {kind: re.compile(_opening(kind)) for kind in CommandKind}


@dataclass(frozen=True)
class ScanResult:
    """Invocations in processing order plus non-fatal malformed-input findings."""

    invocations: Tuple[CommandInvocation, ...] = ()
    warnings: Tuple[MalformedInputError, ...] = field(default=(), compare=False)

    def __iter__(self) -> Iterator[CommandInvocation]:
        return iter(self.invocations)

    def __len__(self) -> int:
        return len(self.invocations)

    @property
    def possible_truncation(self) -> bool:
        return any(w.reason == "unterminated" for w in self.warnings)

    def counts(self) -> Dict[str, int]:
        return dict(Counter(inv.kind.value for inv in self.invocations))


class CommandScanner:
    """Stateless scanner. `iter_invocations` can be restarted any number of times."""

    def iter_invocations(self, text: str) -> Iterator[CommandInvocation]:
        for kind in CommandKind:
            for match in _PATTERNS[kind].finditer(text):
                invocation = self._build(kind, match)
                if invocation is not None:
                    yield invocation

    def scan(self, text: str) -> ScanResult:
        invocations = tuple(self.iter_invocations(text or ""))
        warnings = tuple(self.find_malformed(text or ""))
        result = ScanResult(invocations=invocations, warnings=warnings)
        if invocations:
            logger.info("scan found %d invocation(s): %s", len(invocations), result.counts())
        else:
            logger.info("NO TASKS FOUND IN RESPONSE (length=%d)", len(text or ""))
        for warning in warnings:
            logger.warning("malformed command: %s", warning)
        return result

    def find_malformed(self, text: str) -> List[MalformedInputError]:
        """Opening tags that never became an invocation, plus unusable targets."""
        findings: List[MalformedInputError] = []
        for kind in CommandKind:
            complete_starts = {m.start() for m in _PATTERNS[kind].finditer(text)}
            for opening in _OPENINGS[kind].finditer(text):
                if opening.start() in complete_starts:
                    continue
                target = _peek_target(text, opening.end())
                findings.append(MalformedInputError(kind.value, target, "unterminated", opening.start()))
            if kind is CommandKind.INSERT_CODE:
                for match in _PATTERNS[kind].finditer(text):
                    if _split_line_target(match.group(1).strip()) is None:
                        findings.append(
                            MalformedInputError(kind.value, match.group(1).strip(), "invalid line number", match.start())
                        )
        findings.sort(key=lambda f: f.offset)
        return findings

    def _build(self, kind: CommandKind, match: re.Match[str]) -> Optional[CommandInvocation]:
        target = match.group(1).strip()
        offset = match.start()

        if kind is CommandKind.CREATE_FILE:
            body = match.group(2).strip()
            return CommandInvocation(kind, target, content=body, empty_body=not body, offset=offset)

        if kind in (CommandKind.EDIT_FILE, CommandKind.REPLACE_CODE):
            return CommandInvocation(
                kind,
                target,
                find=match.group(2).strip(),
                replace=match.group(3).strip(),
                offset=offset,
            )

        if kind is CommandKind.INSERT_CODE:
            parsed = _split_line_target(target)
            if parsed is None:
                return None
            path, line = parsed
            return CommandInvocation(kind, path, content=match.group(2).strip(), line=line, offset=offset)

        if kind is CommandKind.GREP:
            pattern, glob = _split_grep_target(target)
            return CommandInvocation(kind, pattern, glob=glob, offset=offset)

        if kind is CommandKind.FIND_FILES:
            return CommandInvocation(kind, target, glob=target, offset=offset)

        return CommandInvocation(kind, target, offset=offset)


def _peek_target(text: str, start: int) -> str:
    end = len(text)
    for stop in ("]", "\n"):
        idx = text.find(stop, start)
        if idx != -1:
            end = min(end, idx)
    return text[start:end].strip()


def _split_line_target(target: str) -> Optional[Tuple[str, int]]:
    path, sep, raw_line = target.rpartition(":")
    if not sep or not path.strip():
        return None
    try:
        line = int(raw_line.strip())
    except ValueError:
        return None
    if line < 1:
        return None
    return path.strip(), line


def _split_grep_target(target: str) -> Tuple[str, str]:
    pattern, sep, glob = target.rpartition(",")
    if not sep or not pattern.strip() or not glob.strip():
        return target.strip(), DEFAULT_GREP_GLOB
    return pattern.strip(), glob.strip()


def find_unterminated(text: str, kinds: Tuple[CommandKind, ...] = FILE_MUTATION_KINDS) -> List[MalformedInputError]:
    """Unterminated openings restricted to the given kinds."""
    wanted = {k.value for k in kinds}
    return [w for w in _default_scanner.find_malformed(text) if w.reason == "unterminated" and w.kind in wanted]


_default_scanner = CommandScanner()


def scan(text: str) -> ScanResult:
    """Scan with the module-level scanner."""
    return _default_scanner.scan(text)


def count_blocks(text: str, kind: CommandKind) -> int:
    """Number of complete (terminated) blocks of `kind` in `text`."""
    return sum(1 for _ in _PATTERNS[kind].finditer(text))
