"""Allow/deny classification of shell commands."""

import os
import re
import shlex
from dataclasses import dataclass
from typing import Literal

from sandcoder.config import CommandPolicySettings

Verdict = Literal["allowed", "denied", "requires_confirmation"]

_SEPARATORS = {";", "&&", "||", "|", "&", "(", ")", ";;", "|&"}
_ASSIGNMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")


@dataclass(frozen=True)
class PolicyDecision:
    """Result of classifying a command."""

    verdict: Verdict
    reason: str = ""

    @property
    def allowed(self) -> bool:
        return self.verdict == "allowed"

    @classmethod
    def allow(cls) -> "PolicyDecision":
        return cls("allowed")

    @classmethod
    def deny(cls, reason: str) -> "PolicyDecision":
        return cls("denied", reason)

    @classmethod
    def confirm(cls, reason: str) -> "PolicyDecision":
        return cls("requires_confirmation", reason)


def command_segments(command: str) -> list[list[str]]:
    """Unquoted tokens of every pipeline/list segment in ``command``.

    Raises:
        ValueError: if the command cannot be tokenized (e.g. unbalanced quotes)
    """
    lexer = shlex.shlex(command.replace("\n", " ; "), posix=True, punctuation_chars=True)
    lexer.whitespace_split = True

    segments: list[list[str]] = [[]]
    for token in lexer:
        if token in _SEPARATORS or set(token) <= set(";&|()"):
            if segments[-1]:
                segments.append([])
            continue
        segments[-1].append(token)
    return [segment for segment in segments if segment]


def segment_program(segment: list[str]) -> str | None:
    """Basename of the first word that is not a variable assignment."""
    for token in segment:
        if not _ASSIGNMENT.match(token):
            return os.path.basename(token)
    return None


def program_names(command: str) -> list[str]:
    """Program name of every pipeline/list segment in ``command``.

    Raises:
        ValueError: if the command cannot be tokenized (e.g. unbalanced quotes)
    """
    return [name for name in map(segment_program, command_segments(command)) if name]


class CommandPolicy:
    """Stateless classifier built from a fixed rule set.

    Deny rules always win; with an allowlist configured, any program not on
    it is denied; confirmation rules apply to otherwise allowed commands.
    """

    def __init__(self, settings: CommandPolicySettings | None = None):
        self.settings = settings or CommandPolicySettings()
        self.allowed_programs = frozenset(self.settings.allowed_programs)
        self.denied_programs = frozenset(self.settings.denied_programs)
        self.deny_patterns = [re.compile(p) for p in self.settings.deny_patterns]
        self.confirm_patterns = [re.compile(p) for p in self.settings.confirm_patterns]

    @property
    def allowlist_enabled(self) -> bool:
        return bool(self.allowed_programs)

    def classify(self, command: str) -> PolicyDecision:
        """Classify ``command`` as allowed, denied or requiring confirmation."""
        if not command or not command.strip():
            return PolicyDecision.deny("empty command")

        try:
            segments = command_segments(command)
        except ValueError as e:
            return PolicyDecision.deny(f"command could not be parsed: {e}")

        programs = [name for name in map(segment_program, segments) if name]
        if not programs:
            return PolicyDecision.deny("no program found in command")

        for program in programs:
            if program in self.denied_programs:
                return PolicyDecision.deny(f"program '{program}' is denied")

        # Rebuilt segments have quotes and escapes removed
        texts = [command, *(" ".join(segment) for segment in segments)]
        for pattern in self.deny_patterns:
            if any(pattern.search(text) for text in texts):
                return PolicyDecision.deny(f"matches dangerous pattern {pattern.pattern!r}")

        if self.allowlist_enabled:
            for program in programs:
                if program not in self.allowed_programs:
                    return PolicyDecision.deny(f"program '{program}' is not in the allowlist")

        for pattern in self.confirm_patterns:
            if pattern.search(command):
                return PolicyDecision.confirm(f"matches confirmation rule {pattern.pattern!r}")

        return PolicyDecision.allow()
