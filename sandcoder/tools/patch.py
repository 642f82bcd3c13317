"""Unified diff generation and patch application tools."""

import difflib
import re
from dataclasses import dataclass, field
from typing import Literal

from pydantic import Field

from sandcoder.errors import PatchError, ToolError
from sandcoder.tools.base import ToolDefinition, ToolInput
from sandcoder.tools.sandbox import SandboxedPath, SandboxResolver
from sandcoder.utils.files import write_atomic
from sandcoder.utils.logging import get_logger

logger = get_logger(__name__)

_HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
_NO_NEWLINE = "\\ No newline at end of file"


class GenerateDiffInput(ToolInput):
    """Input schema for the generate_diff tool."""

    rel_path: str = Field(..., description="Relative path to the file to diff against")
    new_content: str = Field(..., description="Proposed new content for comparison")


class ApplyPatchInput(ToolInput):
    """Input schema for the apply_patch tool."""

    rel_path: str = Field(..., description="Relative path to the file to patch")
    patch: str = Field(..., description="Unified diff to apply, or the full file content when mode is overwrite")
    mode: Literal["patch", "overwrite"] = Field(
        default="patch", description="'patch' applies a unified diff; 'overwrite' replaces the file with patch"
    )


@dataclass
class Hunk:
    """One ``@@`` section of a unified diff."""

    old_start: int
    old_count: int = 1
    before: list[str] = field(default_factory=list)
    after: list[str] = field(default_factory=list)
    # The new side of this hunk ends the file without a trailing newline
    no_newline: bool = False


def unified_diff(target: SandboxedPath, current: str | None, new_content: str) -> str:
    """Diff ``current`` (None for a missing file) against ``new_content``."""
    rel = target.relative_path
    return "".join(
        difflib.unified_diff(
            (current or "").splitlines(keepends=True),
            new_content.splitlines(keepends=True),
            fromfile=f"a/{rel}" if current is not None else "/dev/null",
            tofile=f"b/{rel}",
        )
    )


def parse_hunks(patch: str) -> list[Hunk]:
    """Split a unified diff into hunks, ignoring file headers.

    Raises:
        PatchError: if the text holds no hunk or a malformed hunk body
    """
    hunks: list[Hunk] = []
    current: Hunk | None = None
    old_left = new_left = 0
    last_prefix = ""
    for line in patch.splitlines():
        if current is not None and line.startswith(_NO_NEWLINE[:2]):
            if last_prefix in (" ", "+"):
                current.no_newline = True
            continue

        if old_left > 0 or new_left > 0:
            # An empty line inside a hunk is context whose leading space was stripped
            prefix, text = (line[:1], line[1:]) if line else (" ", "")
            if prefix == " ":
                current.before.append(text)
                current.after.append(text)
                old_left -= 1
                new_left -= 1
            elif prefix == "-":
                current.before.append(text)
                old_left -= 1
            elif prefix == "+":
                current.after.append(text)
                new_left -= 1
            else:
                raise PatchError(f"invalid patch line: {line!r}")
            if old_left < 0 or new_left < 0:
                raise PatchError(f"hunk {len(hunks)} is longer than its header says")
            last_prefix = prefix
            continue

        match = _HUNK_HEADER.match(line)
        if match:
            old_start, old_count, _, new_count = match.groups()
            current = Hunk(old_start=int(old_start), old_count=int(old_count or 1))
            old_left, new_left = current.old_count, int(new_count or 1)
            hunks.append(current)
            last_prefix = ""
        # Anything else outside a hunk is a file header or git metadata

    if old_left > 0 or new_left > 0:
        raise PatchError(f"hunk {len(hunks)} is truncated")
    if not hunks:
        raise PatchError("no hunks found")
    return hunks


def _locate(lines: list[str], before: list[str], expected: int, floor: int) -> int:
    """Index where ``before`` matches ``lines``, preferring ``expected``."""
    if not before:
        return min(max(expected, floor), len(lines))
    size = len(before)
    if floor <= expected and lines[expected : expected + size] == before:
        return expected
    for start in range(floor, len(lines) - size + 1):
        if lines[start : start + size] == before:
            return start
    return -1


def apply_hunks(current: str, hunks: list[Hunk]) -> str:
    """Apply ``hunks`` to ``current`` without fuzz.

    Context and removed lines must match exactly; a hunk may be found at an
    offset from its header line, but hunks never overlap or move backwards.
    """
    lines = current.splitlines()
    trailing_newline = current.endswith("\n") or not current
    offset = 0
    floor = 0
    for number, hunk in enumerate(hunks, start=1):
        # A pure insertion header names the line it follows
        base = hunk.old_start if hunk.old_count == 0 else hunk.old_start - 1
        expected = max(base, 0) + offset
        start = _locate(lines, hunk.before, expected, floor)
        if start < 0:
            raise PatchError(f"context of hunk {number} not found")
        lines[start : start + len(hunk.before)] = hunk.after
        offset += len(hunk.after) - len(hunk.before)
        floor = start + len(hunk.after)
        if floor >= len(lines):
            trailing_newline = not hunk.no_newline

    if not lines:
        return ""
    return "\n".join(lines) + ("\n" if trailing_newline else "")


def create_generate_diff_tool(resolver: SandboxResolver) -> ToolDefinition:
    def generate_diff(params: GenerateDiffInput) -> dict:
        target = resolver.resolve(params.rel_path)
        path = target.absolute_path
        if path.is_dir():
            raise ToolError(f"Cannot diff a directory: {params.rel_path}")

        exists = path.is_file()
        current = path.read_text(encoding="utf-8", errors="replace") if exists else None
        patch = unified_diff(target, current, params.new_content)
        return {"patch": patch, "changed": bool(patch), "new_file": not exists}

    return ToolDefinition(
        name="generate_diff",
        description="Generate a unified diff between a sandbox file and proposed content without writing it",
        input_schema_class=GenerateDiffInput,
        handler=generate_diff,
    )


def create_apply_patch_tool(resolver: SandboxResolver) -> ToolDefinition:
    def apply_patch(params: ApplyPatchInput) -> dict:
        target = resolver.resolve(params.rel_path)
        path = target.absolute_path
        if path.is_dir():
            raise ToolError(f"Cannot patch a directory: {params.rel_path}")

        if params.mode == "overwrite":
            if not path.parent.is_dir():
                raise ToolError(f"Parent directory does not exist: {path.parent.name}")
            write_atomic(path, params.patch.encode("utf-8"))
            return {"ok": True, "path": target.relative_path, "note": "file overwritten as fallback"}

        if not params.patch.strip():
            raise ToolError("patch is empty")

        exists = path.is_file()
        if not exists and not path.parent.is_dir():
            raise ToolError(f"Parent directory does not exist: {path.parent.name}")
        current = path.read_text(encoding="utf-8") if exists else ""
        hunks = parse_hunks(params.patch)
        patched = apply_hunks(current, hunks)

        write_atomic(path, patched.encode("utf-8"))

        # Re-diff what landed on disk against the expected result
        on_disk = path.read_text(encoding="utf-8")
        if unified_diff(target, on_disk, patched):
            raise PatchError("file content does not match the patched result")

        logger.info(f"Applied {len(hunks)} hunk(s) to {target.relative_path}")
        return {
            "ok": True,
            "path": target.relative_path,
            "hunks": len(hunks),
            "changed": patched != current,
            "new_file": not exists,
        }

    return ToolDefinition(
        name="apply_patch",
        description=(
            "Apply a unified diff to a sandbox file. Context lines must match exactly. "
            "Use mode 'overwrite' to replace the whole file with the given content instead."
        ),
        input_schema_class=ApplyPatchInput,
        handler=apply_patch,
    )
