"""Regex code search tool."""

import os
import re
from pathlib import Path

import pathspec
from pydantic import Field

from sandcoder.errors import SandboxViolation, ToolError
from sandcoder.tools.base import ToolDefinition, ToolInput
from sandcoder.tools.sandbox import SandboxResolver
from sandcoder.utils.logging import get_logger

logger = get_logger(__name__)

SKIP_DIRS = frozenset({".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv", "venv", ".mypy_cache", ".tox"})
MAX_FILE_BYTES = 1024 * 1024
MAX_LINE_CHARS = 500


class SearchCodeInput(ToolInput):
    """Input schema for the search_code tool."""

    query: str = Field(..., description="Regular expression to search for")
    rel_path: str = Field(default=".", description="Relative directory to search within")
    max_results: int = Field(default=200, ge=1, le=1000, description="Maximum number of matches to return")
    case_sensitive: bool = Field(default=True, description="Match case exactly")


def load_gitignore(root: Path) -> pathspec.GitIgnoreSpec | None:
    """Parse ``root/.gitignore`` if present."""
    gitignore = root / ".gitignore"
    if not gitignore.is_file():
        return None
    try:
        with gitignore.open(encoding="utf-8", errors="replace") as f:
            return pathspec.GitIgnoreSpec.from_lines(f)
    except OSError as e:
        logger.warning(f"Could not read {gitignore}: {e}")
        return None


def _is_binary(path: Path) -> bool:
    with path.open("rb") as f:
        return b"\x00" in f.read(8192)


def create_search_code_tool(resolver: SandboxResolver) -> ToolDefinition:
    def search_code(params: SearchCodeInput) -> dict:
        flags = 0 if params.case_sensitive else re.IGNORECASE
        try:
            pattern = re.compile(params.query, flags)
        except re.error as e:
            raise ToolError(f"Invalid search pattern: {e}") from e

        base = resolver.resolve(params.rel_path)
        if not base.absolute_path.is_dir():
            raise ToolError(f"Not a directory: {params.rel_path}")

        ignore = load_gitignore(resolver.root)
        results: list[dict] = []
        truncated = False

        for dirpath, dirnames, filenames in os.walk(base.absolute_path):
            current = Path(dirpath)
            rel_dir = current.relative_to(resolver.root).as_posix()
            prefix = "" if rel_dir == "." else f"{rel_dir}/"

            dirnames[:] = sorted(
                d
                for d in dirnames
                if d not in SKIP_DIRS and not (ignore and ignore.match_file(f"{prefix}{d}/"))
            )

            for filename in sorted(filenames):
                rel_file = f"{prefix}{filename}"
                if ignore and ignore.match_file(rel_file):
                    continue
                # Symlinked files may point anywhere; only follow those that stay inside
                try:
                    target = resolver.resolve(rel_file)
                except SandboxViolation:
                    continue
                path = target.absolute_path
                try:
                    if not path.is_file() or path.stat().st_size > MAX_FILE_BYTES or _is_binary(path):
                        continue
                    text = path.read_text(encoding="utf-8", errors="replace")
                except OSError as e:
                    logger.debug(f"Skipping unreadable file {rel_file}: {e}")
                    continue

                for lineno, line in enumerate(text.splitlines(), start=1):
                    if pattern.search(line):
                        results.append({"file": rel_file, "line": lineno, "text": line[:MAX_LINE_CHARS]})
                        if len(results) >= params.max_results:
                            truncated = True
                            break
                if truncated:
                    break
            if truncated:
                break

        logger.debug(f"search_code {params.query!r} in {base.relative_path}: {len(results)} matches")
        return {
            "results": results,
            "query": params.query,
            "searched_path": base.relative_path,
            "truncated": truncated,
        }

    return ToolDefinition(
        name="search_code",
        description="Search file contents under a sandbox directory with a regular expression (honours .gitignore)",
        input_schema_class=SearchCodeInput,
        handler=search_code,
    )
