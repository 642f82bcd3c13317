"""Project-root path confinement.

Every tool that touches the filesystem goes through ``SandboxResolver.resolve``
first; the resulting ``SandboxedPath`` is the only thing handlers operate on.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from sandcoder.errors import SandboxViolation
from sandcoder.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SandboxedPath:
    """An absolute, canonical path known to live inside ``project_root``."""

    absolute_path: Path
    project_root: Path

    @property
    def relative_path(self) -> str:
        """Path relative to the project root ("." for the root itself)."""
        if self.absolute_path == self.project_root:
            return "."
        return self.absolute_path.relative_to(self.project_root).as_posix()

    def __str__(self) -> str:
        return str(self.absolute_path)


class SandboxResolver:
    """Resolves user-supplied paths against a fixed project root."""

    def __init__(self, root: str | Path):
        self.root = Path(os.path.realpath(root))
        self._root_prefix = str(self.root).rstrip(os.sep) + os.sep

    def resolve(self, path: str | Path) -> SandboxedPath:
        """Resolve ``path`` (relative to the root, or absolute) inside the sandbox.

        Symlinks are followed for every component that exists; components that
        do not exist yet are appended literally, so reads and writes of new
        files are checked the same way.

        Raises:
            SandboxViolation: if the canonical path is not the root or below it
        """
        raw = str(path) if path is not None else ""
        if not raw.strip():
            raise SandboxViolation(raw, str(self.root), "empty path")
        if "\x00" in raw:
            raise SandboxViolation(raw, str(self.root), "path contains NUL byte")

        candidate = Path(raw) if os.path.isabs(raw) else self.root / raw
        canonical = self._canonicalize(candidate)

        if not self._contains(canonical):
            logger.warning(f"Sandbox violation: {raw!r} resolved to {canonical}")
            raise SandboxViolation(raw, str(self.root))

        return SandboxedPath(absolute_path=canonical, project_root=self.root)

    def _canonicalize(self, candidate: Path) -> Path:
        existing = candidate
        missing: list[str] = []
        # lexists so that a dangling symlink still gets resolved
        while not os.path.lexists(existing):
            parent = existing.parent
            if parent == existing:
                break
            missing.append(existing.name)
            existing = parent

        resolved = Path(os.path.realpath(existing))
        for part in reversed(missing):
            if part == "..":
                resolved = resolved.parent
            elif part and part != ".":
                resolved = resolved / part
        return resolved

    def _contains(self, canonical: Path) -> bool:
        return canonical == self.root or str(canonical).startswith(self._root_prefix)
