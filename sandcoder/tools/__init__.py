"""Sandboxed tools exposed to the coding assistant."""

from sandcoder.tools.registry import ToolRegistry, build_default_registry

__all__ = ["ToolRegistry", "build_default_registry"]
