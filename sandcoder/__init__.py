"""Sandboxed multi-provider coding assistant backend."""

__version__ = "0.1.0"
