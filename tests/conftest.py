"""Shared fixtures."""

import pytest

from sandcoder.config import SandboxSettings, Settings
from sandcoder.services.conversation_store import ConversationStore
from sandcoder.tools.registry import build_default_registry
from sandcoder.tools.sandbox import SandboxResolver


@pytest.fixture
def workspace(tmp_path):
    """Empty project root."""
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def settings(tmp_path, workspace):
    """Settings confined to the temporary workspace and data directory."""
    return Settings(
        sandbox=SandboxSettings(root=workspace),
        data_dir=tmp_path / "data",
        tool_timeout=10.0,
        command_timeout=10.0,
    )


@pytest.fixture
def resolver(workspace):
    return SandboxResolver(workspace)


@pytest.fixture
def registry(settings):
    """Default tool set bound to the workspace."""
    return build_default_registry(settings)


@pytest.fixture
def store(settings):
    return ConversationStore(settings)
