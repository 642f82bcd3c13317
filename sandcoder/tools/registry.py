"""Tools registry for managing AI assistant tools."""

import threading
from typing import Any

from pydantic_core import to_jsonable_python

from sandcoder.config import Settings
from sandcoder.errors import SchemaValidationError, ToolError, ToolNotFound, ToolTimeout
from sandcoder.models.llm import ToolCall, ToolResult, ToolSpec
from sandcoder.tools.base import ToolDefinition
from sandcoder.tools.filesystem import (
    create_list_dir_tool,
    create_read_file_tool,
    create_write_file_tool,
)
from sandcoder.tools.lint import create_run_lint_tool
from sandcoder.tools.patch import create_apply_patch_tool, create_generate_diff_tool
from sandcoder.tools.policy import CommandPolicy
from sandcoder.tools.sandbox import SandboxResolver
from sandcoder.tools.search import create_search_code_tool
from sandcoder.tools.terminal import CommandRunner, ConfirmCallback, create_run_command_tool
from sandcoder.utils.logging import get_logger

logger = get_logger(__name__)


class ToolRegistry:
    """Explicit map from tool name to (schema, handler) behind one invoke interface."""

    def __init__(self, tool_timeout: float = 60.0):
        """Initialize an empty registry.

        Args:
            tool_timeout: Seconds a handler may run before its result is abandoned
        """
        self.tool_timeout = tool_timeout
        self._tools: dict[str, ToolDefinition] = {}

    def register(self, tool: ToolDefinition) -> None:
        """Register a new tool in the registry."""
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> ToolDefinition:
        """Look up a tool by name.

        Raises:
            ToolNotFound: if no tool has that name
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFound(name)
        return tool

    def has_tool(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    def names(self) -> list[str]:
        """Get sorted list of all registered tool names."""
        return sorted(self._tools)

    def specs(self) -> list[ToolSpec]:
        """Provider-agnostic descriptions of every tool, in name order."""
        return [self._tools[name].to_spec() for name in self.names()]

    def validate_all(self) -> list[str]:
        """Check every definition for consistency.

        Returns:
            Human-readable problems; empty when the registry is valid
        """
        errors: list[str] = []
        for name in self.names():
            tool = self._tools[name]
            prefix = f'Tool "{name}"'
            if not tool.name or not tool.name.strip():
                errors.append(f"{prefix}: name must be a non-empty string")
            if not tool.description or not tool.description.strip():
                errors.append(f"{prefix}: must have a description")
            if not callable(tool.handler):
                errors.append(f"{prefix}: handler must be callable")

            try:
                schema = tool.get_json_schema()
            except Exception as e:
                errors.append(f"{prefix}: input schema could not be generated: {e}")
                continue

            if schema.get("type") != "object":
                errors.append(f'{prefix}: input schema type must be "object"')
            properties = schema.get("properties")
            if not isinstance(properties, dict):
                errors.append(f"{prefix}: input schema must have a properties table")
                continue
            for field_name in schema.get("required", []):
                if field_name not in properties:
                    errors.append(f"{prefix}: required field '{field_name}' is not declared")
        return errors

    def invoke(self, call: ToolCall) -> ToolResult:
        """Execute one tool call. Never raises; failures become error results."""
        try:
            tool = self.get(call.name)
            if call.argument_error:
                raise SchemaValidationError(call.name, [call.argument_error])
            params = tool.parse_input(call.input)
        except ToolError as e:
            logger.error(f"Rejected tool call {call.id} ({call.name}): {e}")
            return ToolResult.failure(call.id, str(e))

        logger.debug(f"Executing tool: {call.name} with input: {call.input}")
        try:
            output = self._run_with_timeout(tool, params)
        except ToolError as e:
            logger.error(f"Tool {call.name} failed: {e}")
            return ToolResult.failure(call.id, str(e))
        except Exception as e:
            logger.error(f"Tool {call.name} raised {type(e).__name__}: {e}", exc_info=True)
            return ToolResult.failure(call.id, f"{type(e).__name__}: {e}")

        logger.debug(f"Tool {call.name} succeeded: {str(output)[:100]}...")
        return ToolResult.success(call.id, to_jsonable_python(output, fallback=str))

    def _run_with_timeout(self, tool: ToolDefinition, params: Any) -> Any:
        outcome: dict[str, Any] = {}

        def target() -> None:
            try:
                outcome["value"] = tool.handler(params)
            except BaseException as e:  # re-raised on the calling thread below
                outcome["error"] = e

        # Daemon thread: a handler that never returns is abandoned, not joined
        worker = threading.Thread(target=target, name=f"tool-{tool.name}", daemon=True)
        worker.start()
        worker.join(self.tool_timeout)

        if worker.is_alive():
            raise ToolTimeout(tool.name, self.tool_timeout)
        if "error" in outcome:
            raise outcome["error"]
        return outcome.get("value")


def build_default_registry(settings: Settings, confirm: ConfirmCallback | None = None) -> ToolRegistry:
    """Create a registry holding the default coding tools bound to the sandbox.

    Args:
        settings: Process settings (sandbox root, policy, timeouts)
        confirm: Callback consulted for commands that need user approval

    Returns:
        Registry with read_file, write_file, list_dir, search_code, run_command,
        generate_diff, apply_patch and run_lint
    """
    resolver = SandboxResolver(settings.sandbox.root)
    runner = CommandRunner(
        resolver,
        CommandPolicy(settings.policy),
        timeout=settings.command_timeout,
        max_output_chars=settings.max_output_chars,
        confirm=confirm,
    )

    registry = ToolRegistry(tool_timeout=settings.tool_timeout)
    tools = [
        create_read_file_tool(resolver),
        create_write_file_tool(resolver),
        create_list_dir_tool(resolver),
        create_search_code_tool(resolver),
        create_run_command_tool(runner),
        create_generate_diff_tool(resolver),
        create_apply_patch_tool(resolver),
        create_run_lint_tool(resolver, runner),
    ]

    # Register all tools
    for tool in tools:
        registry.register(tool)

    for problem in registry.validate_all():
        logger.warning(f"Tool registry problem: {problem}")

    return registry
