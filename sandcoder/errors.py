"""Exception taxonomy.

Tool-level errors (``ToolError`` subclasses) never escape the tool registry:
they are converted to error ``ToolResult`` values. Provider and persistence
errors unwind and terminate the current turn.
"""


class SandcoderError(Exception):
    """Base class for all sandcoder errors."""


# Tool boundary


class ToolError(SandcoderError):
    """Raised inside a single tool invocation."""


class SandboxViolation(ToolError):
    """A path resolved outside the configured project root."""

    def __init__(self, path: str, root: str, detail: str = "path escapes sandbox"):
        self.path = path
        self.root = root
        self.detail = detail
        super().__init__(f"Sandbox violation: {detail}: '{path}' (sandbox root: {root})")


class CommandDenied(ToolError):
    """The command policy rejected a command."""

    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Command denied by policy: {reason}")


class CommandRequiresConfirmation(ToolError):
    """The command policy requires a human to approve a command first."""

    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Command requires confirmation: {reason}")


class CommandTimeout(ToolError):
    """A spawned command exceeded its time limit and was killed."""

    def __init__(self, command: str, timeout: float):
        self.command = command
        self.timeout = timeout
        super().__init__(f"Command timed out after {timeout:g}s and was terminated")


class PatchError(ToolError):
    """A unified diff did not apply cleanly."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Patch failed to apply cleanly: {detail}")


class SchemaValidationError(ToolError):
    """Tool arguments did not match the tool's input schema."""

    def __init__(self, tool_name: str, errors: list[str]):
        self.tool_name = tool_name
        self.errors = errors
        super().__init__(f"Invalid input for tool '{tool_name}': " + "; ".join(errors))


class ToolNotFound(ToolError):
    """No tool with the requested name is registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Tool not found: {name}")


class ToolTimeout(ToolError):
    """A tool handler did not return within the invocation time limit."""

    def __init__(self, name: str, timeout: float):
        self.name = name
        self.timeout = timeout
        super().__init__(f"Tool '{name}' did not finish within {timeout:g}s")


# Provider boundary


class ProviderError(SandcoderError):
    """Transport or parse failure talking to an AI provider."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        self.provider = provider
        self.status_code = status_code
        prefix = f"{provider} request failed"
        if status_code is not None:
            prefix += f" (HTTP {status_code})"
        super().__init__(f"{prefix}: {message}")


class RequestCancelled(ProviderError):
    """The caller cancelled the turn."""

    def __init__(self, provider: str = "loop"):
        super().__init__(provider, "cancelled")


# Persistence boundary


class PersistenceError(SandcoderError):
    """I/O or corruption problem in the conversation store."""


class ConversationNotFound(PersistenceError):
    """No conversation exists with the given id."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: {conversation_id}")


class ConversationCorrupted(PersistenceError):
    """A stored conversation file exists but cannot be parsed."""

    def __init__(self, conversation_id: str, detail: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation {conversation_id} is corrupted: {detail}")


class DecryptionError(PersistenceError):
    """An encrypted file could not be decrypted (wrong passphrase or damaged data)."""


class MessageOrderError(SandcoderError, ValueError):
    """An appended message would break the tool_result ordering invariant."""
