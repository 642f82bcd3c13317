"""Process configuration.

Settings are built once at startup and passed explicitly to the components
that need them; nothing below reads the environment at call time.
"""

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr

ProviderName = Literal["anthropic", "openai", "openrouter", "deepseek", "ollama"]

DEFAULT_MODELS: dict[str, str] = {
    "anthropic": "claude-3-5-sonnet-20241022",
    "openai": "gpt-4o",
    "openrouter": "anthropic/claude-3.5-sonnet",
    "deepseek": "deepseek-chat",
    "ollama": "llama3.1",
}

API_KEY_ENV_VARS: dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
}

DEFAULT_ALLOWED_PROGRAMS: list[str] = [
    "ls", "cat", "head", "tail", "wc", "echo", "pwd", "find", "tree", "stat", "file",
    "rg", "grep", "sed", "awk", "sort", "uniq", "diff", "cut", "tr", "true", "false", "sleep",
    "git", "make", "python", "python3", "pip", "pytest", "ruff", "flake8",
    "lua", "luacheck", "bash", "sh", "node", "npm", "npx", "eslint", "cargo", "go",
    "mkdir", "touch", "cp", "mv", "rm", "chmod", "chown", "curl", "wget", "ssh", "scp", "rsync",
]

DEFAULT_DENIED_PROGRAMS: list[str] = [
    "sudo", "su", "doas", "pkexec",
    "shutdown", "reboot", "halt", "poweroff",
    "mkfs", "fdisk", "parted", "cryptsetup", "wipefs",
    "nc", "netcat", "ncat", "telnet",
]

DEFAULT_DENY_PATTERNS: list[str] = [
    r"\brm\s+(?:[^\s;&|]+\s+)*?(?:-[a-zA-Z]*[rR][a-zA-Z]*|--recursive)\b",
    r"\bmkfs(?:\.\w+)?\b",
    r"\bdd\s+(?:.*\s)?if=",
    r"\bof=/dev/",
    r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:",
    r"/dev/tcp/|/dev/udp/",
    r"\bcurl\b.*\s(?:-d|--data\S*|-T|--upload-file|-F|--form)(?:\s|=|$)",
    r"\bwget\b.*--post-(?:file|data)",
    r"\bchmod\s+(?:-\S+\s+)*0?777\s+/(?:\s|$)",
    r">\s*/dev/(?:sd[a-z]|nvme\d|hd[a-z])",
    # Denied programs run through a wrapper such as sh -c or find -exec
    r"(?:^|[\s;&|(`'\"=/])(?:sudo|su|doas|pkexec|shutdown|reboot|halt|poweroff|nc|netcat|ncat|telnet)"
    r"(?=$|[\s;&|)`'\"])",
]

DEFAULT_CONFIRM_PATTERNS: list[str] = [
    r"\bgit\s+push\b",
    r"\bpip3?\s+install\b",
    r"\bnpm\s+(?:install|i|publish)\b",
    r"\bcargo\s+publish\b",
    r"\b(?:curl|wget|ssh|scp|rsync)\b",
    r"\b(?:chmod|chown)\b",
    r"\$\(|`",
]


class SandboxSettings(BaseModel):
    """Project root that all filesystem access is confined to."""

    model_config = ConfigDict(frozen=True)

    root: Path


class CommandPolicySettings(BaseModel):
    """Allow/deny rules for the command execution tool.

    An empty ``allowed_programs`` disables the allowlist; anything not denied
    is then allowed.
    """

    model_config = ConfigDict(frozen=True)

    allowed_programs: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_PROGRAMS))
    denied_programs: list[str] = Field(default_factory=lambda: list(DEFAULT_DENIED_PROGRAMS))
    deny_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_DENY_PATTERNS))
    confirm_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_CONFIRM_PATTERNS))


class ModelPrices(BaseModel):
    """Price per 1k tokens, used for best-effort cost telemetry."""

    model_config = ConfigDict(frozen=True)

    input: float = 0.0
    output: float = 0.0


class ProviderSettings(BaseModel):
    """Connection settings for one AI provider."""

    model_config = ConfigDict(frozen=True)

    name: ProviderName = "anthropic"
    model: str | None = None
    api_key: SecretStr | None = None
    base_url: str | None = None
    timeout: float = 60.0
    max_tokens: int = 1024
    temperature: float | None = None
    prices_per_1k: ModelPrices = Field(default_factory=ModelPrices)
    requests_per_minute: int = 50
    tokens_per_minute: int = 40_000

    @property
    def resolved_model(self) -> str:
        return self.model or DEFAULT_MODELS[self.name]


class Settings(BaseModel):
    """Top-level configuration threaded through component constructors."""

    model_config = ConfigDict(frozen=True)

    sandbox: SandboxSettings
    data_dir: Path
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    fallback_providers: list[ProviderSettings] = Field(default_factory=list)
    policy: CommandPolicySettings = Field(default_factory=CommandPolicySettings)

    system_prompt: str | None = None
    max_rounds: int = Field(default=5, ge=1)
    context_messages: int = Field(default=20, ge=1)
    context_tokens: int | None = None

    tool_timeout: float = 60.0
    command_timeout: float = 30.0
    max_output_chars: int = 100_000

    conversation_encryption: bool = False
    passphrase: SecretStr | None = None
    encryption_iterations: int = 100_000

    usage_log_enabled: bool = True
    currency: str = "USD"

    @property
    def conversations_dir(self) -> Path:
        return self.data_dir / "conversations"

    @property
    def usage_log_path(self) -> Path:
        return self.data_dir / "logs" / "usage.jsonl"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from SANDCODER_* and provider API key variables."""
        workspace = Path(os.getenv("SANDCODER_WORKSPACE") or os.getcwd())
        data_dir = Path(os.getenv("SANDCODER_DATA_DIR") or Path.home() / ".config" / "sandcoder")

        primary = _provider_from_env(os.getenv("SANDCODER_PROVIDER", "anthropic"), os.getenv("SANDCODER_MODEL"))
        chain = [name.strip() for name in os.getenv("SANDCODER_FALLBACK_CHAIN", "").split(",") if name.strip()]
        fallbacks = [_provider_from_env(name) for name in chain if name != primary.name]

        passphrase = os.getenv("SANDCODER_PASSPHRASE")

        return cls(
            sandbox=SandboxSettings(root=workspace),
            data_dir=data_dir,
            provider=primary,
            fallback_providers=fallbacks,
            max_rounds=int(os.getenv("SANDCODER_MAX_ROUNDS", "5")),
            conversation_encryption=os.getenv("SANDCODER_ENCRYPT", "false").lower() == "true",
            passphrase=SecretStr(passphrase) if passphrase else None,
        )


def _provider_from_env(name: str, model: str | None = None) -> ProviderSettings:
    env_var = API_KEY_ENV_VARS.get(name)
    api_key = os.getenv(env_var) if env_var else None
    return ProviderSettings(
        name=name,  # type: ignore[arg-type]
        model=model,
        api_key=SecretStr(api_key) if api_key else None,
    )
