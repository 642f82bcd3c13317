"""Policy-checked shell command execution inside the sandbox."""

import contextlib
import os
import signal
import subprocess
from collections.abc import Callable

from pydantic import Field

from sandcoder.errors import CommandDenied, CommandRequiresConfirmation, CommandTimeout, ToolError
from sandcoder.tools.base import ToolDefinition, ToolInput
from sandcoder.tools.policy import CommandPolicy
from sandcoder.tools.sandbox import SandboxResolver
from sandcoder.utils.files import truncate_text
from sandcoder.utils.logging import get_logger

logger = get_logger(__name__)

# Receives (command, reason) and returns True to let the command run
ConfirmCallback = Callable[[str, str], bool]


class RunCommandInput(ToolInput):
    """Input schema for the run_command tool."""

    cmd: str = Field(..., description="Shell command to execute")
    cwd_rel: str | None = Field(default=None, description="Relative working directory within the sandbox")


class CommandRunner:
    """Runs shell commands after policy classification, with a hard timeout."""

    def __init__(
        self,
        resolver: SandboxResolver,
        policy: CommandPolicy,
        timeout: float = 30.0,
        max_output_chars: int = 100_000,
        confirm: ConfirmCallback | None = None,
    ):
        self.resolver = resolver
        self.policy = policy
        self.timeout = timeout
        self.max_output_chars = max_output_chars
        self.confirm = confirm

    def run(self, command: str, cwd_rel: str | None = None) -> dict:
        """Classify, then execute ``command`` in the sandbox.

        Returns:
            ``{"exit_code", "stdout", "stderr"}``; a non-zero exit is not an error

        Raises:
            CommandDenied: policy rejected the command
            CommandRequiresConfirmation: policy wants approval and none was given
            CommandTimeout: the process group was killed after ``timeout`` seconds
        """
        decision = self.policy.classify(command)
        if decision.verdict == "denied":
            logger.warning(f"Denied command {command!r}: {decision.reason}")
            raise CommandDenied(command, decision.reason)
        if decision.verdict == "requires_confirmation":
            if self.confirm is None or not self.confirm(command, decision.reason):
                logger.info(f"Command {command!r} not confirmed: {decision.reason}")
                raise CommandRequiresConfirmation(command, decision.reason)

        cwd = self.resolver.resolve(cwd_rel or ".")
        if not cwd.absolute_path.is_dir():
            raise ToolError(f"Working directory does not exist: {cwd_rel}")

        logger.info(f"Running command in {cwd.relative_path}: {command}")
        proc = subprocess.Popen(
            command,
            shell=True,
            cwd=cwd.absolute_path,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            start_new_session=True,
        )
        try:
            stdout, stderr = proc.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            self._kill_group(proc)
            raise CommandTimeout(command, self.timeout) from e

        return {
            "exit_code": proc.returncode,
            "stdout": truncate_text(stdout, self.max_output_chars),
            "stderr": truncate_text(stderr, self.max_output_chars),
        }

    def _kill_group(self, proc: subprocess.Popen) -> None:
        """Kill the whole process group so children of the shell die too."""
        with contextlib.suppress(ProcessLookupError):
            os.killpg(proc.pid, signal.SIGKILL)
        with contextlib.suppress(subprocess.TimeoutExpired):
            proc.communicate(timeout=5)


def create_run_command_tool(runner: CommandRunner) -> ToolDefinition:
    def run_command(params: RunCommandInput) -> dict:
        return runner.run(params.cmd, params.cwd_rel)

    return ToolDefinition(
        name="run_command",
        description=(
            "Run a shell command inside the sandbox. Dangerous commands are denied; "
            "network and publishing commands need user confirmation. Returns exit code, stdout and stderr."
        ),
        input_schema_class=RunCommandInput,
        handler=run_command,
    )
