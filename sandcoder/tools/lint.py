"""Language-aware linting tool.

The linter runs through the same ``CommandRunner`` as ``run_command``, so the
command policy, sandbox working directory and timeout all apply. Its JSON
report is normalized into a flat list of findings; output that is not JSON
falls back to ``file:line:col: message`` parsing.
"""

import json
import re
import shlex
import shutil
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Literal

from pydantic import BaseModel, Field

from sandcoder.errors import ToolError
from sandcoder.tools.base import ToolDefinition, ToolInput
from sandcoder.tools.sandbox import SandboxResolver
from sandcoder.tools.terminal import CommandRunner
from sandcoder.utils.logging import get_logger

logger = get_logger(__name__)

Language = Literal["python", "lua", "javascript", "typescript"]

LANGUAGE_BY_EXTENSION: dict[str, Language] = {
    ".py": "python",
    ".lua": "lua",
    ".js": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
}

_TEXT_FINDING = re.compile(r"^([^:\n]+):(\d+):(\d*):?\s*(.+)$")


@dataclass(frozen=True)
class Linter:
    """A linter command that can emit a JSON report."""

    name: str
    args: str


# In order of preference
LINTERS: dict[str, list[Linter]] = {
    "python": [Linter("ruff", "check --output-format=json"), Linter("flake8", "--format=json")],
    "lua": [Linter("luacheck", "--formatter=json")],
    "javascript": [Linter("eslint", "--format=json")],
    "typescript": [Linter("eslint", "--format=json")],
}


class RunLintInput(ToolInput):
    """Input schema for the run_lint tool."""

    rel_path: str = Field(..., description="Relative path to the file or directory to lint")
    language: Language | None = Field(default=None, description="Language; detected from the extension if omitted")
    linter: str | None = Field(default=None, description="Preferred linter, e.g. ruff, flake8, luacheck or eslint")


class LintFinding(BaseModel):
    """One problem reported by a linter."""

    file: str | None = None
    line: int | None = None
    column: int | None = None
    severity: Literal["error", "warning"] = "warning"
    message: str
    rule: str | None = None


def detect_language(rel_path: str) -> Language:
    suffix = PurePosixPath(rel_path).suffix
    if not suffix:
        raise ToolError("Unable to determine language: no file extension (pass language explicitly)")
    try:
        return LANGUAGE_BY_EXTENSION[suffix.lower()]
    except KeyError:
        raise ToolError(f"Unsupported file extension: {suffix}") from None


def select_linter(language: str, preferred: str | None = None) -> Linter:
    """Pick the preferred linter, or the first one installed for ``language``."""
    candidates = LINTERS[language]
    if preferred:
        for linter in candidates:
            if linter.name == preferred:
                if shutil.which(linter.name) is None:
                    raise ToolError(f"Requested linter not available: {preferred}")
                return linter
        raise ToolError(f"Requested linter not supported for {language}: {preferred}")

    for linter in candidates:
        if shutil.which(linter.name) is not None:
            return linter
    names = ", ".join(linter.name for linter in candidates)
    raise ToolError(f"No linters available for {language}. Install one of: {names}")


def _code_severity(code: str | None, error_prefix: str) -> str:
    return "error" if code and code.startswith(error_prefix) else "warning"


def parse_json_report(linter: str, report: Any) -> list[LintFinding]:
    """Normalize a linter's JSON report."""
    findings: list[LintFinding] = []
    if linter == "ruff":
        for item in report:
            location = item.get("location") or {}
            findings.append(
                LintFinding(
                    file=item.get("filename"),
                    line=location.get("row"),
                    column=location.get("column"),
                    severity=_code_severity(item.get("code"), "E"),
                    message=item.get("message", ""),
                    rule=item.get("code"),
                )
            )
    elif linter == "flake8":
        for filename, items in report.items():
            for item in items:
                findings.append(
                    LintFinding(
                        file=filename,
                        line=item.get("line_number"),
                        column=item.get("column_number"),
                        severity=_code_severity(item.get("code"), "E"),
                        message=item.get("text", ""),
                        rule=item.get("code"),
                    )
                )
    elif linter == "luacheck":
        for file_report in report:
            for event in file_report.get("events") or []:
                findings.append(
                    LintFinding(
                        file=file_report.get("filename"),
                        line=event.get("line"),
                        column=event.get("column"),
                        # luacheck codes starting with 0 are syntax errors
                        severity=_code_severity(event.get("code"), "0"),
                        message=event.get("msg", ""),
                        rule=event.get("code"),
                    )
                )
    elif linter == "eslint":
        for file_report in report:
            for message in file_report.get("messages") or []:
                findings.append(
                    LintFinding(
                        file=file_report.get("filePath"),
                        line=message.get("line"),
                        column=message.get("column"),
                        severity="error" if message.get("severity") == 2 else "warning",
                        message=message.get("message", ""),
                        rule=message.get("ruleId"),
                    )
                )
    return findings


def parse_text_report(output: str) -> list[LintFinding]:
    findings = []
    for line in output.splitlines():
        match = _TEXT_FINDING.match(line.strip())
        if match:
            file, line_no, column, message = match.groups()
            findings.append(
                LintFinding(
                    file=file,
                    line=int(line_no),
                    column=int(column) if column else None,
                    message=message.strip(),
                )
            )
    return findings


def create_run_lint_tool(resolver: SandboxResolver, runner: CommandRunner) -> ToolDefinition:
    def run_lint(params: RunLintInput) -> dict:
        target = resolver.resolve(params.rel_path)
        if not target.absolute_path.exists():
            raise ToolError(f"Path not found: {params.rel_path}")

        language = params.language or detect_language(target.relative_path)
        linter = select_linter(language, params.linter)
        command = f"{linter.name} {linter.args} {shlex.quote(target.relative_path)}"
        result = runner.run(command)

        output = result["stdout"]
        try:
            findings = parse_json_report(linter.name, json.loads(output))
        except (json.JSONDecodeError, AttributeError, TypeError) as e:
            logger.debug(f"{linter.name} output is not a JSON report ({e}), parsing as text")
            findings = parse_text_report(output + "\n" + result["stderr"])

        return {
            "linter_used": linter.name,
            "language": language,
            "target_path": target.relative_path,
            "findings_count": len(findings),
            "findings": [finding.model_dump() for finding in findings],
            "exit_code": result["exit_code"],
            "raw_output": output,
        }

    return ToolDefinition(
        name="run_lint",
        description=(
            "Run a linter on a sandbox file and return structured findings. "
            "Supports Python (ruff, flake8), Lua (luacheck) and JavaScript/TypeScript (eslint)."
        ),
        input_schema_class=RunLintInput,
        handler=run_lint,
    )
