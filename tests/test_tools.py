"""Tests for the default filesystem, search and command tools."""

import json
import time

import pytest

from sandcoder.config import CommandPolicySettings
from sandcoder.errors import CommandDenied, CommandRequiresConfirmation, CommandTimeout, SandboxViolation, ToolError
from sandcoder.models.llm import ToolCall
from sandcoder.tools import lint
from sandcoder.tools.policy import CommandPolicy
from sandcoder.tools.terminal import CommandRunner


def invoke(registry, name, **arguments):
    return registry.invoke(ToolCall(id=f"call_{name}", name=name, input=arguments))


class TestReadFile:
    """Tests for the read_file tool."""

    def test_reads_text(self, workspace, registry):
        """Test that file content is returned."""
        (workspace / "hello.txt").write_text("hello\nworld\n")

        result = invoke(registry, "read_file", rel_path="hello.txt")

        assert not result.is_error
        assert result.output == {"content": "hello\nworld\n", "path": "hello.txt"}

    def test_missing_file(self, registry):
        """Test that a missing file is an error result."""
        result = invoke(registry, "read_file", rel_path="nope.txt")
        assert result.is_error
        assert "File not found" in result.error

    def test_traversal_is_a_sandbox_violation(self, registry):
        """Test that ../../../../etc/passwd is refused without being read."""
        result = invoke(registry, "read_file", rel_path="../../../../etc/passwd")

        assert result.is_error
        assert "Sandbox violation" in result.error
        assert "../../../../etc/passwd" in result.error


class TestWriteFile:
    """Tests for the write_file tool."""

    def test_writes_atomically(self, workspace, registry):
        """Test that content is written and no temporary files remain."""
        result = invoke(registry, "write_file", rel_path="out.txt", content="data\n")

        assert not result.is_error
        assert result.output == {"ok": True, "path": "out.txt", "bytes": 5}
        assert (workspace / "out.txt").read_text() == "data\n"
        assert sorted(p.name for p in workspace.iterdir()) == ["out.txt"]

    def test_overwrites_existing(self, workspace, registry):
        """Test that an existing file is replaced."""
        (workspace / "out.txt").write_text("old")
        invoke(registry, "write_file", rel_path="out.txt", content="new")
        assert (workspace / "out.txt").read_text() == "new"

    def test_missing_parent_without_create_dirs(self, workspace, registry):
        """Test that parents are not created unless asked."""
        result = invoke(registry, "write_file", rel_path="a/b/c.txt", content="x")

        assert result.is_error
        assert "create_dirs" in result.error
        assert not (workspace / "a").exists()

    def test_create_dirs(self, workspace, registry):
        """Test that create_dirs makes missing parents."""
        result = invoke(registry, "write_file", rel_path="a/b/c.txt", content="x", create_dirs=True)

        assert not result.is_error
        assert (workspace / "a" / "b" / "c.txt").read_text() == "x"

    def test_write_outside_root_is_refused(self, tmp_path, registry):
        """Test that writes cannot escape the sandbox."""
        result = invoke(registry, "write_file", rel_path="../escaped.txt", content="x")

        assert result.is_error
        assert "Sandbox violation" in result.error
        assert not (tmp_path / "escaped.txt").exists()


class TestListDir:
    """Tests for the list_dir tool."""

    def test_lists_sorted_with_directory_suffix(self, workspace, registry):
        """Test that entries are sorted and directories end with '/'."""
        (workspace / "b.txt").write_text("")
        (workspace / "a.txt").write_text("")
        (workspace / "src").mkdir()

        result = invoke(registry, "list_dir")

        assert result.output == {"entries": ["a.txt", "b.txt", "src/"], "path": "."}

    def test_not_a_directory(self, workspace, registry):
        """Test that listing a file is an error."""
        (workspace / "a.txt").write_text("")
        result = invoke(registry, "list_dir", rel_path="a.txt")
        assert result.is_error


class TestGenerateDiff:
    """Tests for the generate_diff tool."""

    def test_diff_existing_file(self, workspace, registry):
        """Test that a unified diff is produced and the file is untouched."""
        (workspace / "a.py").write_text("x = 1\ny = 2\n")

        result = invoke(registry, "generate_diff", rel_path="a.py", new_content="x = 1\ny = 3\n")

        patch = result.output["patch"]
        assert result.output["changed"] is True
        assert "--- a/a.py" in patch
        assert "+++ b/a.py" in patch
        assert "-y = 2" in patch
        assert "+y = 3" in patch
        assert (workspace / "a.py").read_text() == "x = 1\ny = 2\n"

    def test_diff_new_file(self, registry):
        """Test that a new file diffs against /dev/null."""
        result = invoke(registry, "generate_diff", rel_path="new.py", new_content="print(1)\n")

        assert result.output["new_file"] is True
        assert "--- /dev/null" in result.output["patch"]
        assert "+print(1)" in result.output["patch"]

    def test_identical_content(self, workspace, registry):
        """Test that identical content produces an empty patch."""
        (workspace / "a.py").write_text("same\n")
        result = invoke(registry, "generate_diff", rel_path="a.py", new_content="same\n")
        assert result.output["patch"] == ""
        assert result.output["changed"] is False


class TestApplyPatch:
    """Tests for the apply_patch tool."""

    def test_applies_generated_diff(self, workspace, registry):
        """Test that a diff from generate_diff applies back onto the file."""
        (workspace / "a.py").write_text("x = 1\ny = 2\n")
        patch = invoke(registry, "generate_diff", rel_path="a.py", new_content="x = 1\ny = 3\n").output["patch"]

        result = invoke(registry, "apply_patch", rel_path="a.py", patch=patch)

        assert not result.is_error
        assert result.output["ok"] is True
        assert result.output["hunks"] == 1
        assert (workspace / "a.py").read_text() == "x = 1\ny = 3\n"

    def test_hunk_found_at_offset(self, workspace, registry):
        """Test that a hunk whose header line moved still applies on exact context."""
        (workspace / "a.py").write_text("import os\n\nx = 1\ny = 2\n")
        patch = "--- a/a.py\n+++ b/a.py\n@@ -1,2 +1,2 @@\n x = 1\n-y = 2\n+y = 3\n"

        result = invoke(registry, "apply_patch", rel_path="a.py", patch=patch)

        assert not result.is_error
        assert (workspace / "a.py").read_text() == "import os\n\nx = 1\ny = 3\n"

    def test_mismatched_context_leaves_file(self, workspace, registry):
        """Test that a patch whose context does not match is an error and nothing is written."""
        (workspace / "a.py").write_text("x = 1\ny = 5\n")
        patch = "--- a/a.py\n+++ b/a.py\n@@ -1,2 +1,2 @@\n x = 1\n-y = 2\n+y = 3\n"

        result = invoke(registry, "apply_patch", rel_path="a.py", patch=patch)

        assert result.is_error
        assert "Patch failed to apply cleanly" in result.error
        assert (workspace / "a.py").read_text() == "x = 1\ny = 5\n"

    def test_creates_new_file(self, workspace, registry):
        """Test that a patch against /dev/null creates the file."""
        patch = "--- /dev/null\n+++ b/new.py\n@@ -0,0 +1,2 @@\n+a = 1\n+b = 2\n"

        result = invoke(registry, "apply_patch", rel_path="new.py", patch=patch)

        assert result.output["new_file"] is True
        assert (workspace / "new.py").read_text() == "a = 1\nb = 2\n"

    def test_no_newline_marker(self, workspace, registry):
        """Test that the missing final newline marker is honoured."""
        (workspace / "a.txt").write_text("a\nb")
        patch = (
            "--- a/a.txt\n+++ b/a.txt\n@@ -1,2 +1,2 @@\n a\n-b\n"
            "\\ No newline at end of file\n+c\n\\ No newline at end of file\n"
        )

        result = invoke(registry, "apply_patch", rel_path="a.txt", patch=patch)

        assert not result.is_error
        assert (workspace / "a.txt").read_text() == "a\nc"

    def test_truncated_hunk(self, workspace, registry):
        """Test that a hunk shorter than its header is rejected."""
        (workspace / "a.py").write_text("x = 1\ny = 2\n")
        result = invoke(registry, "apply_patch", rel_path="a.py", patch="@@ -1,2 +1,2 @@\n x = 1\n")
        assert result.is_error
        assert "truncated" in result.error

    def test_overwrite_mode(self, workspace, registry):
        """Test that overwrite mode replaces the file with the given content."""
        (workspace / "a.py").write_text("old\n")

        result = invoke(registry, "apply_patch", rel_path="a.py", patch="new\n", mode="overwrite")

        assert result.output["note"] == "file overwritten as fallback"
        assert (workspace / "a.py").read_text() == "new\n"

    def test_traversal_is_a_sandbox_violation(self, registry):
        """Test that a patch outside the project root is refused."""
        result = invoke(registry, "apply_patch", rel_path="../outside.py", patch="x\n", mode="overwrite")
        assert result.is_error
        assert "Sandbox violation" in result.error


class FakeRunner:
    """Records commands and returns a canned result."""

    def __init__(self, stdout="", stderr="", exit_code=0):
        self.commands = []
        self.result = {"exit_code": exit_code, "stdout": stdout, "stderr": stderr}

    def run(self, command, cwd_rel=None):
        self.commands.append(command)
        return self.result


@pytest.fixture
def installed(monkeypatch):
    """Pretend only the named linters are on PATH."""

    def install(*names):
        monkeypatch.setattr(lint.shutil, "which", lambda name: f"/usr/bin/{name}" if name in names else None)

    return install


def lint_file(resolver, runner, **arguments):
    tool = lint.create_run_lint_tool(resolver, runner)
    return tool.handler(lint.RunLintInput(**arguments))


class TestRunLint:
    """Tests for the run_lint tool."""

    def test_ruff_json_report(self, workspace, resolver, installed):
        """Test that ruff's JSON report becomes structured findings."""
        (workspace / "a.py").write_text("import os\n")
        installed("ruff", "flake8")
        report = [
            {"filename": "a.py", "location": {"row": 1, "column": 8}, "code": "F401", "message": "unused import"},
            {"filename": "a.py", "location": {"row": 2, "column": 1}, "code": "E501", "message": "line too long"},
        ]
        runner = FakeRunner(stdout=json.dumps(report), exit_code=1)

        result = lint_file(resolver, runner, rel_path="a.py")

        assert runner.commands == ["ruff check --output-format=json a.py"]
        assert result["linter_used"] == "ruff"
        assert result["language"] == "python"
        assert result["findings_count"] == 2
        assert result["findings"][0] == {
            "file": "a.py",
            "line": 1,
            "column": 8,
            "severity": "warning",
            "message": "unused import",
            "rule": "F401",
        }
        assert result["findings"][1]["severity"] == "error"
        assert result["exit_code"] == 1

    def test_falls_back_to_flake8_and_text_output(self, workspace, resolver, installed):
        """Test linter fallback order and plain-text parsing."""
        (workspace / "a.py").write_text("import os\n")
        installed("flake8")
        runner = FakeRunner(stdout="a.py:1:1: F401 'os' imported but unused\n")

        result = lint_file(resolver, runner, rel_path="a.py")

        assert result["linter_used"] == "flake8"
        assert result["findings"][0]["line"] == 1
        assert result["findings"][0]["message"] == "F401 'os' imported but unused"

    def test_eslint_severity(self, workspace, resolver, installed):
        """Test that eslint severity 2 is an error."""
        (workspace / "app.tsx").write_text("let x\n")
        installed("eslint")
        message = {"line": 1, "column": 5, "severity": 2, "message": "bad", "ruleId": "no-undef"}
        report = [{"filePath": "app.tsx", "messages": [message]}]
        runner = FakeRunner(stdout=json.dumps(report))

        result = lint_file(resolver, runner, rel_path="app.tsx")

        assert result["language"] == "typescript"
        assert result["findings"][0]["severity"] == "error"
        assert result["findings"][0]["rule"] == "no-undef"

    def test_luacheck_events(self, workspace, resolver, installed):
        """Test that luacheck events are flattened."""
        (workspace / "init.lua").write_text("x = 1\n")
        installed("luacheck")
        event = {"line": 1, "column": 1, "code": "111", "msg": "setting global"}
        report = [{"filename": "init.lua", "events": [event]}]

        result = lint_file(resolver, FakeRunner(stdout=json.dumps(report)), rel_path="init.lua")

        assert result["findings"] == [
            {
                "file": "init.lua",
                "line": 1,
                "column": 1,
                "severity": "warning",
                "message": "setting global",
                "rule": "111",
            }
        ]

    def test_no_linter_installed(self, workspace, resolver, installed):
        """Test that a missing linter names the ones to install."""
        (workspace / "a.py").write_text("")
        installed()
        with pytest.raises(ToolError, match="No linters available for python. Install one of: ruff, flake8"):
            lint_file(resolver, FakeRunner(), rel_path="a.py")

    def test_preferred_linter_must_match_language(self, workspace, resolver, installed):
        """Test that a linter for another language is refused."""
        (workspace / "a.py").write_text("")
        installed("eslint")
        with pytest.raises(ToolError, match="not supported for python"):
            lint_file(resolver, FakeRunner(), rel_path="a.py", linter="eslint")

    def test_unsupported_extension(self, workspace, registry):
        """Test that an unknown extension is an error result."""
        (workspace / "notes.txt").write_text("")
        result = invoke(registry, "run_lint", rel_path="notes.txt")
        assert result.is_error
        assert "Unsupported file extension" in result.error

    def test_command_policy_applies(self, workspace, resolver, installed):
        """Test that the linter command goes through the command policy."""
        (workspace / "a.py").write_text("")
        installed("ruff")
        runner = CommandRunner(resolver, CommandPolicy(CommandPolicySettings(allowed_programs=["ls"])))
        with pytest.raises(CommandDenied, match="ruff"):
            lint_file(resolver, runner, rel_path="a.py")


class TestSearchCode:
    """Tests for the search_code tool."""

    @pytest.fixture
    def tree(self, workspace):
        (workspace / "src").mkdir()
        (workspace / "src" / "app.py").write_text("def handler():\n    return 42\n\nhandler()\n")
        (workspace / "src" / "util.py").write_text("# no match here\n")
        (workspace / "build").mkdir()
        (workspace / "build" / "app.py").write_text("def handler(): pass\n")
        (workspace / ".git").mkdir()
        (workspace / ".git" / "config").write_text("handler\n")
        (workspace / "blob.bin").write_bytes(b"handler\x00\x01\x02")
        (workspace / ".gitignore").write_text("build/\n")
        return workspace

    def test_finds_matches_with_line_numbers(self, tree, registry):
        """Test that matches report file, line and text."""
        result = invoke(registry, "search_code", query=r"handler\(")

        assert result.output["results"] == [
            {"file": "src/app.py", "line": 1, "text": "def handler():"},
            {"file": "src/app.py", "line": 4, "text": "handler()"},
        ]
        assert result.output["query"] == r"handler\("
        assert result.output["searched_path"] == "."
        assert result.output["truncated"] is False

    def test_skips_ignored_vcs_and_binary_files(self, tree, registry):
        """Test that .gitignore, .git and binary files are not searched."""
        files = {match["file"] for match in invoke(registry, "search_code", query="handler").output["results"]}
        assert files == {"src/app.py"}

    def test_max_results(self, tree, registry):
        """Test that results are capped and marked truncated."""
        result = invoke(registry, "search_code", query="handler", max_results=1)
        assert len(result.output["results"]) == 1
        assert result.output["truncated"] is True

    def test_case_insensitive(self, tree, registry):
        """Test the case_sensitive flag."""
        sensitive = invoke(registry, "search_code", query="HANDLER")
        insensitive = invoke(registry, "search_code", query="HANDLER", case_sensitive=False)
        assert sensitive.output["results"] == []
        assert len(insensitive.output["results"]) == 2

    def test_subdirectory(self, tree, registry):
        """Test searching below a relative path."""
        result = invoke(registry, "search_code", query="match", rel_path="src")
        assert result.output["searched_path"] == "src"
        assert [m["file"] for m in result.output["results"]] == ["src/util.py"]

    def test_invalid_pattern(self, registry):
        """Test that a bad regex is an error result."""
        result = invoke(registry, "search_code", query="(unclosed")
        assert result.is_error
        assert "Invalid search pattern" in result.error

    def test_symlink_to_outside_file_is_skipped(self, tmp_path, workspace, registry):
        """Test that search never reads through symlinks leaving the sandbox."""
        secret = tmp_path / "secret.txt"
        secret.write_text("handler secret\n")
        (workspace / "link.txt").symlink_to(secret)

        result = invoke(registry, "search_code", query="secret")

        assert result.output["results"] == []


class TestRunCommand:
    """Tests for the run_command tool and CommandRunner."""

    def test_echo(self, registry):
        """Test that an allowed command runs and returns its output."""
        result = invoke(registry, "run_command", cmd="echo hello")

        assert not result.is_error
        assert result.output == {"exit_code": 0, "stdout": "hello\n", "stderr": ""}

    def test_non_zero_exit_is_not_an_error(self, registry):
        """Test that exit codes are reported in the output."""
        result = invoke(registry, "run_command", cmd="sh -c 'echo oops >&2; exit 3'")

        assert not result.is_error
        assert result.output["exit_code"] == 3
        assert result.output["stderr"] == "oops\n"

    def test_runs_in_sandboxed_cwd(self, workspace, registry):
        """Test that commands run inside the sandbox, optionally in a subdirectory."""
        (workspace / "sub").mkdir()
        (workspace / "sub" / "marker.txt").write_text("")

        result = invoke(registry, "run_command", cmd="ls", cwd_rel="sub")

        assert result.output["stdout"] == "marker.txt\n"

    def test_cwd_outside_sandbox(self, registry):
        """Test that the working directory is sandbox-checked."""
        result = invoke(registry, "run_command", cmd="ls", cwd_rel="../..")
        assert result.is_error
        assert "Sandbox violation" in result.error

    def test_rm_rf_root_is_denied(self, registry):
        """Test that rm -rf / never runs."""
        result = invoke(registry, "run_command", cmd="rm -rf /")
        assert result.is_error
        assert "Command denied by policy" in result.error

    def test_confirmation_required_without_callback(self, resolver):
        """Test that commands needing approval are refused when nobody confirms."""
        runner = CommandRunner(resolver, CommandPolicy())
        with pytest.raises(CommandRequiresConfirmation):
            runner.run("git push origin main")

    def test_confirmation_callback(self, resolver):
        """Test that an approving callback lets the command run."""
        policy = CommandPolicy(CommandPolicySettings(confirm_patterns=[r"\becho\s+publish\b"]))
        prompts = []

        def confirm(command, reason):
            prompts.append((command, reason))
            return True

        runner = CommandRunner(resolver, policy, confirm=confirm)
        output = runner.run("echo publish")

        assert output["stdout"] == "publish\n"
        assert prompts[0][0] == "echo publish"

    def test_declining_callback(self, resolver):
        """Test that a declining callback refuses the command."""
        policy = CommandPolicy(CommandPolicySettings(confirm_patterns=[r"\becho\b"]))
        runner = CommandRunner(resolver, policy, confirm=lambda command, reason: False)
        with pytest.raises(CommandRequiresConfirmation):
            runner.run("echo hi")

    def test_denied_raises(self, resolver):
        """Test that CommandRunner raises CommandDenied directly."""
        with pytest.raises(CommandDenied):
            CommandRunner(resolver, CommandPolicy()).run("sudo ls")

    def test_timeout_kills_process(self, resolver):
        """Test that a long-running command is killed and reported."""
        runner = CommandRunner(resolver, CommandPolicy(), timeout=0.5)

        started = time.monotonic()
        with pytest.raises(CommandTimeout):
            runner.run("sleep 30")

        assert time.monotonic() - started < 10

    def test_output_truncated(self, resolver):
        """Test that large output is cut with a marker."""
        runner = CommandRunner(resolver, CommandPolicy(), max_output_chars=10)
        output = runner.run("echo 0123456789abcdef")
        assert output["stdout"].startswith("0123456789\n[...truncated")

    def test_cwd_violation_raised_from_runner(self, resolver):
        """Test that CommandRunner resolves the cwd through the sandbox."""
        with pytest.raises(SandboxViolation):
            CommandRunner(resolver, CommandPolicy()).run("ls", cwd_rel="/")
