"""Tests for the code sandbox (process runner; Docker only checked for its command line)."""

import asyncio
import shutil
import time
from pathlib import Path

import pytest

from orbit_bridge._exceptions import UnsupportedLanguageError
from orbit_bridge.config import SandboxSettings
from orbit_bridge.sandbox import (
    LANGUAGES,
    DockerSandboxRunner,
    ProcessSandboxRunner,
    Sandbox,
    check_code,
)
from orbit_bridge.tools.code import CodeExecution
from orbit_bridge.tools.executor import ToolExecutor


@pytest.fixture
def scratch(tmp_path):
    return tmp_path / "scratch"


@pytest.fixture
def sandbox(scratch):
    return Sandbox(SandboxSettings(backend="process", scratch_dir=str(scratch)))


def leftover_snippets(scratch: Path):
    return list(scratch.glob("snippet_*")) if scratch.exists() else []


class TestStaticCheck:
    @pytest.mark.parametrize(
        "code",
        [
            "while True:\n    pass",
            "while 1: pass",
            "for(;;) {}",
            "while(true) {}",
        ],
    )
    def test_unbounded_loops(self, code):
        """Unbounded loops are rejected statically."""
        assert "infinite loop" in check_code(code)

    @pytest.mark.parametrize(
        "code",
        [
            "for i in range(100000000): pass",
            "for i in range(10**9): pass",
            "for i in range(int(1e8)): pass",
            "n = 1_000_000_000",
        ],
    )
    def test_huge_iteration_counts(self, code):
        """Huge iteration counts are rejected statically."""
        assert "Iteration count" in check_code(code)

    @pytest.mark.parametrize(
        "code",
        [
            "import os\nos.listdir('/')",
            "import subprocess",
            "eval('1+1')",
            "open('/etc/passwd').read()",
            "__import__('socket')",
            "rm -rf /",
        ],
    )
    def test_dangerous_patterns(self, code):
        """Dangerous calls are rejected statically."""
        assert "dangerous" in check_code(code)

    def test_ordinary_code_passes(self):
        """Ordinary code passes the static check."""
        assert check_code("total = sum(range(1000))\nwhile total > 10: total //= 2\nprint(total)") is None


class TestProcessSandbox:
    @pytest.mark.asyncio
    async def test_python_output(self, sandbox, scratch):
        """Python output is captured and the scratch file removed."""
        result = await sandbox.run("print(2 + 2)", "python", 5)

        assert result.success is True
        assert result.output == "4"
        assert result.error is None
        assert result.language == "python"
        assert leftover_snippets(scratch) == []

    @pytest.mark.asyncio
    async def test_runaway_loop_is_killed(self, sandbox, scratch):
        """A runaway loop is killed at the timeout."""
        start = time.monotonic()

        result = await sandbox.run("x = 0\nwhile x >= 0:\n    x += 1", "python", 2)

        assert time.monotonic() - start < 4
        assert result.success is False
        assert result.output is None
        assert "2 second time limit" in result.error
        assert leftover_snippets(scratch) == []

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, sandbox):
        """A non-zero exit is a failed run."""
        result = await sandbox.run("print('partial')\nraise ValueError('boom')", "python", 5)

        assert result.success is False
        assert result.output == "partial"
        assert "ValueError: boom" in result.error

    @pytest.mark.asyncio
    async def test_sql_against_test_table(self, sandbox):
        """SQL runs against the seeded test table."""
        result = await sandbox.run("SELECT name, value FROM test_table WHERE id >= 2 ORDER BY id;", "SQL", 5)

        assert result.success is True
        assert result.output.splitlines() == ["Test2|20.3", "Test3|30.7"]

    @pytest.mark.asyncio
    @pytest.mark.skipif(shutil.which("sh") is None, reason="no POSIX shell")
    async def test_shell(self, sandbox):
        """Shell snippets run."""
        result = await sandbox.run("echo hello", "shell", 5)

        assert result.output == "hello"

    @pytest.mark.asyncio
    async def test_output_is_truncated(self, scratch):
        """Long output is truncated."""
        sandbox = Sandbox(SandboxSettings(backend="process", scratch_dir=str(scratch), max_output_bytes=10))

        result = await sandbox.run("print('x' * 100)", "python", 5)

        assert result.output.startswith("x" * 10)
        assert result.output.endswith("[output truncated]")

    @pytest.mark.asyncio
    async def test_rejection_starts_no_process(self, sandbox, scratch):
        """Rejected code never starts a process."""
        result = await sandbox.run("while True: pass", "python")

        assert result.success is False
        assert result.execution_time_ms == 0
        assert not scratch.exists()

    @pytest.mark.asyncio
    async def test_unknown_language_raises(self, sandbox):
        """Unknown languages raise."""
        with pytest.raises(UnsupportedLanguageError):
            await sandbox.run("puts 1", "ruby")

    def test_timeout_is_clamped(self, sandbox):
        """Timeouts are clamped to the allowed range."""
        assert sandbox._clamp_timeout(None) == 10
        assert sandbox._clamp_timeout(0) == 1
        assert sandbox._clamp_timeout(300) == 30
        assert sandbox._clamp_timeout("abc") == 10

    @pytest.mark.asyncio
    async def test_execute_code_tool(self, sandbox):
        """The execute_code tool wraps a sandbox run."""
        executor = ToolExecutor({"execute_code": CodeExecution(sandbox)})

        result = await executor.execute_one("execute_code", {"code": "print(6 * 7)", "language": "python"})

        assert result.success is True
        assert result.payload["output"] == "42"

    @pytest.mark.asyncio
    async def test_execute_code_tool_unknown_language(self, sandbox):
        """The execute_code tool reports unknown languages as failures."""
        executor = ToolExecutor({"execute_code": CodeExecution(sandbox)})

        result = await executor.execute_one("execute_code", {"code": "1", "language": "cobol"})

        assert result.success is False
        assert "cobol" in result.error


class TestRunners:
    def test_docker_command_line(self, tmp_path):
        """The docker runner builds a locked-down command line."""
        runner = DockerSandboxRunner(memory="64m", cpus=0.25, pids_limit=16)
        path = tmp_path / "snippet_abc.py"

        argv = runner.argv(LANGUAGES["python"], path, "abc")

        assert argv[:3] == ["docker", "run", "--rm"]
        for flag, value in (
            ("--network", "none"),
            ("--memory", "64m"),
            ("--cpus", "0.25"),
            ("--pids-limit", "16"),
            ("--user", "nobody"),
            ("--cap-drop", "ALL"),
            ("--name", "orbit-sandbox-abc"),
        ):
            assert argv[argv.index(flag) + 1] == value
        assert "--read-only" in argv
        assert f"{path}:/sandbox/snippet_abc.py:ro" in argv
        assert argv[-3:] == ["python", "-I", "/sandbox/snippet_abc.py"]

    def test_backend_selection(self, scratch):
        """The backend setting picks the runner."""
        assert isinstance(Sandbox(SandboxSettings(backend="process")).runner, ProcessSandboxRunner)
        assert isinstance(Sandbox(SandboxSettings()).runner, DockerSandboxRunner)

    @pytest.mark.asyncio
    @pytest.mark.skipif(shutil.which("sleep") is None or shutil.which("true") is None, reason="needs coreutils")
    async def test_docker_terminate_reaps_the_cli_process(self):
        """Terminating a container run kills and waits for the docker CLI child."""
        runner = DockerSandboxRunner(docker_bin=shutil.which("true"))
        proc = await asyncio.create_subprocess_exec("sleep", "30")

        await runner.terminate(proc, "abc")

        assert proc.returncode is not None
