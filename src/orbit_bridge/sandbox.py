"""
Sandboxed execution of model-written code snippets.

``Sandbox.run`` is the single entry point. It statically rejects obviously
unbounded or dangerous code, writes the snippet to a throwaway file, runs it
through a ``SandboxRunner`` under a wall-clock timeout and always removes the
file afterwards. Timeouts and non-zero exits come back as a failed
``SandboxResult``; only an unknown language raises.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import resource
import secrets
import signal
import sys
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence

from orbit_bridge._exceptions import SandboxTimeoutError, UnsupportedLanguageError
from orbit_bridge.config import SandboxSettings

__all__ = [
    "DockerSandboxRunner",
    "LANGUAGES",
    "LanguageSpec",
    "ProcessSandboxRunner",
    "Sandbox",
    "SandboxResult",
    "SandboxRunner",
    "check_code",
]

_logger = logging.getLogger(__name__)

_SQL_SEED = """
CREATE TABLE test_table (id INTEGER, name TEXT, value REAL);
INSERT INTO test_table VALUES (1, 'Test1', 10.5);
INSERT INTO test_table VALUES (2, 'Test2', 20.3);
INSERT INTO test_table VALUES (3, 'Test3', 30.7);
"""

# SQL runs through a small Python driver against an in-memory SQLite database.
_SQL_DRIVER = '''\
import sqlite3

conn = sqlite3.connect(":memory:")
conn.executescript(__SEED__)
buffer = ""
for piece in __SQL__.split(";"):
    buffer += piece + ";"
    if not sqlite3.complete_statement(buffer):
        continue
    statement = buffer.strip()
    buffer = ""
    if statement == ";":
        continue
    for row in conn.execute(statement).fetchall():
        print("|".join("" if v is None else str(v) for v in row))
conn.commit()
'''


def _sql_source(code: str) -> str:
    return _SQL_DRIVER.replace("__SEED__", repr(_SQL_SEED)).replace("__SQL__", repr(code))


@dataclass(frozen=True, slots=True)
class LanguageSpec:
    name: str
    extension: str
    # argv prefix inside the container / for the local interpreter
    docker_image: str
    docker_argv: tuple[str, ...]
    local_argv: tuple[str, ...]
    render: Callable[[str], str] = lambda code: code


LANGUAGES: Mapping[str, LanguageSpec] = {
    "python": LanguageSpec("python", "py", "python:3.12-alpine", ("python", "-I"), (sys.executable, "-I")),
    "javascript": LanguageSpec("javascript", "js", "node:20-alpine", ("node",), ("node",)),
    "sql": LanguageSpec(
        "sql", "py", "python:3.12-alpine", ("python", "-I"), (sys.executable, "-I"), _sql_source
    ),
    "shell": LanguageSpec("shell", "sh", "alpine:3.20", ("sh",), ("sh",)),
}


@dataclass(frozen=True, slots=True)
class SandboxResult:
    success: bool
    output: Optional[str]
    error: Optional[str]
    execution_time_ms: int
    language: str

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


# --------------------------------------------------------------------------- #
# Static pre-check
# --------------------------------------------------------------------------- #
_UNBOUNDED = [
    re.compile(r"\bwhile\s*\(?\s*(?:True|true|1)\b"),
    re.compile(r"\bfor\s*\(\s*;\s*;\s*\)"),
]
_DANGEROUS = [
    re.compile(r"rm\s+-rf", re.I),
    re.compile(r"del\s+/[sf]", re.I),
    re.compile(r"format\s+[cd]:", re.I),
    re.compile(r"\bshutdown\b", re.I),
    re.compile(r"\breboot\b", re.I),
    re.compile(r"\bkill\b", re.I),
    re.compile(r"import\s+os\b", re.I),
    re.compile(r"\bsubprocess\b", re.I),
    re.compile(r"\beval\s*\(", re.I),
    re.compile(r"\bexec\s*\(", re.I),
    re.compile(r"\bfile\s*\(", re.I),
    re.compile(r"\bopen\s*\(", re.I),
    re.compile(r"__import__"),
]
_BIG_ITERATIONS = 10**8
_INT_LITERAL = re.compile(r"(?<![\w.])\d[\d_]*(?![\w.])")
_POWER = re.compile(r"\b10\s*\*\*\s*(\d+)")
_SCIENTIFIC = re.compile(r"\b(\d+(?:\.\d+)?)[eE]\+?(\d+)\b")


def _has_huge_count(code: str) -> bool:
    for match in _INT_LITERAL.finditer(code):
        if int(match.group(0).replace("_", "") or 0) >= _BIG_ITERATIONS:
            return True
    if any(int(m.group(1)) >= 8 for m in _POWER.finditer(code)):
        return True
    return any(
        float(f"{m.group(1)}e{m.group(2)}") >= _BIG_ITERATIONS
        for m in _SCIENTIFIC.finditer(code)
    )


def check_code(code: str) -> Optional[str]:
    """Return a rejection reason, or None when the snippet may run."""
    if not code or not code.strip():
        return "No code to execute."
    if any(p.search(code) for p in _UNBOUNDED):
        return "Potentially infinite loop detected; bound the loop and try again."
    if _has_huge_count(code):
        return "Iteration count too large for the sandbox (limit is below 10^8)."
    if any(p.search(code) for p in _DANGEROUS):
        return (
            "Potentially dangerous code detected. File system access, system "
            "commands and spawning processes are not allowed."
        )
    return None


# --------------------------------------------------------------------------- #
# Runners
# --------------------------------------------------------------------------- #
class SandboxRunner(Protocol):
    """How a materialized snippet is turned into an isolated process."""

    def argv(self, spec: LanguageSpec, path: Path, run_id: str) -> list[str]:
        ...

    def spawn_kwargs(self, timeout: int) -> dict[str, Any]:
        ...

    async def terminate(self, proc: asyncio.subprocess.Process, run_id: str) -> None:
        ...


class DockerSandboxRunner:
    """
    One throwaway container per snippet: no network, capped memory/CPU/pids,
    read-only root with a small tmpfs, unprivileged user, all capabilities
    dropped. The snippet is bind-mounted read-only.
    """

    def __init__(
        self,
        *,
        memory: str = "128m",
        cpus: float = 0.5,
        pids_limit: int = 64,
        docker_bin: str = "docker",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.memory = memory
        self.cpus = cpus
        self.pids_limit = pids_limit
        self.docker_bin = docker_bin
        self.logger = logger or _logger

    @staticmethod
    def container_name(run_id: str) -> str:
        return f"orbit-sandbox-{run_id}"

    def argv(self, spec: LanguageSpec, path: Path, run_id: str) -> list[str]:
        target = f"/sandbox/{path.name}"
        return [
            self.docker_bin, "run", "--rm",
            "--name", self.container_name(run_id),
            "--network", "none",
            "--memory", self.memory,
            "--memory-swap", self.memory,
            "--cpus", str(self.cpus),
            "--pids-limit", str(self.pids_limit),
            "--read-only",
            "--tmpfs", "/tmp:rw,noexec,nosuid,size=16m",
            "--user", "nobody",
            "--cap-drop", "ALL",
            "--security-opt", "no-new-privileges",
            "--workdir", "/tmp",
            "-v", f"{path}:{target}:ro",
            spec.docker_image,
            *spec.docker_argv,
            target,
        ]

    def spawn_kwargs(self, timeout: int) -> dict[str, Any]:
        return {}

    async def terminate(self, proc: asyncio.subprocess.Process, run_id: str) -> None:
        # Killing the docker CLI does not stop the container; remove it by name.
        if proc.returncode is None:
            proc.kill()
        rm = await asyncio.create_subprocess_exec(
            self.docker_bin, "rm", "-f", self.container_name(run_id),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        try:
            await asyncio.wait_for(rm.wait(), timeout=10)
        except asyncio.TimeoutError:
            self.logger.warning("docker rm -f %s did not finish", self.container_name(run_id))
            rm.kill()
            await rm.wait()
        await proc.wait()


class ProcessSandboxRunner:
    """
    Local interpreter under ``resource`` limits with a scrubbed environment.

    Weaker than the container runner (shares the host network and file
    system), meant for development and tests.
    """

    def __init__(
        self,
        *,
        memory_bytes: int = 512 * 1024 * 1024,
        file_size_bytes: int = 1024 * 1024,
        workdir: Optional[str] = None,
    ) -> None:
        self.memory_bytes = memory_bytes
        self.file_size_bytes = file_size_bytes
        self.workdir = workdir

    def argv(self, spec: LanguageSpec, path: Path, run_id: str) -> list[str]:
        return [*spec.local_argv, str(path)]

    def _limits(self, timeout: int) -> Callable[[], None]:
        memory, fsize = self.memory_bytes, self.file_size_bytes

        def apply() -> None:
            resource.setrlimit(resource.RLIMIT_AS, (memory, memory))
            resource.setrlimit(resource.RLIMIT_CPU, (timeout + 1, timeout + 1))
            resource.setrlimit(resource.RLIMIT_FSIZE, (fsize, fsize))
            resource.setrlimit(resource.RLIMIT_CORE, (0, 0))

        return apply

    def spawn_kwargs(self, timeout: int) -> dict[str, Any]:
        return {
            "preexec_fn": self._limits(timeout),
            "start_new_session": True,
            "env": {"PATH": "/usr/local/bin:/usr/bin:/bin", "LANG": "C.UTF-8", "PYTHONDONTWRITEBYTECODE": "1"},
            "cwd": self.workdir,
        }

    async def terminate(self, proc: asyncio.subprocess.Process, run_id: str) -> None:
        if proc.returncode is not None:
            return
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            return
        await proc.wait()


# --------------------------------------------------------------------------- #
# Sandbox
# --------------------------------------------------------------------------- #
class Sandbox:
    """Runs snippets through a runner; one instance is safe to share between requests."""

    def __init__(
        self,
        settings: Optional[SandboxSettings] = None,
        runner: Optional[SandboxRunner] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.settings = settings or SandboxSettings()
        self.logger = logger or _logger
        self.runner = runner or self._default_runner()

    def _default_runner(self) -> SandboxRunner:
        s = self.settings
        if s.backend == "process":
            return ProcessSandboxRunner(workdir=s.scratch_dir)
        return DockerSandboxRunner(memory=s.memory, cpus=s.cpus, pids_limit=s.pids_limit, logger=self.logger)

    @property
    def languages(self) -> Sequence[str]:
        return tuple(LANGUAGES)

    def _clamp_timeout(self, timeout_seconds: Optional[float]) -> int:
        if timeout_seconds is None:
            return self.settings.default_timeout
        try:
            value = int(timeout_seconds)
        except (TypeError, ValueError):
            return self.settings.default_timeout
        return max(1, min(value, self.settings.max_timeout))

    def _decode(self, data: bytes) -> str:
        cap = self.settings.max_output_bytes
        text = data[:cap].decode("utf-8", errors="replace").strip()
        if len(data) > cap:
            text += "\n... [output truncated]"
        return text

    async def run(
        self,
        code: str,
        language: str = "python",
        timeout_seconds: Optional[float] = None,
    ) -> SandboxResult:
        """Execute *code*; see the module docstring for the failure model."""
        lang = (language or "python").strip().lower()
        spec = LANGUAGES.get(lang)
        if spec is None:
            raise UnsupportedLanguageError(
                f"Unsupported language '{language}'. Supported: {', '.join(LANGUAGES)}"
            )

        rejection = check_code(code)
        if rejection:
            self.logger.info("Sandbox rejected %s snippet: %s", lang, rejection)
            return SandboxResult(False, None, rejection, 0, lang)

        timeout = self._clamp_timeout(timeout_seconds)
        run_id = secrets.token_hex(8)
        scratch = Path(self.settings.scratch_dir)
        scratch.mkdir(parents=True, exist_ok=True)
        path = scratch / f"snippet_{run_id}.{spec.extension}"

        start = time.monotonic()
        try:
            path.write_text(spec.render(code), encoding="utf-8")
            path.chmod(0o644)
            try:
                stdout, stderr, returncode = await self._execute(spec, path, run_id, timeout)
            except SandboxTimeoutError as exc:
                return SandboxResult(False, None, str(exc), self._elapsed(start), lang)
            except OSError as exc:
                self.logger.error("Sandbox could not start %s: %s", lang, exc)
                return SandboxResult(False, None, f"Could not start the {lang} runtime: {exc}", self._elapsed(start), lang)
        finally:
            path.unlink(missing_ok=True)

        elapsed = self._elapsed(start)
        out, err = self._decode(stdout), self._decode(stderr)
        if returncode == 0:
            return SandboxResult(True, out or "(no output)", None, elapsed, lang)
        return SandboxResult(
            False, out or None, err or f"Process exited with code {returncode}", elapsed, lang
        )

    async def _execute(
        self, spec: LanguageSpec, path: Path, run_id: str, timeout: int
    ) -> tuple[bytes, bytes, int]:
        argv = self.runner.argv(spec, path, run_id)
        self.logger.debug("Sandbox exec %s (timeout=%ss)", argv[0], timeout)
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            **self.runner.spawn_kwargs(timeout),
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await self.runner.terminate(proc, run_id)
            raise SandboxTimeoutError(
                f"Execution exceeded the {timeout} second time limit and was stopped."
            ) from None
        except asyncio.CancelledError:
            await self.runner.terminate(proc, run_id)
            raise
        return stdout, stderr, proc.returncode if proc.returncode is not None else -1

    @staticmethod
    def _elapsed(start: float) -> int:
        return int((time.monotonic() - start) * 1000)
