"""``execute_code`` handler: forwards to the sandbox."""

from __future__ import annotations

from typing import Any

from orbit_bridge._exceptions import ToolExecutionError
from orbit_bridge.sandbox import Sandbox
from orbit_bridge.types import ToolContext

from .base import ProgressReporter


class CodeExecution:
    name = "execute_code"

    def __init__(self, sandbox: Sandbox) -> None:
        self.sandbox = sandbox

    async def __call__(
        self,
        args: dict[str, Any],
        context: ToolContext,
        report: ProgressReporter,
    ) -> dict[str, Any]:
        code = args.get("code")
        if not isinstance(code, str) or not code.strip():
            raise ToolExecutionError("execute_code needs a non-empty 'code' string")
        language = str(args.get("language") or "python")

        await report(f"Running {language} code in the sandbox")
        result = await self.sandbox.run(code, language, args.get("timeout"))
        return {
            "success": result.success,
            "language": result.language,
            "code": code,
            "output": result.output,
            "error": result.error,
            "execution_time_ms": result.execution_time_ms,
            "source": "Code Executor",
        }
