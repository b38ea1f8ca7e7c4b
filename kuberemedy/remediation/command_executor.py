"""
修复命令执行器。

按顺序执行 AI 提出的修复命令，某条失败后继续执行后续命令，
每条输入命令都产出一条 ExecutionResult，顺序与输入一致。不自动重试。
dry_run=True 时只记录不执行。
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from kuberemedy.core.config import settings
from kuberemedy.core.exceptions import CommandFailedError
from .models import ExecutionReport, ExecutionResult

logger = logging.getLogger(__name__)

# command -> stdout；失败时抛异常，异常消息作为 error 记录
ShellRunner = Callable[[str], Awaitable[str]]

MAX_OUTPUT_CHARS = 4096


def normalize_command(command: str) -> str:
    """去掉 AI 常注入的转义引号：\\" → \"。"""
    return command.replace('\\"', '"').strip()


class SubprocessShellRunner:
    """通过 shell 执行单条命令，非零退出码视为失败。"""

    def __init__(self, timeout: Optional[float] = None) -> None:
        self.timeout = timeout if timeout is not None else settings.command_timeout_seconds

    async def __call__(self, command: str) -> str:
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.communicate()
            raise CommandFailedError(f"Command timed out after {self.timeout}s")

        stdout = stdout_bytes.decode(errors="replace")
        if proc.returncode != 0:
            stderr = stderr_bytes.decode(errors="replace").strip()
            raise CommandFailedError(
                stderr or f"Command exited with code {proc.returncode}",
                exit_code=proc.returncode,
            )
        return stdout


class CommandExecutor:
    """顺序执行修复命令，失败不中断。"""

    def __init__(self, runner: Optional[ShellRunner] = None, dry_run: Optional[bool] = None) -> None:
        self._runner = runner or SubprocessShellRunner()
        self.dry_run = settings.executor_dry_run if dry_run is None else dry_run

    async def execute_commands(
        self, commands: list[str], session_id: Optional[str] = None
    ) -> ExecutionReport:
        results: list[ExecutionResult] = []
        for raw in commands:
            command = normalize_command(raw)
            results.append(await self._execute_one(command, session_id))

        report = ExecutionReport(
            results=results,
            overall_success=all(r.success for r in results),
        )
        logger.info(
            "Executed %d commands for %s: %d succeeded, %d failed",
            len(results),
            session_id or "-",
            sum(1 for r in results if r.success),
            sum(1 for r in results if not r.success),
        )
        return report

    async def _execute_one(self, command: str, session_id: Optional[str]) -> ExecutionResult:
        if self.dry_run:
            logger.info("[DRY RUN] %s", command)
            return ExecutionResult(
                action=command, success=True, output=f"[DRY RUN] Would execute: {command}"
            )

        logger.debug("Executing remediation command (%s): %s", session_id or "-", command)
        try:
            output = await self._runner(command)
        except Exception as e:
            # 单条命令失败是数据，不是异常
            logger.warning("Remediation command failed: %s -- %s", command, e)
            return ExecutionResult(action=command, success=False, error=str(e) or type(e).__name__)
        return ExecutionResult(action=command, success=True, output=(output or "")[:MAX_OUTPUT_CHARS])
