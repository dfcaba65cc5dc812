"""Timeout-guarded invocation of the external coding agent CLI."""

from __future__ import annotations

import os
import shlex
import subprocess
import time
from pathlib import Path
from typing import Any

import structlog

from night_runner.config.settings import Settings, get_settings

from .types import AgentResult, AgentStatus, Capability

logger = structlog.get_logger(__name__)

# Only this much of a failed run's output goes into the log.
FAILED_OUTPUT_TAIL = 4000


class AgentInvoker:
    """Run the agent CLI once per call and report what happened.

    The command comes from the ``agent_command`` template; ``{claude_path}``
    and ``{prompt}`` are substituted per token, so the prompt always stays a
    single argument. Context is piped to the agent on stdin.
    """

    def __init__(self, repo: str, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.repo = repo

    def build_command(self, capability: Capability, argument: str) -> list[str]:
        prompt = f"/{capability.skill} {argument}".strip()
        claude_path = str(Path(self.settings.claude_path).expanduser())
        return [
            token.format(claude_path=claude_path, prompt=prompt)
            for token in shlex.split(self.settings.agent_command)
        ]

    def build_env(self) -> dict[str, str]:
        env = dict(os.environ)
        env["GH_REPO"] = self.repo
        env.update(self.settings.proxy_env())
        return env

    async def invoke(
        self,
        workdir: Path,
        capability: Capability,
        argument: str,
        context: str = "",
        timeout: int | None = None,
    ) -> AgentResult:
        """Run the agent in ``workdir``. Never raises."""
        timeout = timeout or self.settings.timeout_seconds
        command = self.build_command(capability, argument)
        logger.info(
            "agent_invoked",
            capability=capability.value,
            workdir=str(workdir),
            timeout=timeout,
        )
        started = time.monotonic()

        try:
            completed = subprocess.run(
                command,
                input=context.encode("utf-8"),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                cwd=str(workdir),
                env=self.build_env(),
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            result = AgentResult(
                status=AgentStatus.TIMED_OUT,
                output=_decode(e.output),
                duration_seconds=time.monotonic() - started,
                error=f"agent timed out after {timeout}s",
            )
        except OSError as e:
            result = AgentResult(
                status=AgentStatus.FAILED,
                output="",
                duration_seconds=time.monotonic() - started,
                error=str(e),
            )
        else:
            result = AgentResult(
                status=AgentStatus.SUCCESS if completed.returncode == 0 else AgentStatus.FAILED,
                output=_decode(completed.stdout),
                returncode=completed.returncode,
                duration_seconds=time.monotonic() - started,
                error=None if completed.returncode == 0 else f"exit code {completed.returncode}",
            )

        result.metadata.update(_summary(capability, workdir, command))
        if result.ok:
            logger.info(
                "agent_finished",
                capability=capability.value,
                duration=round(result.duration_seconds, 1),
            )
        else:
            logger.warning(
                "agent_failed",
                capability=capability.value,
                status=result.status.value,
                error=result.error,
                output=result.output[-FAILED_OUTPUT_TAIL:],
            )
        return result


def _summary(capability: Capability, workdir: Path, command: list[str]) -> dict[str, Any]:
    return {
        "capability": capability.value,
        "workdir": str(workdir),
        "command": shlex.join(command),
    }


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data
