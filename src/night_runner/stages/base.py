"""Shared stage handler plumbing."""

from __future__ import annotations

import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from night_runner.agents.invoker import AgentInvoker
from night_runner.config.settings import RepoTarget, Settings
from night_runner.github.issue_queue import IssueQueue
from night_runner.logging_utils import log_stage_outcome
from night_runner.orchestration.state import Decision, IssueSnapshot, Markers
from night_runner.workspaces.git_ops import GitOps, WorkspaceError

logger = structlog.get_logger(__name__)


@dataclass
class StageResult:
    """Outcome of one stage handler run."""

    stage: str
    ok: bool
    message: str = ""
    pr_number: int | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class StageContext:
    """Collaborators a stage handler works through, for one repository."""

    settings: Settings
    target: RepoTarget
    issue_queue: IssueQueue
    git_ops: GitOps
    invoker: AgentInvoker

    @property
    def repo(self) -> str:
        return self.target.slug

    @property
    def markers(self) -> Markers:
        return Markers.from_settings(self.settings)


class StageHandler(ABC):
    """A side-effecting step of the issue lifecycle.

    ``run`` never raises for tracker, git or agent failures: they become a
    failed ``StageResult`` and the dispatcher moves on to the next issue.
    """

    name: str = ""

    def __init__(self, ctx: StageContext):
        self.ctx = ctx

    async def run(self, decision: Decision, snapshot: IssueSnapshot) -> StageResult:
        issue_number = decision.issue.number
        try:
            result = await self.execute(decision, snapshot)
        except (httpx.HTTPError, WorkspaceError, subprocess.SubprocessError, OSError) as e:
            logger.error(
                "stage_error",
                stage=self.name,
                repo=self.ctx.repo,
                issue=issue_number,
                error=str(e),
                error_type=type(e).__name__,
            )
            result = StageResult(stage=self.name, ok=False, message=str(e))
        log_stage_outcome(
            logger,
            self.ctx.repo,
            issue_number,
            self.name,
            result.ok,
            message=result.message,
            pr_number=result.pr_number,
        )
        return result

    @abstractmethod
    async def execute(self, decision: Decision, snapshot: IssueSnapshot) -> StageResult:
        """Perform the stage. May raise; ``run`` converts errors to results."""

    def fail(self, message: str, **details: Any) -> StageResult:
        return StageResult(stage=self.name, ok=False, message=message, details=details)
