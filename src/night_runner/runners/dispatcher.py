"""Per-repository dispatch loop: lock, probe, pick one stage, run it, unlock."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Any, AsyncIterator

import structlog

from night_runner.github.issue_queue import Issue
from night_runner.logging_utils import log_key_event
from night_runner.orchestration.prober import StateProber
from night_runner.orchestration.state import Decision, IssueSnapshot, Stage
from night_runner.stages import HANDLERS, StageContext, StageHandler, StageResult

from .locks import LockManager

logger = structlog.get_logger(__name__)


@dataclass
class DispatchItem:
    """What the dispatcher found for one issue.

    ``decision`` is None when the issue was skipped before detection
    (locked by another run, or the probe itself failed).
    """

    issue: Issue
    decision: Decision | None = None
    snapshot: IssueSnapshot | None = None
    skipped: str | None = None


class Dispatcher:
    """Walks one repository's eligible issues and runs at most one stage each."""

    def __init__(
        self,
        ctx: StageContext,
        locks: LockManager,
        dry_run: bool = False,
        handlers: dict[Stage, type[StageHandler]] | None = None,
    ):
        """Initialize the dispatcher.

        Args:
            ctx: Collaborators for this repository
            locks: Shared per-issue lock manager
            dry_run: Detect and report only; no locks, no side effects
            handlers: Stage -> handler class mapping (defaults to HANDLERS)
        """
        self.ctx = ctx
        self.locks = locks
        self.dry_run = dry_run
        self.handlers = handlers or HANDLERS
        self.prober = StateProber(ctx.issue_queue, ctx.markers)

    @property
    def repo(self) -> str:
        return self.ctx.repo

    async def cleanup_merged_workspaces(self) -> list[int]:
        """Remove workspaces whose linked PR has merged. Returns their issue numbers.

        A workspace whose issue is locked by another run is left alone.
        """
        removed: list[int] = []
        for issue_number, path in self.ctx.git_ops.list_workspaces():
            try:
                merged_pr = await self.prober.merged_pr_for(issue_number)
            except Exception as e:
                logger.warning(
                    "workspace_cleanup_probe_failed",
                    repo=self.repo,
                    issue=issue_number,
                    error=str(e),
                )
                continue
            if merged_pr is None:
                continue
            if self.dry_run:
                logger.info("workspace_would_be_removed", issue=issue_number, pr_number=merged_pr)
                removed.append(issue_number)
                continue
            # The workspace belongs to whoever holds the issue lock.
            with self.locks.hold(self.repo, issue_number) as acquired:
                if not acquired:
                    logger.info("workspace_cleanup_skipped_locked", repo=self.repo, issue=issue_number)
                    continue
                await self.ctx.git_ops.decommission(path)
            log_key_event(
                logger,
                "🧹 Workspace removed after merge",
                repo=self.repo,
                issue=issue_number,
                pr_number=merged_pr,
            )
            removed.append(issue_number)
        return removed

    async def eligible_issues(self, issue_number: int | None = None) -> list[Issue]:
        """Open issues in tracker order, filtered and capped; or one issue by number."""
        queue = self.ctx.issue_queue
        if issue_number is not None:
            return [await queue.get_issue(issue_number)]
        settings = self.ctx.settings
        return await queue.list_open_issues(
            limit=settings.issue_list_limit,
            exclude_label=settings.skip_label or None,
            max_issues=settings.max_issues,
        )

    async def iter_decisions(self, issues: list[Issue]) -> AsyncIterator[DispatchItem]:
        """Yield one ``DispatchItem`` per issue.

        In live mode the issue's lock is held while the caller handles the
        yielded item and released when iteration resumes.
        """
        for issue in issues:
            if self.dry_run:
                yield await self._probe(issue)
                continue
            with self.locks.hold(self.repo, issue.number) as acquired:
                if not acquired:
                    logger.info("issue_skipped_locked", repo=self.repo, issue=issue.number)
                    yield DispatchItem(issue=issue, skipped="locked")
                    continue
                yield await self._probe(issue)

    async def run(self, issue_number: int | None = None) -> dict[str, Any]:
        """Clean up merged workspaces, then dispatch every eligible issue."""
        logger.info("dispatch_starting", repo=self.repo, dry_run=self.dry_run, issue=issue_number)
        cleaned = await self.cleanup_merged_workspaces()
        issues = await self.eligible_issues(issue_number)

        stages: Counter[str] = Counter()
        summary: dict[str, Any] = {
            "repo": self.repo,
            "issues": len(issues),
            "cleaned": cleaned,
            "skipped_locked": 0,
            "failed": 0,
            "decisions": [],
        }
        async for item in self.iter_decisions(issues):
            if item.decision is None:
                if item.skipped == "locked":
                    summary["skipped_locked"] += 1
                else:
                    summary["failed"] += 1
                continue

            decision = item.decision
            summary["decisions"].append(decision.to_dict())
            logger.info("issue_decision", dry_run=self.dry_run, **decision.to_dict())
            if self.dry_run or not decision.actionable:
                continue

            result = await self._handle(item)
            stages[decision.stage.value] += 1
            if not result.ok:
                summary["failed"] += 1

        summary["stages"] = dict(stages)
        logger.info(
            "dispatch_complete",
            repo=self.repo,
            issues=summary["issues"],
            stages=summary["stages"],
            failed=summary["failed"],
            skipped_locked=summary["skipped_locked"],
        )
        return summary

    async def _probe(self, issue: Issue) -> DispatchItem:
        try:
            snapshot, decision = await self.prober.decide(issue)
        except Exception as e:
            logger.error("issue_probe_failed", repo=self.repo, issue=issue.number, error=str(e))
            return DispatchItem(issue=issue, skipped="probe_failed")
        return DispatchItem(issue=issue, decision=decision, snapshot=snapshot)

    async def _handle(self, item: DispatchItem) -> StageResult:
        decision = item.decision
        handler_cls = self.handlers[decision.stage]
        handler: StageHandler = handler_cls(self.ctx)
        try:
            return await handler.run(decision, item.snapshot)
        except Exception as e:
            logger.error(
                "stage_crashed",
                repo=self.repo,
                issue=decision.issue.number,
                stage=decision.stage.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return StageResult(stage=decision.stage.value, ok=False, message=str(e))
