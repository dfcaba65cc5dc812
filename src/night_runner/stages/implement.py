"""Implement stage: let the agent commit on the issue branch and open a PR."""

from __future__ import annotations

import structlog

from night_runner.agents.prompts import implement_context
from night_runner.agents.types import Capability
from night_runner.logging_utils import log_key_event
from night_runner.orchestration.state import Decision, IssueSnapshot
from night_runner.workspaces.progress import ProgressNote

from .base import StageHandler, StageResult

logger = structlog.get_logger(__name__)


def wip_commit_message(issue_number: int) -> str:
    return f"wip: continue work on #{issue_number} [night-runner]"


def format_pr_body(issue_number: int, commit_log: str, pr_marker: str) -> str:
    return (
        "## Summary\n"
        f"Fixes #{issue_number}\n\n"
        "## Changes\n"
        f"{commit_log or '(see commits)'}\n\n"
        "---\n"
        "🤖 Generated via Night Runner\n\n"
        f"{pr_marker}"
    )


class ImplementStage(StageHandler):
    """Runs the agent in the issue workspace; opens a draft PR if it produced commits.

    The workspace is kept afterwards so the UpdatePR stage can reattach to it.
    """

    name = "implement"

    async def execute(self, decision: Decision, snapshot: IssueSnapshot) -> StageResult:
        issue = decision.issue
        settings = self.ctx.settings
        git = self.ctx.git_ops

        worktree = await git.provision(issue.number)
        branch = git.get_branch_name(issue.number)

        note = ProgressNote(worktree, settings.progress_filename)
        note.refresh(issue.number)

        result = await self.ctx.invoker.invoke(
            worktree,
            Capability.IMPLEMENT,
            str(issue.number),
            context=implement_context(
                issue,
                self.ctx.issue_queue.issue_url(issue.number),
                settings.progress_filename,
            ),
        )
        note.record_attempt(result.ok)

        # Keep whatever the agent left uncommitted, even after a timeout.
        git.commit_all(
            worktree,
            wip_commit_message(issue.number),
            ignore=(settings.progress_filename,),
        )

        ahead = git.commits_ahead(worktree)
        if ahead == 0:
            logger.warning("implementation_empty", repo=self.ctx.repo, issue=issue.number)
            await git.decommission(worktree)
            return self.fail("no commits produced", agent_status=result.status.value)

        if not git.push_branch(worktree, branch):
            logger.warning("push_failed_continuing", repo=self.ctx.repo, branch=branch)

        pr = await self.ctx.issue_queue.create_pull_request(
            title=f"fix: {issue.title}",
            body=format_pr_body(issue.number, git.commit_log(worktree), settings.pr_marker),
            head=branch,
            base=settings.base_branch,
            draft=True,
        )
        pr_number = pr.get("number")
        log_key_event(
            logger,
            "🚀 Draft PR opened",
            repo=self.ctx.repo,
            issue=issue.number,
            pr_number=pr_number,
            commits=ahead,
        )
        return StageResult(
            stage=self.name,
            ok=True,
            message="draft PR opened",
            pr_number=pr_number,
            details={"commits": ahead, "agent_status": result.status.value},
        )
