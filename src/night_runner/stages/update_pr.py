"""UpdatePR stage: address review feedback on the issue's open PR."""

from __future__ import annotations

import structlog

from night_runner.agents.prompts import update_context
from night_runner.agents.types import Capability
from night_runner.orchestration.state import Decision, IssueSnapshot

from .base import StageHandler, StageResult

logger = structlog.get_logger(__name__)

UPDATE_COMMIT_MESSAGE = "address review feedback"


class UpdatePRStage(StageHandler):
    name = "update_pr"

    async def execute(self, decision: Decision, snapshot: IssueSnapshot) -> StageResult:
        issue = decision.issue
        pr = snapshot.pull_request
        if pr is None:
            return self.fail("no linked pull request")
        git = self.ctx.git_ops

        worktree = await git.provision(issue.number)
        branch = git.get_branch_name(issue.number)

        result = await self.ctx.invoker.invoke(
            worktree,
            Capability.UPDATE,
            str(pr.number),
            context=update_context(issue, self.ctx.issue_queue.issue_url(issue.number), pr),
        )
        committed = git.commit_all(
            worktree,
            UPDATE_COMMIT_MESSAGE,
            ignore=(self.ctx.settings.progress_filename,),
        )
        pushed = git.push_branch(worktree, branch)
        logger.info(
            "pr_update_finished",
            repo=self.ctx.repo,
            issue=issue.number,
            pr_number=pr.number,
            agent_status=result.status.value,
            committed=committed,
            pushed=pushed,
        )
        if not result.ok:
            message = f"agent {result.status.value}"
        elif not pushed:
            message = "push failed"
        else:
            message = "review feedback addressed"
        return StageResult(
            stage=self.name,
            ok=result.ok and pushed,
            message=message,
            pr_number=pr.number,
            details={"committed": committed, "pushed": pushed},
        )
