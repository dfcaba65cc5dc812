"""Plan stage: ask the agent for an implementation plan and post it."""

from __future__ import annotations

import httpx
import structlog

from night_runner.agents.prompts import plan_context
from night_runner.agents.types import Capability
from night_runner.logging_utils import log_key_event
from night_runner.orchestration.state import Decision, IssueSnapshot, plan_feedback

from .base import StageHandler, StageResult

logger = structlog.get_logger(__name__)

PLAN_HEADER = "## 🤖 Night Runner - Implementation Plan"


def strip_preamble(output: str) -> str:
    """Drop agent chatter before the first markdown heading line."""
    lines = output.splitlines()
    for index, line in enumerate(lines):
        if line.startswith("##"):
            return "\n".join(lines[index:]).strip()
    return ""


def format_plan_comment(
    issue_number: int,
    title: str,
    plan: str,
    approval_token: str,
    plan_marker: str,
) -> str:
    return (
        f"{PLAN_HEADER}\n\n"
        f"**Issue #{issue_number}:** {title}\n\n"
        "---\n\n"
        f"{plan}\n\n"
        "---\n"
        f"*Reply with `{approval_token}` to approve this plan and create a PR.*\n\n"
        "🤖 *Automated by Night Runner*\n\n"
        f"{plan_marker}"
    )


class PlanStage(StageHandler):
    """Posts a first plan, or a revised one when the last plan drew feedback."""

    name = "plan"

    async def execute(self, decision: Decision, snapshot: IssueSnapshot) -> StageResult:
        issue = decision.issue
        queue = self.ctx.issue_queue
        markers = self.ctx.markers

        try:
            await queue.add_reaction(issue.number, "eyes")
        except httpx.HTTPError as e:
            logger.debug("reaction_failed", issue=issue.number, error=str(e))

        feedback = plan_feedback(snapshot, markers)
        logger.info(
            "plan_requested",
            repo=self.ctx.repo,
            issue=issue.number,
            revision=bool(feedback),
            feedback_comments=len(feedback),
        )
        result = await self.ctx.invoker.invoke(
            self.ctx.target.path,
            Capability.PLAN,
            str(issue.number),
            context=plan_context(issue, queue.issue_url(issue.number), feedback),
        )
        if not result.ok:
            return self.fail(f"agent {result.status.value}: {result.error}")

        plan = strip_preamble(result.output)
        if not plan:
            return self.fail("agent produced no plan")

        body = format_plan_comment(
            issue.number,
            issue.title,
            plan,
            markers.approval_token,
            markers.plan_marker,
        )
        await queue.post_comment(issue.number, body)
        log_key_event(logger, "📝 Plan posted", repo=self.ctx.repo, issue=issue.number)
        return StageResult(stage=self.name, ok=True, message="plan posted")
