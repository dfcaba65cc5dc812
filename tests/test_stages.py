"""Tests for the Plan, Implement and UpdatePR stage handlers."""

import httpx
import pytest
from conftest import PLAN_MARKER, make_comment, make_issue

from night_runner.agents.types import AgentStatus, Capability
from night_runner.github.issue_queue import PullRequest
from night_runner.orchestration.state import IssueSnapshot, Markers, decide
from night_runner.stages import ImplementStage, PlanStage, UpdatePRStage
from night_runner.stages.plan import strip_preamble
from night_runner.workspaces.git_ops import WorkspaceError


def _decision(issue, snapshot):
    return decide("acme/widgets", issue, snapshot, Markers())


def test_strip_preamble():
    output = "Sure! Here is the plan.\n\n## Approach\n1. add toggle\n"
    assert strip_preamble(output) == "## Approach\n1. add toggle"
    assert strip_preamble("no headings at all") == ""


@pytest.mark.asyncio
async def test_plan_posts_marked_comment(stage_ctx, issue_queue, invoker):
    issue = issue_queue.add_issue(make_issue())
    invoker.output = "thinking...\n## Approach\n1. add toggle\n"
    snapshot = IssueSnapshot(issue_number=10)

    result = await PlanStage(stage_ctx).run(_decision(issue, snapshot), snapshot)

    assert result.ok
    assert issue_queue.reactions == [(10, "eyes")]
    assert invoker.calls[0]["capability"] == Capability.PLAN
    assert invoker.calls[0]["workdir"] == stage_ctx.target.path
    (number, body), = issue_queue.posted
    assert number == 10
    assert body.startswith("## 🤖 Night Runner - Implementation Plan\n\n**Issue #10:** Add dark mode")
    assert "## Approach\n1. add toggle" in body
    assert "thinking..." not in body
    assert "Reply with `LGTM`" in body
    assert body.endswith(PLAN_MARKER)


@pytest.mark.asyncio
async def test_plan_revision_passes_feedback(stage_ctx, issue_queue, invoker):
    issue = issue_queue.add_issue(make_issue())
    invoker.output = "## Approach v2\n1. add toggle\n2. add tests\n"
    snapshot = IssueSnapshot(
        issue_number=10,
        comments=[
            make_comment(f"## Approach\n{PLAN_MARKER}", 0, author="bot"),
            make_comment("please add tests", 5),
        ],
    )

    result = await PlanStage(stage_ctx).run(_decision(issue, snapshot), snapshot)

    assert result.ok
    assert "please add tests" in invoker.calls[0]["context"]
    assert len(issue_queue.posted) == 1


@pytest.mark.asyncio
async def test_plan_fails_on_empty_output(stage_ctx, issue_queue, invoker):
    issue = issue_queue.add_issue(make_issue())
    invoker.output = "I could not come up with anything."
    snapshot = IssueSnapshot(issue_number=10)

    result = await PlanStage(stage_ctx).run(_decision(issue, snapshot), snapshot)

    assert not result.ok
    assert issue_queue.posted == []


@pytest.mark.asyncio
async def test_plan_ignores_reaction_failure(stage_ctx, issue_queue, invoker):
    issue = issue_queue.add_issue(make_issue())
    invoker.output = "## Approach\n1. x"

    async def broken_reaction(issue_number, content="eyes"):
        raise httpx.ConnectError("offline")

    issue_queue.add_reaction = broken_reaction
    snapshot = IssueSnapshot(issue_number=10)
    result = await PlanStage(stage_ctx).run(_decision(issue, snapshot), snapshot)
    assert result.ok


@pytest.mark.asyncio
async def test_implement_with_no_commits_does_not_push(stage_ctx, issue_queue, git_ops, invoker):
    issue = issue_queue.add_issue(make_issue())
    git_ops.ahead = 0
    snapshot = IssueSnapshot(issue_number=10, comments=[make_comment("LGTM", 5)])

    result = await ImplementStage(stage_ctx).run(_decision(issue, snapshot), snapshot)

    assert not result.ok
    assert git_ops.pushed == []
    assert issue_queue.created_prs == []
    assert git_ops.decommissioned == [git_ops.get_worktree_path(10)]


@pytest.mark.asyncio
async def test_implement_opens_draft_pr(stage_ctx, issue_queue, git_ops, invoker):
    issue = issue_queue.add_issue(make_issue())
    git_ops.ahead = 2
    snapshot = IssueSnapshot(issue_number=10, comments=[make_comment("LGTM", 5)])

    result = await ImplementStage(stage_ctx).run(_decision(issue, snapshot), snapshot)

    assert result.ok
    assert result.pr_number == 500
    assert git_ops.commits == ["wip: continue work on #10 [night-runner]"]
    assert git_ops.pushed == ["night-runner/10"]
    assert git_ops.decommissioned == []
    pr = issue_queue.created_prs[0]
    assert pr["title"] == "fix: Add dark mode"
    assert pr["draft"] is True
    assert pr["head"] == "night-runner/10"
    assert "Fixes #10" in pr["body"]
    assert "abc1234 add dark mode toggle" in pr["body"]
    assert pr["body"].endswith("<!-- NIGHT_RUNNER_PR -->")

    note = git_ops.get_worktree_path(10) / "NIGHT_RUNNER_PROGRESS.md"
    assert "Progress for Issue #10" in note.read_text()
    assert "Result: ok" in note.read_text()


@pytest.mark.asyncio
async def test_implement_timeout_still_keeps_commits(stage_ctx, issue_queue, git_ops, invoker):
    issue = issue_queue.add_issue(make_issue())
    invoker.status = AgentStatus.TIMED_OUT
    git_ops.ahead = 1
    snapshot = IssueSnapshot(issue_number=10, comments=[make_comment("LGTM", 5)])

    result = await ImplementStage(stage_ctx).run(_decision(issue, snapshot), snapshot)

    assert result.ok
    assert git_ops.pushed == ["night-runner/10"]
    assert len(issue_queue.created_prs) == 1


@pytest.mark.asyncio
async def test_implement_push_failure_continues(stage_ctx, issue_queue, git_ops):
    issue = issue_queue.add_issue(make_issue())
    git_ops.ahead = 1
    git_ops.push_ok = False
    snapshot = IssueSnapshot(issue_number=10, comments=[make_comment("LGTM", 5)])

    result = await ImplementStage(stage_ctx).run(_decision(issue, snapshot), snapshot)

    assert result.ok
    assert len(issue_queue.created_prs) == 1


@pytest.mark.asyncio
async def test_provision_failure_becomes_failed_result(stage_ctx, issue_queue, git_ops):
    issue = issue_queue.add_issue(make_issue())

    async def broken_provision(issue_number):
        raise WorkspaceError("fetch failed")

    git_ops.provision = broken_provision
    snapshot = IssueSnapshot(issue_number=10, comments=[make_comment("LGTM", 5)])

    result = await ImplementStage(stage_ctx).run(_decision(issue, snapshot), snapshot)

    assert not result.ok
    assert "fetch failed" in result.message
    assert issue_queue.created_prs == []


@pytest.mark.asyncio
async def test_update_pr_addresses_review(stage_ctx, issue_queue, git_ops, invoker):
    issue = issue_queue.add_issue(make_issue())
    pr = PullRequest(
        number=77,
        merged=False,
        state="open",
        html_url="https://github.com/acme/widgets/pull/77",
        review_comment_count=1,
        new_review_comment_count=1,
        review_comments=[make_comment("rename this flag", 60, author="bob")],
    )
    snapshot = IssueSnapshot(issue_number=10, pull_request=pr)

    result = await UpdatePRStage(stage_ctx).run(_decision(issue, snapshot), snapshot)

    assert result.ok
    assert result.pr_number == 77
    call = invoker.calls[0]
    assert call["capability"] == Capability.UPDATE
    assert call["argument"] == "77"
    assert "rename this flag" in call["context"]
    assert "Only make changes requested by the review feedback" in call["context"]
    assert git_ops.commits == ["address review feedback"]
    assert git_ops.pushed == ["night-runner/10"]


def _reviewed_pr():
    return PullRequest(
        number=77,
        merged=False,
        state="open",
        html_url="https://github.com/acme/widgets/pull/77",
        review_comment_count=1,
        new_review_comment_count=1,
        review_comments=[make_comment("rename this flag", 60, author="bob")],
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [AgentStatus.FAILED, AgentStatus.TIMED_OUT])
async def test_update_pr_agent_failure_is_reported(stage_ctx, issue_queue, git_ops, invoker, status):
    issue = issue_queue.add_issue(make_issue())
    invoker.status = status
    snapshot = IssueSnapshot(issue_number=10, pull_request=_reviewed_pr())

    result = await UpdatePRStage(stage_ctx).run(_decision(issue, snapshot), snapshot)

    assert not result.ok
    assert result.message == f"agent {status.value}"
    # Partial work still reaches the branch.
    assert git_ops.pushed == ["night-runner/10"]
    assert issue_queue.posted == []


@pytest.mark.asyncio
async def test_update_pr_push_failure_is_reported(stage_ctx, issue_queue, git_ops, invoker):
    issue = issue_queue.add_issue(make_issue())
    git_ops.push_ok = False
    snapshot = IssueSnapshot(issue_number=10, pull_request=_reviewed_pr())

    result = await UpdatePRStage(stage_ctx).run(_decision(issue, snapshot), snapshot)

    assert not result.ok
    assert result.message == "push failed"
    assert result.details == {"committed": False, "pushed": False}
