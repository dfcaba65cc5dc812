"""Lifecycle state derivation.

An issue's lifecycle state is never stored. It is recomputed every run from
an ``IssueSnapshot`` (the issue's comments plus its linked pull request), so
everything in this module is a pure function of that snapshot.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from night_runner.config.settings import Settings
from night_runner.github.issue_queue import Comment, Issue, PullRequest

DEFAULT_PLAN_MARKER = "<!-- NIGHT_RUNNER_PLAN -->"
DEFAULT_APPROVAL_TOKEN = "LGTM"


class LifecycleState(str, Enum):
    """Where an issue sits in the plan -> approve -> implement -> review loop."""

    NO_PLAN = "NoPlan"
    PLAN_POSTED = "PlanPosted"
    PLAN_NEEDS_REVISION = "PlanNeedsRevision"
    APPROVED = "Approved"
    PR_CLEAN = "PRExists_Clean"
    PR_NEEDS_UPDATE = "PRExists_NeedsUpdate"
    PR_MERGED = "PRMerged"


class Stage(str, Enum):
    """The stage handler to run for an issue this time around."""

    PLAN = "plan"
    IMPLEMENT = "implement"
    UPDATE_PR = "update_pr"
    NONE = "none"


@dataclass(frozen=True)
class Markers:
    """Tokens that give comments their lifecycle meaning."""

    plan_marker: str = DEFAULT_PLAN_MARKER
    approval_token: str = DEFAULT_APPROVAL_TOKEN
    review_watermark: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "Markers":
        return cls(
            plan_marker=settings.plan_marker,
            approval_token=settings.approval_token,
            review_watermark=settings.review_watermark,
        )


@dataclass
class IssueSnapshot:
    """Everything state detection needs to know about one issue."""

    issue_number: int
    comments: list[Comment] = field(default_factory=list)
    pull_request: PullRequest | None = None


@dataclass
class Decision:
    """One dispatch decision: the derived state and the stage to run."""

    repo: str
    issue: Issue
    state: LifecycleState
    stage: Stage
    reason: str
    pr_number: int | None = None

    @property
    def actionable(self) -> bool:
        return self.stage != Stage.NONE

    def to_dict(self) -> dict[str, Any]:
        """Convert decision to dictionary for logging."""
        return {
            "repo": self.repo,
            "issue": self.issue.number,
            "state": self.state.value,
            "stage": self.stage.value,
            "reason": self.reason,
            "pr_number": self.pr_number,
        }


def is_plan_comment(comment: Comment, markers: Markers) -> bool:
    return markers.plan_marker in comment.body


def is_approval(comment: Comment, markers: Markers) -> bool:
    """An approval is a non-plan comment whose whole body is the token."""
    if is_plan_comment(comment, markers):
        return False
    return comment.body.strip().lower() == markers.approval_token.strip().lower()


def has_plan(snapshot: IssueSnapshot, markers: Markers) -> bool:
    return any(is_plan_comment(c, markers) for c in snapshot.comments)


def latest_plan_timestamp(snapshot: IssueSnapshot, markers: Markers) -> datetime | None:
    """Creation time of the most recent plan comment, if any."""
    stamps = [c.created_at for c in snapshot.comments if is_plan_comment(c, markers)]
    return max(stamps) if stamps else None


def has_approval(snapshot: IssueSnapshot, markers: Markers) -> bool:
    return any(is_approval(c, markers) for c in snapshot.comments)


def has_unaddressed_plan_feedback(snapshot: IssueSnapshot, markers: Markers) -> bool:
    """True if someone commented on the latest plan with anything but approval."""
    latest = latest_plan_timestamp(snapshot, markers)
    if latest is None:
        return False
    return any(
        c.created_at > latest
        and not is_plan_comment(c, markers)
        and not is_approval(c, markers)
        for c in snapshot.comments
    )


def plan_feedback(snapshot: IssueSnapshot, markers: Markers) -> list[Comment]:
    """The comments counted by has_unaddressed_plan_feedback, oldest first."""
    latest = latest_plan_timestamp(snapshot, markers)
    if latest is None:
        return []
    feedback = [
        c
        for c in snapshot.comments
        if c.created_at > latest
        and not is_plan_comment(c, markers)
        and not is_approval(c, markers)
    ]
    return sorted(feedback, key=lambda c: c.created_at)


def has_linked_pr(snapshot: IssueSnapshot) -> bool:
    return snapshot.pull_request is not None


def pr_is_merged(snapshot: IssueSnapshot) -> bool:
    return snapshot.pull_request is not None and snapshot.pull_request.merged


def pr_has_new_review_comments(snapshot: IssueSnapshot, markers: Markers) -> bool:
    """Whether the linked PR has review feedback to act on.

    With the review watermark enabled only comments newer than the PR head
    commit count, so feedback already answered by a push is not re-addressed.
    Without it any review comment counts.
    """
    pr = snapshot.pull_request
    if pr is None:
        return False
    if markers.review_watermark and pr.new_review_comment_count is not None:
        return pr.new_review_comment_count > 0
    return pr.review_comment_count > 0


def derive_state(snapshot: IssueSnapshot, markers: Markers) -> LifecycleState:
    """Derive the lifecycle state, highest-priority signal first."""
    if has_linked_pr(snapshot):
        if pr_is_merged(snapshot):
            return LifecycleState.PR_MERGED
        if pr_has_new_review_comments(snapshot, markers):
            return LifecycleState.PR_NEEDS_UPDATE
        return LifecycleState.PR_CLEAN
    if has_approval(snapshot, markers):
        return LifecycleState.APPROVED
    if has_plan(snapshot, markers):
        if has_unaddressed_plan_feedback(snapshot, markers):
            return LifecycleState.PLAN_NEEDS_REVISION
        return LifecycleState.PLAN_POSTED
    return LifecycleState.NO_PLAN


_STAGE_FOR_STATE = {
    LifecycleState.NO_PLAN: (Stage.PLAN, "No plan - create plan"),
    LifecycleState.PLAN_POSTED: (Stage.NONE, "Plan exists - waiting for approval"),
    LifecycleState.PLAN_NEEDS_REVISION: (Stage.PLAN, "Plan has feedback - update plan"),
    LifecycleState.APPROVED: (Stage.IMPLEMENT, "Approved - implement and create PR"),
    LifecycleState.PR_CLEAN: (Stage.NONE, "PR exists, no new comments"),
    LifecycleState.PR_NEEDS_UPDATE: (Stage.UPDATE_PR, "PR has review comments - update PR"),
    LifecycleState.PR_MERGED: (Stage.NONE, "PR merged - nothing to do"),
}


def decide(
    repo: str,
    issue: Issue,
    snapshot: IssueSnapshot,
    markers: Markers,
) -> Decision:
    """Pick the one stage to run for an issue."""
    state = derive_state(snapshot, markers)
    stage, reason = _STAGE_FOR_STATE[state]
    pr = snapshot.pull_request
    return Decision(
        repo=repo,
        issue=issue,
        state=state,
        stage=stage,
        reason=reason,
        pr_number=pr.number if pr else None,
    )
