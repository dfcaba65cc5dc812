"""Read-only state probing against the issue tracker."""

import structlog

from night_runner.github.issue_queue import Issue, IssueQueue

from .state import Decision, IssueSnapshot, Markers, decide

logger = structlog.get_logger(__name__)


class StateProber:
    """Builds ``IssueSnapshot``s from tracker queries without mutating anything."""

    def __init__(self, issue_queue: IssueQueue, markers: Markers):
        self.issue_queue = issue_queue
        self.markers = markers

    async def snapshot(self, issue_number: int) -> IssueSnapshot:
        """Fetch the comments and linked PR for an issue."""
        comments = await self.issue_queue.list_comments(issue_number)
        comments.sort(key=lambda c: c.created_at)

        pull_request = None
        pr_number = await self.issue_queue.find_linked_pull_request(issue_number)
        if pr_number is not None:
            pull_request = await self.issue_queue.get_pull_request(
                pr_number,
                with_watermark=self.markers.review_watermark,
            )
            if pull_request.state == "closed" and not pull_request.merged:
                # An abandoned PR no longer blocks re-implementation.
                logger.info("closed_pr_ignored", repo=self.issue_queue.repo, pr_number=pr_number)
                pull_request = None
                pr_number = None

        logger.debug(
            "issue_probed",
            repo=self.issue_queue.repo,
            issue=issue_number,
            comments=len(comments),
            pr_number=pr_number,
        )
        return IssueSnapshot(
            issue_number=issue_number,
            comments=comments,
            pull_request=pull_request,
        )

    async def decide(self, issue: Issue) -> tuple[IssueSnapshot, Decision]:
        """Probe an issue and pick its next stage."""
        snapshot = await self.snapshot(issue.number)
        return snapshot, decide(self.issue_queue.repo, issue, snapshot, self.markers)

    async def merged_pr_for(self, issue_number: int) -> int | None:
        """PR number linked to the issue if that PR is merged, else None."""
        pr_number = await self.issue_queue.find_linked_pull_request(issue_number)
        if pr_number is None:
            return None
        pr = await self.issue_queue.get_pull_request(pr_number, with_review_comments=False)
        return pr.number if pr.merged else None
