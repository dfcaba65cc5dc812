"""GitHub issue, comment and pull request operations via REST API."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from .api_client import GitHubAPIClient

logger = structlog.get_logger(__name__)

CLOSING_KEYWORDS = (
    "close",
    "closes",
    "closed",
    "fix",
    "fixes",
    "fixed",
    "resolve",
    "resolves",
    "resolved",
)


def parse_timestamp(value: str) -> datetime:
    """Parse a GitHub ISO-8601 timestamp into an aware datetime."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def references_issue(text: str | None, issue_number: int) -> bool:
    """Check whether ``text`` carries a closing reference such as "Fixes #12"."""
    if not text:
        return False
    keywords = "|".join(CLOSING_KEYWORDS)
    pattern = rf"\b(?:{keywords}):?\s+#{issue_number}(?!\d)"
    return re.search(pattern, text, flags=re.IGNORECASE) is not None


@dataclass
class Issue:
    """Represents a GitHub issue."""

    number: int
    title: str
    body: str
    labels: list[str]
    state: str
    html_url: str
    repo: str | None = None


@dataclass
class Comment:
    """A single issue comment or PR review comment."""

    id: int
    body: str
    author: str
    created_at: datetime


@dataclass
class PullRequest:
    """The fields of a pull request the runner consumes."""

    number: int
    merged: bool
    state: str
    html_url: str
    head_ref: str = ""
    head_sha: str = ""
    review_comment_count: int = 0
    # Review comments newer than the head commit; None when not computed.
    new_review_comment_count: int | None = None
    review_comments: list[Comment] = field(default_factory=list)


class IssueQueue:
    """Issue tracker operations for a single repository."""

    def __init__(self, api_client: GitHubAPIClient, repo: str):
        """Initialize the issue queue.

        Args:
            api_client: GitHub API client instance
            repo: Repository slug ("owner/name")
        """
        self.api_client = api_client
        self.repo = repo

    async def list_open_issues(
        self,
        limit: int = 100,
        exclude_label: str | None = None,
        max_issues: int | None = None,
    ) -> list[Issue]:
        """List open issues in tracker order.

        Args:
            limit: How many open issues (pull requests excluded) to fetch
            exclude_label: Issues carrying this label are dropped
            max_issues: Cap applied after filtering (0 or None = no cap)

        Returns:
            Filtered, capped list of issues (pull requests excluded)
        """
        logger.info("listing_open_issues", repo=self.repo, limit=limit)
        items = await self.api_client.rest_get_all(
            f"/repos/{self.repo}/issues",
            params={"state": "open"},
            limit=limit,
            keep=lambda item: "pull_request" not in item,
        )
        issues = [self._parse_issue(item) for item in items]
        if exclude_label:
            issues = [issue for issue in issues if exclude_label not in issue.labels]
        if max_issues and max_issues > 0:
            issues = issues[:max_issues]
        logger.info("issues_listed", repo=self.repo, count=len(issues))
        return issues

    async def get_issue(self, issue_number: int) -> Issue:
        """Get a single issue by number."""
        logger.info("getting_issue", repo=self.repo, issue=issue_number)
        result = await self.api_client.rest_get(f"/repos/{self.repo}/issues/{issue_number}")
        return self._parse_issue(result)

    async def list_comments(self, issue_number: int) -> list[Comment]:
        """List every comment on an issue, oldest first."""
        items = await self.api_client.rest_get_all(
            f"/repos/{self.repo}/issues/{issue_number}/comments"
        )
        return [self._parse_comment(item) for item in items]

    async def post_comment(self, issue_number: int, body: str) -> dict[str, Any]:
        """Post a comment on an issue.

        Args:
            issue_number: Issue number
            body: Comment body

        Returns:
            Comment data
        """
        logger.info("posting_comment", repo=self.repo, issue=issue_number, body_length=len(body))
        result = await self.api_client.rest_post(
            f"/repos/{self.repo}/issues/{issue_number}/comments",
            json={"body": body},
        )
        logger.info("comment_posted", repo=self.repo, issue=issue_number)
        return result

    async def add_reaction(self, issue_number: int, content: str = "eyes") -> None:
        """React to an issue (e.g. 👀 to show it is being worked on)."""
        await self.api_client.rest_post(
            f"/repos/{self.repo}/issues/{issue_number}/reactions",
            json={"content": content},
        )
        logger.debug("reaction_added", repo=self.repo, issue=issue_number, content=content)

    async def find_linked_pull_request(self, issue_number: int) -> int | None:
        """Find the PR whose body references "fixes #<issue_number>".

        The search index is fuzzy, so each hit is re-checked for an explicit
        closing reference. PRs closed without merging are skipped; open and
        merged ones count. The first confirmed match wins.
        """
        result = await self.api_client.rest_get(
            "/search/issues",
            params={
                "q": f'repo:{self.repo} is:pr "fixes #{issue_number}"',
                "sort": "created",
                "order": "desc",
            },
        )
        for item in result.get("items", []):
            if not references_issue(item.get("body"), issue_number):
                continue
            if _closed_unmerged(item):
                logger.debug("closed_pr_ignored", repo=self.repo, pr_number=item.get("number"))
                continue
            return int(item["number"])
        return None

    async def get_pull_request(
        self,
        pr_number: int,
        with_review_comments: bool = True,
        with_watermark: bool = True,
    ) -> PullRequest:
        """Get a pull request with its review comment activity.

        Args:
            pr_number: Pull request number
            with_review_comments: Also fetch the line review comments
            with_watermark: Count review comments newer than the head commit

        Returns:
            PullRequest
        """
        item = await self.api_client.rest_get(f"/repos/{self.repo}/pulls/{pr_number}")
        pr = PullRequest(
            number=int(item["number"]),
            merged=bool(item.get("merged")),
            state=item.get("state", ""),
            html_url=item.get("html_url", ""),
            head_ref=(item.get("head") or {}).get("ref", ""),
            head_sha=(item.get("head") or {}).get("sha", ""),
            review_comment_count=int(item.get("review_comments") or 0),
        )
        if not with_review_comments or pr.review_comment_count == 0:
            pr.new_review_comment_count = 0 if with_watermark else None
            return pr

        pr.review_comments = await self.list_review_comments(pr_number)
        if with_watermark and pr.head_sha:
            head_date = await self.get_commit_date(pr.head_sha)
            pr.new_review_comment_count = sum(
                1 for comment in pr.review_comments if comment.created_at > head_date
            )
        return pr

    async def list_review_comments(self, pr_number: int) -> list[Comment]:
        """List line-level review comments on a pull request."""
        items = await self.api_client.rest_get_all(
            f"/repos/{self.repo}/pulls/{pr_number}/comments"
        )
        return [self._parse_comment(item) for item in items]

    async def get_commit_date(self, sha: str) -> datetime:
        """Committer date of a commit."""
        item = await self.api_client.rest_get(f"/repos/{self.repo}/commits/{sha}")
        return parse_timestamp(item["commit"]["committer"]["date"])

    async def create_pull_request(
        self,
        title: str,
        body: str,
        head: str,
        base: str = "main",
        draft: bool = True,
    ) -> dict[str, Any]:
        """Create a pull request.

        Args:
            title: PR title
            body: PR description
            head: Head branch
            base: Base branch (default: main)
            draft: Open as a draft (default: True)

        Returns:
            PR data
        """
        logger.info("creating_pull_request", repo=self.repo, title=title, head=head, base=base)
        result = await self.api_client.rest_post(
            f"/repos/{self.repo}/pulls",
            json={
                "title": title,
                "body": body,
                "head": head,
                "base": base,
                "draft": draft,
            },
        )
        logger.info("pull_request_created", repo=self.repo, pr_number=result.get("number"))
        return result

    def issue_url(self, issue_number: int) -> str:
        return f"https://github.com/{self.repo}/issues/{issue_number}"

    def _parse_issue(self, item: dict[str, Any]) -> Issue:
        """Parse a GitHub API issue response into an Issue object."""
        return Issue(
            number=item["number"],
            title=item["title"],
            body=item.get("body") or "",
            labels=[label["name"] for label in item.get("labels", [])],
            state=item.get("state", "open"),
            html_url=item.get("html_url") or self.issue_url(item["number"]),
            repo=self.repo,
        )

    def _parse_comment(self, item: dict[str, Any]) -> Comment:
        return Comment(
            id=int(item["id"]),
            body=item.get("body") or "",
            author=(item.get("user") or {}).get("login", ""),
            created_at=parse_timestamp(item["created_at"]),
        )


def _closed_unmerged(item: dict[str, Any]) -> bool:
    """Whether a search hit is a pull request that was closed without merging."""
    merged_at = (item.get("pull_request") or {}).get("merged_at")
    return item.get("state") == "closed" and not merged_at
