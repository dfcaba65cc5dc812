"""GitHub integration module."""

from .api_client import GitHubAPIClient
from .issue_queue import Comment, Issue, IssueQueue, PullRequest, references_issue

__all__ = [
    "Comment",
    "GitHubAPIClient",
    "Issue",
    "IssueQueue",
    "PullRequest",
    "references_issue",
]
