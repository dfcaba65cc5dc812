"""Context payloads piped to the agent for each capability."""

from night_runner.github.issue_queue import Comment, Issue, PullRequest

UPDATE_CONTRACT = """
## Rules for this update
1. **Only make changes requested by the review feedback below** - no unrelated
   refactors, cleanups or new features
2. **Acknowledge feedback you do not act on** - say why in a PR comment instead
   of changing code for it
3. **Commit on the current branch** - never push to the base branch
"""


def _issue_header(issue: Issue, issue_url: str) -> str:
    return f"# Issue #{issue.number}: {issue.title}\n\nURL: {issue_url}\n"


def plan_context(issue: Issue, issue_url: str, feedback: list[Comment] | None = None) -> str:
    """Context for a first plan, or a revision when feedback is given."""
    parts = [_issue_header(issue, issue_url), "## Description", issue.body or "(no description)"]
    if feedback:
        parts.append("\n## Feedback on the previous plan")
        parts.append("Revise the plan to address every point below.\n")
        for comment in feedback:
            parts.append(f"**@{comment.author}:**\n{comment.body.strip()}\n")
    return "\n".join(parts)


def implement_context(issue: Issue, issue_url: str, progress_filename: str) -> str:
    return "\n".join(
        [
            _issue_header(issue, issue_url),
            "## Description",
            issue.body or "(no description)",
            "",
            f"Read `{progress_filename}` first; list finished tasks under "
            "\"Completed Tasks\" and commit as you go.",
        ]
    )


def update_context(issue: Issue, issue_url: str, pull_request: PullRequest) -> str:
    """Context for addressing review feedback on an existing pull request."""
    parts = [
        _issue_header(issue, issue_url),
        f"## Pull request #{pull_request.number}",
        f"URL: {pull_request.html_url}",
        UPDATE_CONTRACT,
        "## Review feedback",
    ]
    if not pull_request.review_comments:
        parts.append("(no review comments could be loaded; check the PR directly)")
    for comment in pull_request.review_comments:
        parts.append(f"**@{comment.author}** ({comment.created_at.isoformat()}):\n{comment.body.strip()}\n")
    return "\n".join(parts)
