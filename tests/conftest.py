"""Shared fixtures and in-memory fakes for the tracker, git and agent."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from night_runner.agents.types import AgentResult, AgentStatus
from night_runner.config.settings import RepoTarget, Settings
from night_runner.github.issue_queue import Comment, Issue, PullRequest
from night_runner.stages.base import StageContext

PLAN_MARKER = "<!-- NIGHT_RUNNER_PLAN -->"
T0 = datetime(2025, 1, 6, 22, 0, tzinfo=UTC)


def make_comment(body: str, minutes: int = 0, author: str = "alice", comment_id: int | None = None) -> Comment:
    return Comment(
        id=comment_id if comment_id is not None else 1000 + minutes,
        body=body,
        author=author,
        created_at=T0 + timedelta(minutes=minutes),
    )


def make_issue(number: int = 10, title: str = "Add dark mode", labels: list[str] | None = None) -> Issue:
    return Issue(
        number=number,
        title=title,
        body="Users want a dark theme.",
        labels=labels or [],
        state="open",
        html_url=f"https://github.com/acme/widgets/issues/{number}",
        repo="acme/widgets",
    )


class FakeIssueQueue:
    """In-memory stand-in for IssueQueue."""

    def __init__(self, repo: str = "acme/widgets"):
        self.repo = repo
        self.issues: dict[int, Issue] = {}
        self.comments: dict[int, list[Comment]] = {}
        self.pull_requests: dict[int, PullRequest] = {}
        self.links: dict[int, int] = {}
        self.posted: list[tuple[int, str]] = []
        self.reactions: list[tuple[int, str]] = []
        self.created_prs: list[dict] = []

    def add_issue(self, issue: Issue, comments: list[Comment] | None = None) -> Issue:
        self.issues[issue.number] = issue
        self.comments[issue.number] = list(comments or [])
        return issue

    def link_pr(self, issue_number: int, pr: PullRequest) -> None:
        self.links[issue_number] = pr.number
        self.pull_requests[pr.number] = pr

    async def list_open_issues(self, limit=100, exclude_label=None, max_issues=None):
        issues = list(self.issues.values())[:limit]
        if exclude_label:
            issues = [i for i in issues if exclude_label not in i.labels]
        if max_issues:
            issues = issues[:max_issues]
        return issues

    async def get_issue(self, issue_number):
        return self.issues[issue_number]

    async def list_comments(self, issue_number):
        return list(self.comments.get(issue_number, []))

    async def post_comment(self, issue_number, body):
        self.posted.append((issue_number, body))
        return {"id": len(self.posted)}

    async def add_reaction(self, issue_number, content="eyes"):
        self.reactions.append((issue_number, content))

    async def find_linked_pull_request(self, issue_number):
        return self.links.get(issue_number)

    async def get_pull_request(self, pr_number, with_review_comments=True, with_watermark=True):
        return self.pull_requests[pr_number]

    async def create_pull_request(self, title, body, head, base="main", draft=True):
        pr = {"title": title, "body": body, "head": head, "base": base, "draft": draft, "number": 500}
        self.created_prs.append(pr)
        return pr

    def issue_url(self, issue_number):
        return f"https://github.com/{self.repo}/issues/{issue_number}"


class FakeGitOps:
    """Records workspace operations; commit counts are scripted."""

    def __init__(self, worktree_base: Path, ahead: int = 0, push_ok: bool = True):
        self.worktree_base = worktree_base
        self.ahead = ahead
        self.push_ok = push_ok
        self.provisioned: list[int] = []
        self.decommissioned: list[Path] = []
        self.commits: list[str] = []
        self.pushed: list[str] = []
        self.existing: list[tuple[int, Path]] = []

    def get_worktree_path(self, issue_number):
        return self.worktree_base / f"widgets-{issue_number}"

    def get_branch_name(self, issue_number):
        return f"night-runner/{issue_number}"

    def list_workspaces(self):
        return list(self.existing)

    async def provision(self, issue_number):
        path = self.get_worktree_path(issue_number)
        path.mkdir(parents=True, exist_ok=True)
        self.provisioned.append(issue_number)
        return path

    async def decommission(self, worktree_path):
        self.decommissioned.append(worktree_path)

    def commit_all(self, worktree_path, message, ignore=()):
        self.commits.append(message)
        return False

    def commits_ahead(self, worktree_path):
        return self.ahead

    def commit_log(self, worktree_path):
        return "abc1234 add dark mode toggle" if self.ahead else ""

    def push_branch(self, worktree_path, branch):
        self.pushed.append(branch)
        return self.push_ok


class FakeInvoker:
    """Returns a scripted AgentResult and records each call."""

    def __init__(self, output: str = "", status: AgentStatus = AgentStatus.SUCCESS):
        self.output = output
        self.status = status
        self.calls: list[dict] = []

    async def invoke(self, workdir, capability, argument, context="", timeout=None):
        self.calls.append(
            {"workdir": workdir, "capability": capability, "argument": argument, "context": context}
        )
        return AgentResult(status=self.status, output=self.output)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        repo="acme/widgets",
        repo_path=str(tmp_path / "repo"),
        repo_list="",
        github_token="test-token",
        worktree_base=str(tmp_path / "worktrees"),
        lock_dir=str(tmp_path / "locks"),
        log_dir=str(tmp_path / "logs"),
        skip_label="manual",
        max_issues=10,
        approval_token="LGTM",
        review_watermark=True,
    )


@pytest.fixture
def issue_queue():
    return FakeIssueQueue()


@pytest.fixture
def git_ops(tmp_path):
    return FakeGitOps(tmp_path / "worktrees")


@pytest.fixture
def invoker():
    return FakeInvoker()


@pytest.fixture
def stage_ctx(settings, issue_queue, git_ops, invoker, tmp_path):
    return StageContext(
        settings=settings,
        target=RepoTarget("acme/widgets", tmp_path / "repo"),
        issue_queue=issue_queue,
        git_ops=git_ops,
        invoker=invoker,
    )
