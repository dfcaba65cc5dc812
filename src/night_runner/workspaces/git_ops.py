"""Git worktree management for per-issue workspaces."""

import re
import shutil
import subprocess
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)


class WorkspaceError(RuntimeError):
    """Raised when a workspace cannot be provisioned."""


class GitOps:
    """Manages branch-scoped git worktrees for one repository.

    The main clone at ``repo_path`` stays on its own branch; each issue gets a
    worktree at ``<worktree_base>/<repo-short-name>-<issue>`` on branch
    ``<namespace>/<issue>``.
    """

    def __init__(
        self,
        repo_path: Path,
        worktree_base: Path,
        repo_short_name: str,
        namespace: str = "night-runner",
        base_branch: str = "main",
        timeout: int = 300,
    ):
        """Initialize git operations.

        Args:
            repo_path: Local clone of the repository
            worktree_base: Directory holding all worktrees
            repo_short_name: Repository name without owner
            namespace: Branch prefix
            base_branch: Remote default branch new work starts from
            timeout: Seconds allowed for any single git command
        """
        self.repo_path = Path(repo_path)
        self.worktree_base = Path(worktree_base)
        self.worktree_base.mkdir(parents=True, exist_ok=True)
        self.repo_short_name = repo_short_name
        self.namespace = namespace
        self.base_branch = base_branch
        self.timeout = timeout

    def get_worktree_path(self, issue_number: int) -> Path:
        """Get the worktree path for an issue."""
        return self.worktree_base / f"{self.repo_short_name}-{issue_number}"

    def get_branch_name(self, issue_number: int) -> str:
        """Get the branch name for an issue.

        Returns:
            Branch name in format <namespace>/<issue#>
        """
        return f"{self.namespace}/{issue_number}"

    def list_workspaces(self) -> list[tuple[int, Path]]:
        """Return (issue_number, path) for every worktree of this repository."""
        if not self.worktree_base.exists():
            return []
        pattern = re.compile(rf"^{re.escape(self.repo_short_name)}-(\d+)$")
        found = []
        for entry in self.worktree_base.iterdir():
            match = pattern.match(entry.name)
            if entry.is_dir() and match:
                found.append((int(match.group(1)), entry))
        return sorted(found)

    async def provision(self, issue_number: int) -> Path:
        """Create (or re-create) the worktree for an issue.

        Reattaches to the issue branch when it already exists on the remote
        or locally, so work accumulates across runs. Otherwise starts a new
        branch from the remote base branch.

        Raises:
            WorkspaceError: if any git step fails
        """
        worktree = self.get_worktree_path(issue_number)
        branch = self.get_branch_name(issue_number)

        # git worktree cannot reuse an existing path, even for the same branch
        if worktree.exists():
            await self.decommission(worktree)

        try:
            self._git("fetch", "origin")

            if self.remote_branch_exists(branch):
                attached = self._git("worktree", "add", str(worktree), branch, check=False)
                if attached.returncode != 0:
                    self._git("worktree", "add", str(worktree), "-b", branch, f"origin/{branch}")
                else:
                    self._catch_up_with_remote(worktree, branch)
                logger.info("workspace_continuing_remote_branch", branch=branch)
            elif self.local_branch_exists(branch):
                self._git("worktree", "add", str(worktree), branch)
                logger.info("workspace_continuing_local_branch", branch=branch)
            else:
                self._git(
                    "worktree",
                    "add",
                    "-b",
                    branch,
                    str(worktree),
                    f"origin/{self.base_branch}",
                )
                logger.info("workspace_branch_created", branch=branch, base=self.base_branch)
        except subprocess.CalledProcessError as e:
            logger.error(
                "workspace_provision_failed",
                issue=issue_number,
                returncode=e.returncode,
                stderr=_decode(e.stderr),
            )
            raise WorkspaceError(f"provisioning failed for issue #{issue_number}") from e
        except subprocess.TimeoutExpired as e:
            logger.error("workspace_provision_timeout", issue=issue_number, cmd=str(e.cmd))
            raise WorkspaceError(f"provisioning timed out for issue #{issue_number}") from e

        return worktree

    async def decommission(self, worktree_path: Path) -> None:
        """Force-remove a worktree. The branch is kept for later runs."""
        logger.info("removing_worktree", worktree=str(worktree_path))
        result = self._git("worktree", "remove", "--force", str(worktree_path), check=False)
        if result.returncode != 0 and worktree_path.exists():
            # Not a registered worktree (or a broken one): drop the directory.
            logger.warning(
                "worktree_remove_failed",
                worktree=str(worktree_path),
                stderr=_decode(result.stderr),
            )
            shutil.rmtree(worktree_path, ignore_errors=True)
            self._git("worktree", "prune", check=False)
        logger.info("worktree_removed", worktree=str(worktree_path))

    def _catch_up_with_remote(self, worktree_path: Path, branch: str) -> None:
        """Fast-forward a reattached local branch that is behind its remote.

        A local branch that is ahead (unpushed work) is left as is. One that
        has diverged is kept and logged; its next push will be rejected.
        """
        result = self._git("merge", "--ff-only", f"origin/{branch}", cwd=worktree_path, check=False)
        if result.returncode != 0:
            logger.warning(
                "workspace_branch_diverged",
                branch=branch,
                stderr=_decode(result.stderr),
            )

    def remote_branch_exists(self, branch: str) -> bool:
        result = self._git("ls-remote", "--heads", "origin", branch)
        return f"refs/heads/{branch}" in _decode(result.stdout)

    def local_branch_exists(self, branch: str) -> bool:
        result = self._git("show-ref", "--verify", "--quiet", f"refs/heads/{branch}", check=False)
        return result.returncode == 0

    def changed_paths(self, worktree_path: Path) -> list[str]:
        """Paths with staged, unstaged or untracked changes."""
        result = self._git("status", "--porcelain", cwd=worktree_path, check=False)
        paths = []
        for line in _decode(result.stdout).splitlines():
            if len(line) < 4:
                continue
            path = line[3:].split(" -> ")[-1].strip().strip('"')
            paths.append(path)
        return paths

    def has_uncommitted_changes(
        self,
        worktree_path: Path,
        ignore: tuple[str, ...] = (),
    ) -> bool:
        """Whether anything besides the ``ignore`` paths has changed."""
        return any(path not in ignore for path in self.changed_paths(worktree_path))

    def commit_all(
        self,
        worktree_path: Path,
        message: str,
        ignore: tuple[str, ...] = (),
    ) -> bool:
        """Stage and commit everything.

        Nothing is committed when the only changes are to ``ignore`` paths.
        Returns False when nothing was committed.
        """
        if not self.has_uncommitted_changes(worktree_path, ignore=ignore):
            return False
        self._git("add", "-A", cwd=worktree_path, check=False)
        result = self._git("commit", "-m", message, cwd=worktree_path, check=False)
        if result.returncode != 0:
            logger.warning(
                "commit_failed",
                worktree=str(worktree_path),
                stderr=_decode(result.stderr),
            )
            return False
        logger.info("changes_committed", worktree=str(worktree_path), message=message)
        return True

    def commits_ahead(self, worktree_path: Path) -> int:
        """Number of commits on HEAD that are not on the remote base branch."""
        result = self._git(
            "rev-list",
            "--count",
            f"origin/{self.base_branch}..HEAD",
            cwd=worktree_path,
            check=False,
        )
        if result.returncode != 0:
            return 0
        try:
            return int(_decode(result.stdout).strip() or "0")
        except ValueError:
            return 0

    def commit_log(self, worktree_path: Path) -> str:
        """One-line log of commits ahead of the remote base branch."""
        result = self._git(
            "log",
            "--oneline",
            f"origin/{self.base_branch}..HEAD",
            cwd=worktree_path,
            check=False,
        )
        return _decode(result.stdout).strip()

    def push_branch(self, worktree_path: Path, branch: str) -> bool:
        """Push the branch to origin, setting upstream. Returns success."""
        logger.info("pushing_branch", branch=branch, worktree=str(worktree_path))
        try:
            result = self._git("push", "-u", "origin", branch, cwd=worktree_path, check=False)
        except subprocess.TimeoutExpired:
            logger.error("push_timeout", branch=branch)
            return False
        if result.returncode != 0:
            logger.error("push_failed", branch=branch, stderr=_decode(result.stderr))
            return False
        logger.info("branch_pushed", branch=branch)
        return True

    def _git(
        self,
        *args: str,
        cwd: Path | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        return subprocess.run(
            ["git", "-C", str(cwd or self.repo_path), *args],
            check=check,
            capture_output=True,
            timeout=self.timeout,
        )


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data
