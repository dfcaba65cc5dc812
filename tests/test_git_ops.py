"""Tests for git worktree operations against a throwaway local origin."""

import shutil
import subprocess

import pytest

from night_runner.workspaces.git_ops import GitOps, WorkspaceError

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def _run(*args, cwd):
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True)


@pytest.fixture
def git_identity(monkeypatch):
    for var, value in {
        "GIT_AUTHOR_NAME": "Night Runner",
        "GIT_AUTHOR_EMAIL": "runner@example.com",
        "GIT_COMMITTER_NAME": "Night Runner",
        "GIT_COMMITTER_EMAIL": "runner@example.com",
    }.items():
        monkeypatch.setenv(var, value)


@pytest.fixture
def clone(tmp_path, git_identity):
    """A clone of a bare origin whose main branch has one commit."""
    origin = tmp_path / "origin.git"
    seed = tmp_path / "seed"
    repo = tmp_path / "widgets"
    _run("init", "--bare", "-b", "main", str(origin), cwd=tmp_path)
    _run("init", "-b", "main", str(seed), cwd=tmp_path)
    (seed / "README.md").write_text("widgets\n")
    _run("add", "README.md", cwd=seed)
    _run("commit", "-m", "initial", cwd=seed)
    _run("remote", "add", "origin", str(origin), cwd=seed)
    _run("push", "origin", "main", cwd=seed)
    _run("clone", str(origin), str(repo), cwd=tmp_path)
    return repo


@pytest.fixture
def git_ops(clone, tmp_path):
    return GitOps(clone, tmp_path / "worktrees", "widgets", timeout=60)


def _current_branch(path):
    result = subprocess.run(
        ["git", "rev-parse", "--abbrev-ref", "HEAD"],
        cwd=path,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


def test_paths_and_branch_names(tmp_path):
    git_ops = GitOps(tmp_path / "repo", tmp_path / "worktrees", "widgets", namespace="nightly")
    assert git_ops.get_worktree_path(42) == tmp_path / "worktrees" / "widgets-42"
    assert git_ops.get_branch_name(42) == "nightly/42"


def test_list_workspaces_filters_by_repo(tmp_path):
    base = tmp_path / "worktrees"
    for name in ("widgets-3", "widgets-12", "gadgets-3", "widgets-notes"):
        (base / name).mkdir(parents=True)
    git_ops = GitOps(tmp_path / "repo", base, "widgets")
    assert [n for n, _ in git_ops.list_workspaces()] == [3, 12]


@pytest.mark.asyncio
async def test_provision_creates_branch_from_base(git_ops):
    path = await git_ops.provision(7)
    assert path.is_dir()
    assert (path / "README.md").exists()
    assert _current_branch(path) == "night-runner/7"
    assert git_ops.commits_ahead(path) == 0


@pytest.mark.asyncio
async def test_progress_note_alone_is_not_committed(git_ops):
    path = await git_ops.provision(7)
    (path / "NIGHT_RUNNER_PROGRESS.md").write_text("progress\n")

    assert not git_ops.has_uncommitted_changes(path, ignore=("NIGHT_RUNNER_PROGRESS.md",))
    assert not git_ops.commit_all(path, "wip", ignore=("NIGHT_RUNNER_PROGRESS.md",))
    assert git_ops.commits_ahead(path) == 0


@pytest.mark.asyncio
async def test_reattaches_to_pushed_branch(git_ops):
    path = await git_ops.provision(7)
    (path / "feature.py").write_text("print('dark mode')\n")
    assert git_ops.commit_all(path, "wip: continue work on #7 [night-runner]")
    assert git_ops.push_branch(path, "night-runner/7")

    await git_ops.decommission(path)
    assert not path.exists()

    again = await git_ops.provision(7)
    assert again == path
    assert _current_branch(again) == "night-runner/7"
    assert (again / "feature.py").exists()
    assert git_ops.commits_ahead(again) == 1
    assert "wip: continue work on #7" in git_ops.commit_log(again)


@pytest.mark.asyncio
async def test_provision_replaces_stray_directory(git_ops):
    stray = git_ops.get_worktree_path(8)
    stray.mkdir(parents=True)
    (stray / "junk.txt").write_text("x")

    path = await git_ops.provision(8)
    assert not (path / "junk.txt").exists()
    assert _current_branch(path) == "night-runner/8"


@pytest.mark.asyncio
async def test_provision_failure_raises_workspace_error(tmp_path):
    not_a_repo = tmp_path / "plain"
    not_a_repo.mkdir()
    git_ops = GitOps(not_a_repo, tmp_path / "worktrees", "plain", timeout=60)
    with pytest.raises(WorkspaceError):
        await git_ops.provision(1)


def _rev(ref, cwd):
    result = subprocess.run(
        ["git", "rev-parse", ref],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


@pytest.mark.asyncio
async def test_reattach_catches_up_with_commits_pushed_elsewhere(git_ops, tmp_path):
    path = await git_ops.provision(7)
    (path / "feature.py").write_text("print('dark mode')\n")
    assert git_ops.commit_all(path, "wip: start #7")
    assert git_ops.push_branch(path, "night-runner/7")
    await git_ops.decommission(path)

    # Someone else moves the branch forward from a separate clone.
    other = tmp_path / "other"
    _run("clone", str(tmp_path / "origin.git"), str(other), cwd=tmp_path)
    _run("checkout", "night-runner/7", cwd=other)
    (other / "b.py").write_text("b = 1\n")
    _run("add", "b.py", cwd=other)
    _run("commit", "-m", "review fix", cwd=other)
    _run("push", "origin", "night-runner/7", cwd=other)

    again = await git_ops.provision(7)

    assert (again / "b.py").exists()
    assert _rev("HEAD", again) == _rev("origin/night-runner/7", again)
    (again / "c.py").write_text("c = 1\n")
    assert git_ops.commit_all(again, "wip: continue #7")
    assert git_ops.push_branch(again, "night-runner/7")
