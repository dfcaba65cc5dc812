"""Configuration and settings management."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigError(ValueError):
    """Raised when required configuration is missing or malformed."""


@dataclass(frozen=True)
class RepoTarget:
    """A repository to process and the local clone that backs it."""

    slug: str
    path: Path

    @property
    def short_name(self) -> str:
        return self.slug.rsplit("/", 1)[-1]


class Settings(BaseSettings):
    """Runner settings loaded from the environment and `.env`."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = os.getenv("ENVIRONMENT", "production")
    debug: bool = os.getenv("NIGHT_RUNNER_DEBUG", "false").lower() == "true"
    log_format: str = os.getenv("NIGHT_RUNNER_LOG_FORMAT", "console")

    # Target repository
    repo: str = os.getenv("REPO", "")
    repo_path: str = os.getenv("REPO_PATH", "")
    # One "owner/name|/path/to/clone" entry per line; "#" starts a comment.
    repo_list: str = os.getenv("REPO_LIST", "")
    base_branch: str = os.getenv("BASE_BRANCH", "main")
    max_issues: int = int(os.getenv("MAX_ISSUES", "10"))
    issue_list_limit: int = int(os.getenv("ISSUE_LIST_LIMIT", "100"))
    skip_label: str = os.getenv("SKIP_LABEL", "manual")

    # GitHub
    github_token: str = os.getenv("GITHUB_TOKEN", os.getenv("GH_TOKEN", ""))
    github_api_url: str = os.getenv("GITHUB_API_URL", "https://api.github.com")
    github_api_max_retries: int = int(os.getenv("GITHUB_API_MAX_RETRIES", "5"))
    github_api_retry_base_seconds: float = float(
        os.getenv("GITHUB_API_RETRY_BASE_SECONDS", "1.0")
    )
    github_api_retry_max_seconds: float = float(
        os.getenv("GITHUB_API_RETRY_MAX_SECONDS", "30.0")
    )

    # Lifecycle markers
    approval_token: str = os.getenv("APPROVAL_TOKEN", "LGTM")
    plan_marker: str = "<!-- NIGHT_RUNNER_PLAN -->"
    pr_marker: str = "<!-- NIGHT_RUNNER_PR -->"
    review_watermark: bool = os.getenv("REVIEW_WATERMARK", "true").lower() == "true"

    # Workspaces
    worktree_base: str = os.getenv("WORKTREE_BASE", "~/worktrees")
    branch_namespace: str = os.getenv("BRANCH_NAMESPACE", "night-runner")
    progress_filename: str = "NIGHT_RUNNER_PROGRESS.md"
    git_timeout_seconds: int = int(os.getenv("GIT_TIMEOUT_SECONDS", "300"))

    # Agent CLI
    claude_path: str = os.getenv("CLAUDE_PATH", "~/.claude/local/claude")
    agent_command: str = os.getenv(
        "AGENT_COMMAND",
        "{claude_path} --dangerously-skip-permissions -p {prompt}",
    )
    timeout_seconds: int = int(os.getenv("TIMEOUT_SECONDS", "1800"))
    http_proxy: Optional[str] = os.getenv("http_proxy") or os.getenv("HTTP_PROXY")
    https_proxy: Optional[str] = os.getenv("https_proxy") or os.getenv("HTTPS_PROXY")

    # Local state
    lock_dir: str = os.getenv("LOCK_DIR", "~/.night-runner/locks")
    log_dir: str = os.getenv("LOG_DIR", "~/.night-runner/logs")

    def repo_targets(self) -> list[RepoTarget]:
        """Return every configured repository, falling back to REPO/REPO_PATH."""
        targets: list[RepoTarget] = []
        for raw_line in self.repo_list.splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            slug, sep, path = line.partition("|")
            if not sep or not slug.strip() or not path.strip():
                raise ConfigError(f"Malformed REPO_LIST entry: {raw_line!r}")
            targets.append(RepoTarget(slug.strip(), _expand(path.strip())))

        if targets:
            return targets
        if self.repo:
            return [RepoTarget(self.repo, _expand(self.repo_path or "."))]
        return []

    def find_repo(self, slug: str) -> RepoTarget:
        """Look up a single configured repository by its owner/name slug."""
        for target in self.repo_targets():
            if target.slug == slug:
                return target
        raise ConfigError(f"Repo '{slug}' not found in REPO_LIST")

    def validate_required(self) -> None:
        """Fail fast when the runner cannot possibly start."""
        if not self.repo_targets():
            raise ConfigError("No repository configured. Set REPO or REPO_LIST.")
        if not self.worktree_base.strip():
            raise ConfigError("No workspace root configured. Set WORKTREE_BASE.")
        if self.timeout_seconds <= 0:
            raise ConfigError("TIMEOUT_SECONDS must be positive.")

    @property
    def worktree_root(self) -> Path:
        return _expand(self.worktree_base)

    @property
    def lock_root(self) -> Path:
        return _expand(self.lock_dir)

    @property
    def log_root(self) -> Path:
        return _expand(self.log_dir)

    def proxy_env(self) -> dict[str, str]:
        """Proxy variables to forward to the agent subprocess."""
        env: dict[str, str] = {}
        if self.http_proxy:
            env["http_proxy"] = self.http_proxy
        if self.https_proxy:
            env["https_proxy"] = self.https_proxy
        return env


def _expand(value: str) -> Path:
    return Path(os.path.expandvars(value)).expanduser()


_overrides: dict[str, Any] = {}


def set_settings_overrides(**overrides: Any) -> None:
    """Apply overrides (typically from CLI flags) to every later get_settings()."""
    _overrides.update({k: v for k, v in overrides.items() if v is not None})


def clear_settings_overrides() -> None:
    _overrides.clear()


def get_settings() -> Settings:
    """Get a settings instance with any CLI overrides applied."""
    return Settings(**_overrides)
