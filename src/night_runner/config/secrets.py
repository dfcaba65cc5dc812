"""Secret loading utilities."""

from __future__ import annotations

import shutil
import subprocess

import structlog

from night_runner.config.settings import ConfigError, Settings

logger = structlog.get_logger(__name__)


def load_gh_cli_token(timeout: int = 15) -> str:
    """Read the token the GitHub CLI is already authenticated with."""
    gh = shutil.which("gh")
    if not gh:
        return ""
    try:
        result = subprocess.run(
            [gh, "auth", "token"],
            check=True,
            capture_output=True,
            timeout=timeout,
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
        logger.warning("gh_auth_token_failed", error=str(e))
        return ""
    return result.stdout.decode("utf-8", errors="replace").strip()


def resolve_github_token(settings: Settings) -> str:
    """Resolve the GitHub token, preferring explicit configuration over `gh`."""
    token = settings.github_token
    if not token:
        token = load_gh_cli_token()

    if not token:
        raise ConfigError(
            "GitHub token missing. Set GITHUB_TOKEN or run `gh auth login`."
        )
    return token
