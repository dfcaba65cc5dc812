"""Command-line entry point for a night-runner pass."""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any

import structlog

from night_runner.agents.invoker import AgentInvoker
from night_runner.config.logging import configure_logging
from night_runner.config.secrets import resolve_github_token
from night_runner.config.settings import (
    ConfigError,
    RepoTarget,
    Settings,
    get_settings,
    set_settings_overrides,
)
from night_runner.github.api_client import GitHubAPIClient
from night_runner.github.issue_queue import IssueQueue
from night_runner.runners.dispatcher import Dispatcher
from night_runner.runners.locks import LockManager
from night_runner.stages.base import StageContext
from night_runner.workspaces.git_ops import GitOps

logger = structlog.get_logger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="night-runner",
        description="Advance GitHub issues through plan -> approval -> PR -> review.",
    )
    parser.add_argument("--issue", type=int, help="Process a single issue number")
    parser.add_argument("--repo", help="Only process this owner/name from REPO_LIST")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Detect state and print the decision per issue without acting",
    )
    parser.add_argument("--max-issues", type=int, help="Override MAX_ISSUES for this run")
    parser.add_argument(
        "--log-format",
        choices=["console", "json"],
        help="Log renderer (default: NIGHT_RUNNER_LOG_FORMAT or console)",
    )
    parser.add_argument("--debug", action="store_true", default=None, help="Debug logging")
    return parser.parse_args(argv)


def select_targets(settings: Settings, repo: str | None) -> list[RepoTarget]:
    """Repositories to process this run. Unknown ``repo`` raises ConfigError."""
    if repo:
        return [settings.find_repo(repo)]
    return settings.repo_targets()


def _print_decisions(summary: dict[str, Any]) -> None:
    print(f"\n{summary['repo']}: {summary['issues']} issue(s)")
    for issue_number in summary["cleaned"]:
        print(f"  #{issue_number}: PR merged -> workspace cleanup")
    for decision in summary["decisions"]:
        print(
            f"  #{decision['issue']}: {decision['state']} -> {decision['stage']}"
            f" ({decision['reason']})"
        )


async def run_repo(
    settings: Settings,
    target: RepoTarget,
    token: str,
    locks: LockManager,
    issue_number: int | None = None,
    dry_run: bool = False,
) -> dict[str, Any]:
    """Run one dispatch pass over a single repository."""
    async with GitHubAPIClient(token, settings=settings) as api_client:
        ctx = StageContext(
            settings=settings,
            target=target,
            issue_queue=IssueQueue(api_client, target.slug),
            git_ops=GitOps(
                repo_path=target.path,
                worktree_base=settings.worktree_root,
                repo_short_name=target.short_name,
                namespace=settings.branch_namespace,
                base_branch=settings.base_branch,
                timeout=settings.git_timeout_seconds,
            ),
            invoker=AgentInvoker(target.slug, settings=settings),
        )
        dispatcher = Dispatcher(ctx, locks, dry_run=dry_run)
        return await dispatcher.run(issue_number)


async def run(
    settings: Settings,
    targets: list[RepoTarget],
    issue_number: int | None = None,
    dry_run: bool = False,
) -> list[dict[str, Any]]:
    token = resolve_github_token(settings)
    locks = LockManager(settings.lock_root)
    locks.install_exit_cleanup()

    summaries = []
    for target in targets:
        try:
            summary = await run_repo(settings, target, token, locks, issue_number, dry_run)
        except Exception as e:
            # One unreachable repository must not stop the others.
            logger.error("repo_run_failed", repo=target.slug, error=str(e))
            continue
        summaries.append(summary)
        if dry_run:
            _print_decisions(summary)
    return summaries


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    set_settings_overrides(
        max_issues=args.max_issues,
        log_format=args.log_format,
        debug=args.debug,
    )

    try:
        settings = get_settings()
        log_path = configure_logging(
            debug=settings.debug,
            log_format=settings.log_format,
            log_dir=settings.log_root,
        )
        settings.validate_required()
        targets = select_targets(settings, args.repo)
        logger.info(
            "night_runner_starting",
            repos=[t.slug for t in targets],
            issue=args.issue,
            dry_run=args.dry_run,
            log_file=str(log_path) if log_path else None,
        )
        asyncio.run(run(settings, targets, issue_number=args.issue, dry_run=args.dry_run))
    except ConfigError as e:
        logger.error("config_error", error=str(e))
        print(f"night-runner: {e}", file=sys.stderr)
        sys.exit(1)

    logger.info("night_runner_finished")


if __name__ == "__main__":
    main()
