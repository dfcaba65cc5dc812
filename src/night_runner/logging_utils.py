"""Helpers for human-readable log callouts."""

from __future__ import annotations

from typing import Any

import structlog


def log_key_event(logger: structlog.BoundLogger, title: str, **fields: Any) -> None:
    """Log a key event that should stand out in the nightly log."""
    logger.info("key_event", title=title, **fields)


def log_stage_outcome(
    logger: structlog.BoundLogger,
    repo: str,
    issue_number: int,
    stage: str,
    ok: bool,
    **fields: Any,
) -> None:
    """Record the result of one stage handler run."""
    title = f"✅ {stage} done" if ok else f"❌ {stage} failed"
    log_method = logger.info if ok else logger.warning
    log_method(
        "stage_outcome",
        title=title,
        repo=repo,
        issue=issue_number,
        stage=stage,
        ok=ok,
        **fields,
    )
