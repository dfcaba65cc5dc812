"""Progress note kept inside an issue workspace across implement runs."""

from datetime import datetime
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)

COMPLETED_HEADING = "## Completed Tasks"
COMPLETED_PLACEHOLDER = "(the agent updates this section)"


class ProgressNote:
    """Markdown note the agent reads on start and appends completed tasks to."""

    def __init__(self, worktree_path: Path, filename: str = "NIGHT_RUNNER_PROGRESS.md"):
        """Initialize the progress note.

        Args:
            worktree_path: Workspace the note lives in
            filename: Note file name, relative to the workspace
        """
        self.worktree_path = Path(worktree_path)
        self.filename = filename

    @property
    def path(self) -> Path:
        return self.worktree_path / self.filename

    def refresh(self, issue_number: int, now: datetime | None = None) -> None:
        """Write the note header for this run.

        Tasks already listed under "Completed Tasks" by a previous run are
        carried over so the agent can pick up where it stopped.
        """
        stamp = (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
        completed = self.completed_tasks() or COMPLETED_PLACEHOLDER
        content = f"""# Night Runner Progress for Issue #{issue_number}

Last run: {stamp}
Status: In Progress

## What to do next
- Read this file to see what's already done
- Continue implementing remaining tasks
- Update this file with completed tasks
- Commit frequently

{COMPLETED_HEADING}
{completed}
"""
        self.path.write_text(content, encoding="utf-8")
        logger.debug("progress_note_written", path=str(self.path))

    def completed_tasks(self) -> str:
        """Body of the "Completed Tasks" section, minus attempt footers."""
        if not self.path.exists():
            return ""
        text = self.path.read_text(encoding="utf-8")
        _, found, tail = text.partition(COMPLETED_HEADING)
        if not found:
            return ""
        lines = [
            line
            for line in tail.strip().splitlines()
            if line.strip() != COMPLETED_PLACEHOLDER
            and not line.startswith(("Last attempt:", "Result:"))
        ]
        return "\n".join(lines).strip()

    def record_attempt(self, ok: bool, now: datetime | None = None) -> None:
        """Append when the agent last ran and how it ended."""
        if not self.path.exists():
            return
        stamp = (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(f"\nLast attempt: {stamp}\nResult: {'ok' if ok else 'failed'}\n")
