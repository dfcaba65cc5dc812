"""Per-issue git workspaces."""

from .git_ops import GitOps, WorkspaceError
from .progress import ProgressNote

__all__ = ["GitOps", "ProgressNote", "WorkspaceError"]
