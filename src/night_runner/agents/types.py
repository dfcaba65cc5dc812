"""Shared agent result types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Capability(str, Enum):
    """What the agent is being asked to do."""

    PLAN = "plan"
    IMPLEMENT = "implement"
    UPDATE = "update"

    @property
    def skill(self) -> str:
        """Slash-command skill the agent CLI runs for this capability."""
        return _SKILLS[self]


_SKILLS = {
    Capability.PLAN: "night-runner-plan",
    Capability.IMPLEMENT: "night-runner-implement",
    Capability.UPDATE: "night-runner-update-pr",
}


class AgentStatus(str, Enum):
    """Status for a single agent execution."""

    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class AgentResult:
    """Result of a single agent execution."""

    status: AgentStatus
    output: str
    returncode: int | None = None
    duration_seconds: float = 0.0
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == AgentStatus.SUCCESS
