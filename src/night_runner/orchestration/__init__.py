"""State detection and stage selection."""

from .prober import StateProber
from .state import (
    Decision,
    IssueSnapshot,
    LifecycleState,
    Markers,
    Stage,
    decide,
    derive_state,
)

__all__ = [
    "Decision",
    "IssueSnapshot",
    "LifecycleState",
    "Markers",
    "Stage",
    "StateProber",
    "decide",
    "derive_state",
]
