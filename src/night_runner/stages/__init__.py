"""Lifecycle stage handlers."""

from night_runner.orchestration.state import Stage

from .base import StageContext, StageHandler, StageResult
from .implement import ImplementStage
from .plan import PlanStage
from .update_pr import UpdatePRStage

HANDLERS: dict[Stage, type[StageHandler]] = {
    Stage.PLAN: PlanStage,
    Stage.IMPLEMENT: ImplementStage,
    Stage.UPDATE_PR: UpdatePRStage,
}

__all__ = [
    "HANDLERS",
    "ImplementStage",
    "PlanStage",
    "StageContext",
    "StageHandler",
    "StageResult",
    "UpdatePRStage",
]
