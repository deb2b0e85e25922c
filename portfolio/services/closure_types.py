"""
Value types for the project closure workflow.

    ClosureStep           ordered step enum (intro → … → confirmation)
    FinalReviewData       level-1 retrospective, validated
    EvaluationData        level-2 retrospective, every field optional
    ClosureState          immutable in-memory state of one open workflow
    ProjectClosureState   persisted closure fields as read from the store

These types carry no persistence or framework behaviour, so the state
machine built on them can be exercised without an app context.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum

from portfolio.models.closure import EVALUATION_TEXT_FIELDS
from portfolio.models.project import CLOSURE_STATUS_PENDING_EVALUATION, LIFECYCLE_COMPLETED


class ClosureStep(str, Enum):
    INTRO = "intro"
    FINAL_REVIEW = "final_review"
    METHOD_EVALUATION = "method_evaluation"
    CONFIRMATION = "confirmation"

    @property
    def index(self) -> int:
        return CLOSURE_STEPS.index(self)


CLOSURE_STEPS = (
    ClosureStep.INTRO,
    ClosureStep.FINAL_REVIEW,
    ClosureStep.METHOD_EVALUATION,
    ClosureStep.CONFIRMATION,
)

STEP_LABELS = {
    ClosureStep.INTRO: "Introduction",
    ClosureStep.FINAL_REVIEW: "Project review",
    ClosureStep.METHOD_EVALUATION: "Method evaluation",
    ClosureStep.CONFIRMATION: "Confirmation",
}


@dataclass(frozen=True)
class FinalReviewData:
    weather: str
    progress: str
    completion: int
    comment: str | None = None
    difficulties: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class EvaluationData:
    what_worked: str | None = None
    what_was_missing: str | None = None
    improvements: str | None = None
    lessons_learned: str | None = None

    def is_empty(self) -> bool:
        return all(getattr(self, f) is None for f in EVALUATION_TEXT_FIELDS)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ClosureState:
    current_step: ClosureStep = ClosureStep.INTRO
    final_review_data: FinalReviewData | None = None
    evaluation_data: EvaluationData | None = None
    is_submitting: bool = False

    def to_dict(self) -> dict:
        return {
            "current_step": self.current_step.value,
            "final_review_data": self.final_review_data.to_dict() if self.final_review_data else None,
            "evaluation_data": self.evaluation_data.to_dict() if self.evaluation_data else None,
            "is_submitting": self.is_submitting,
        }


@dataclass(frozen=True)
class ProjectClosureState:
    project_id: int
    lifecycle_status: str
    closure_status: str | None = None

    @property
    def is_completed(self) -> bool:
        return self.lifecycle_status == LIFECYCLE_COMPLETED

    @property
    def is_pending_evaluation(self) -> bool:
        return self.is_completed and self.closure_status == CLOSURE_STATUS_PENDING_EVALUATION

    @property
    def is_fully_closed(self) -> bool:
        return self.is_completed and self.closure_status is None
