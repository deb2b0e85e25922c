"""
Step validators for the closure workflow.

validate_final_review  — strict: enumerations and the 0-100 completion range
                         are enforced before anything is persisted.
validate_evaluation    — permissive: any combination of present / absent
                         text is accepted, including an evaluation with no
                         content at all.

Both accept either a plain mapping (JSON body) or an already-built value
object and return a fresh, trimmed value object.
"""

from __future__ import annotations

from collections.abc import Mapping

from portfolio.core.exceptions import ValidationError
from portfolio.models.closure import (
    COMPLETION_MAX,
    COMPLETION_MIN,
    EVALUATION_TEXT_FIELDS,
    PROGRESS_VALUES,
    REVIEW_TEXT_FIELDS,
    WEATHER_VALUES,
)
from portfolio.services.closure_types import EvaluationData, FinalReviewData


def _as_mapping(data, value_type, label: str) -> Mapping:
    if isinstance(data, value_type):
        return data.to_dict()
    if not isinstance(data, Mapping):
        raise ValidationError(f"{label} must be an object")
    return data


def _clean_text(value, field: str, errors: dict) -> str | None:
    """Trim a free-text value; blank becomes None."""
    if value is None:
        return None
    if not isinstance(value, str):
        errors[field] = "must be a string"
        return None
    return value.strip() or None


def validate_final_review(data) -> FinalReviewData:
    """Validate and normalise final review input.

    Raises:
        ValidationError: with a field-level ``details`` dict when weather or
            progress are outside their enumerations, or completion is not an
            integer in [0, 100].
    """
    payload = _as_mapping(data, FinalReviewData, "Final review")
    errors: dict[str, str] = {}

    weather = payload.get("weather")
    if not isinstance(weather, str) or weather not in WEATHER_VALUES:
        errors["weather"] = f"must be one of: {', '.join(WEATHER_VALUES)}"

    progress = payload.get("progress")
    if not isinstance(progress, str) or progress not in PROGRESS_VALUES:
        errors["progress"] = f"must be one of: {', '.join(PROGRESS_VALUES)}"

    completion = payload.get("completion")
    # bool is an int subclass; True is not a percentage
    if isinstance(completion, bool) or not isinstance(completion, int):
        errors["completion"] = "must be an integer"
    elif not COMPLETION_MIN <= completion <= COMPLETION_MAX:
        errors["completion"] = f"must be between {COMPLETION_MIN} and {COMPLETION_MAX}"

    texts = {field: _clean_text(payload.get(field), field, errors) for field in REVIEW_TEXT_FIELDS}

    if errors:
        raise ValidationError("Invalid final review", details=errors)

    return FinalReviewData(
        weather=weather,
        progress=progress,
        completion=completion,
        **texts,
    )


def validate_evaluation(data) -> EvaluationData:
    """Validate and normalise method evaluation input.

    ``None`` is treated as an empty evaluation.

    Raises:
        ValidationError: only when a field holds a non-string value.
    """
    if data is None:
        return EvaluationData()
    payload = _as_mapping(data, EvaluationData, "Evaluation")
    errors: dict[str, str] = {}
    texts = {field: _clean_text(payload.get(field), field, errors) for field in EVALUATION_TEXT_FIELDS}
    if errors:
        raise ValidationError("Invalid evaluation", details=errors)
    return EvaluationData(**texts)
