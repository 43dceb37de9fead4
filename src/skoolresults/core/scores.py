from dataclasses import dataclass
import math
from typing import Any, Dict, Optional, Tuple

from skoolresults.core.grading import GradingSystem, pass_mark_of, resolve_grade


SCORE_FIELDS: Tuple[str, ...] = ("ca1", "ca2", "ca3", "exam")

FIELD_CEILINGS: Dict[str, float] = {
    "ca1": 10,
    "ca2": 10,
    "ca3": 10,
    "exam": 70,
}
UNKNOWN_FIELD_CEILING = 100

NEGATIVE_SCORE_ERROR = "Score must be a positive number"


@dataclass(frozen=True)
class ScoreValidation:
    is_valid: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class AssessmentScores:
    ca1: Optional[float] = None
    ca2: Optional[float] = None
    ca3: Optional[float] = None
    exam: Optional[float] = None
    is_absent: bool = False
    is_exempt: bool = False

    def components(self) -> Tuple[Optional[float], ...]:
        return (self.ca1, self.ca2, self.ca3, self.exam)


@dataclass(frozen=True)
class SubjectScore:
    ca_total: Optional[float]
    total_score: Optional[float]
    grade: Optional[str]
    remark: Optional[str]
    passed: bool
    is_complete: bool


def ceiling_for(field: str) -> float:
    return FIELD_CEILINGS.get(field, UNKNOWN_FIELD_CEILING)


def validate_score(field: str, value: Any) -> ScoreValidation:
    if value is None:
        return ScoreValidation(is_valid=True)

    if isinstance(value, bool):
        return ScoreValidation(is_valid=False, error=NEGATIVE_SCORE_ERROR)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return ScoreValidation(is_valid=False, error=NEGATIVE_SCORE_ERROR)

    if not math.isfinite(number) or number < 0:
        return ScoreValidation(is_valid=False, error=NEGATIVE_SCORE_ERROR)

    ceiling = ceiling_for(field)
    if number > ceiling:
        return ScoreValidation(is_valid=False, error=f"Score cannot exceed {ceiling:g}")

    return ScoreValidation(is_valid=True)


def _sum_entered(values: Tuple[Optional[float], ...]) -> Optional[float]:
    # Nothing entered means "not started"; once anything is entered the gaps count as zero.
    if all(value is None for value in values):
        return None
    return float(sum(value or 0 for value in values))


def calculate_subject_total(
    ca1: Optional[float],
    ca2: Optional[float],
    ca3: Optional[float],
    exam: Optional[float],
    is_absent: bool = False,
    is_exempt: bool = False,
) -> Optional[float]:
    if is_absent or is_exempt:
        return None
    return _sum_entered((ca1, ca2, ca3, exam))


def evaluate_subject_score(
    scores: AssessmentScores,
    grading_system: Optional[GradingSystem] = None,
) -> SubjectScore:
    if scores.is_absent or scores.is_exempt:
        return SubjectScore(
            ca_total=None,
            total_score=None,
            grade=None,
            remark=None,
            passed=False,
            is_complete=False,
        )

    total = calculate_subject_total(scores.ca1, scores.ca2, scores.ca3, scores.exam)
    grade = resolve_grade(total, grading_system)
    return SubjectScore(
        ca_total=_sum_entered((scores.ca1, scores.ca2, scores.ca3)),
        total_score=total,
        grade=grade.grade if grade else None,
        remark=grade.remark if grade else None,
        passed=total is not None and total >= pass_mark_of(grading_system),
        is_complete=all(value is not None for value in scores.components()),
    )
