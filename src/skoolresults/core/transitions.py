from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from skoolresults.core.aggregates import StudentResultRow
from skoolresults.core.errors import PreconditionError
from skoolresults.core.grading import DEFAULT_PASS_MARK
from skoolresults.core.ranking import rank_students


class TransitionType(str, Enum):
    PROMOTION = "PROMOTION"
    TRANSFER = "TRANSFER"
    WITHDRAWAL = "WITHDRAWAL"


@dataclass(frozen=True)
class EligibilityPolicy:
    """Promotion rule. Average >= pass mark always applies; the other gates are opt-in."""

    min_pass_rate: Optional[float] = None
    max_failed_subjects: Optional[int] = None


AVERAGE_ONLY = EligibilityPolicy()


@dataclass(frozen=True)
class TransitionCandidate:
    student_id: str
    student_name: str
    average_score: float
    grade: Optional[str]
    remark: Optional[str]
    position: int
    subjects_offered: int
    subjects_passed: int
    subjects_failed: int
    pass_rate: float
    is_eligible: bool
    eligibility_reason: str


@dataclass(frozen=True)
class TransitionStatistics:
    total_students: int = 0
    eligible_students: int = 0
    ineligible_students: int = 0
    average_class_score: float = 0.0


@dataclass(frozen=True)
class TransitionRequest:
    from_class_term_id: str
    to_class_term_id: Optional[str]
    student_ids: Tuple[str, ...]
    transition_type: TransitionType = TransitionType.PROMOTION
    notes: str = ""

    def validate(self) -> None:
        if not self.from_class_term_id:
            raise PreconditionError("Source class is required.")
        if not self.to_class_term_id:
            raise PreconditionError("Destination class is required.")
        if self.to_class_term_id == self.from_class_term_id:
            raise PreconditionError("Destination class must differ from the source class.")
        if not self.student_ids:
            raise PreconditionError("Select at least one student to transition.")
        seen = set()
        duplicates = []
        for student_id in self.student_ids:
            if student_id in seen:
                duplicates.append(student_id)
            seen.add(student_id)
        if duplicates:
            raise PreconditionError(f"Students selected more than once: {', '.join(duplicates)}")


def tally_subjects(subject_totals: Iterable[Optional[float]], pass_mark: float) -> Tuple[int, int]:
    offered = 0
    passed = 0
    for total in subject_totals:
        if total is None:
            continue
        offered += 1
        if total >= pass_mark:
            passed += 1
    return offered, passed


def _reason(
    eligible: bool,
    average: float,
    rate: float,
    failed: int,
    pass_mark: float,
    policy: EligibilityPolicy,
) -> str:
    if eligible:
        return "Meets promotion criteria"
    if average < pass_mark:
        return f"Average ({average:.1f}%) below pass mark of {pass_mark:g}%"
    if policy.min_pass_rate is not None and rate < policy.min_pass_rate:
        return f"Pass rate ({rate:.1f}%) below required {policy.min_pass_rate:g}%"
    return f"Failed {failed} subjects, at most {policy.max_failed_subjects} allowed"


def evaluate_candidate(
    row: StudentResultRow,
    subject_totals: Optional[Sequence[Optional[float]]] = None,
    pass_mark: float = DEFAULT_PASS_MARK,
    policy: Optional[EligibilityPolicy] = None,
) -> TransitionCandidate:
    policy = policy or AVERAGE_ONLY
    totals = row.subject_totals() if subject_totals is None else subject_totals
    offered, passed = tally_subjects(totals, pass_mark)
    failed = offered - passed
    rate = (passed / offered) * 100 if offered > 0 else 0.0

    eligible = row.average_score >= pass_mark
    if eligible and policy.min_pass_rate is not None:
        eligible = rate >= policy.min_pass_rate
    if eligible and policy.max_failed_subjects is not None:
        eligible = failed <= policy.max_failed_subjects

    return TransitionCandidate(
        student_id=row.student_id,
        student_name=row.student_name,
        average_score=row.average_score,
        grade=row.grade,
        remark=row.remark,
        position=row.position,
        subjects_offered=offered,
        subjects_passed=passed,
        subjects_failed=failed,
        pass_rate=rate,
        is_eligible=eligible,
        eligibility_reason=_reason(eligible, row.average_score, rate, failed, pass_mark, policy),
    )


def evaluate_candidates(
    rows: Iterable[StudentResultRow],
    pass_mark: float = DEFAULT_PASS_MARK,
    policy: Optional[EligibilityPolicy] = None,
    shared_ties: bool = False,
) -> Tuple[List[TransitionCandidate], TransitionStatistics]:
    ranked = rank_students(rows, shared_ties=shared_ties)
    candidates = [evaluate_candidate(row, pass_mark=pass_mark, policy=policy) for row in ranked]
    return candidates, summarize_candidates(candidates)


def summarize_candidates(candidates: Sequence[TransitionCandidate]) -> TransitionStatistics:
    if not candidates:
        return TransitionStatistics()
    eligible = sum(1 for c in candidates if c.is_eligible)
    return TransitionStatistics(
        total_students=len(candidates),
        eligible_students=eligible,
        ineligible_students=len(candidates) - eligible,
        average_class_score=sum(c.average_score for c in candidates) / len(candidates),
    )


def eligible_student_ids(candidates: Iterable[TransitionCandidate]) -> List[str]:
    return [c.student_id for c in candidates if c.is_eligible]


def count_by_type(transition_types: Iterable[str]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for transition_type in transition_types:
        counts[transition_type] = counts.get(transition_type, 0) + 1
    return counts
