from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from skoolresults.core.aggregates import StudentResultRow
from skoolresults.core.grading import DEFAULT_PASS_MARK, is_passing, pass_rate
from skoolresults.core.ranking import top_student


@dataclass(frozen=True)
class SubjectStatistics:
    subject_id: str
    total_students: int = 0
    average: float = 0.0
    highest: float = 0.0
    lowest: float = 0.0
    pass_count: int = 0
    pass_rate: float = 0.0
    grade_distribution: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ClassSummary:
    total_students: int = 0
    average_score: float = 0.0
    pass_rate: float = 0.0
    highest_score: float = 0.0
    lowest_score: float = 0.0
    top_student: Optional[StudentResultRow] = None
    grade_distribution: Dict[str, int] = field(default_factory=dict)
    subject_averages: Dict[str, float] = field(default_factory=dict)


def _distribution(grades: Iterable[Optional[str]], missing: Optional[str] = None) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for grade in grades:
        grade = grade or missing
        if grade is None:
            continue
        counts[grade] = counts.get(grade, 0) + 1
    return counts


def summarize_subject(
    subject_id: str,
    rows: Sequence[StudentResultRow],
    pass_mark: float = DEFAULT_PASS_MARK,
) -> SubjectStatistics:
    results = [row.subjects[subject_id] for row in rows if subject_id in row.subjects]
    scores = [result.score for result in results if result.score is not None]
    if not scores:
        return SubjectStatistics(subject_id=subject_id)

    return SubjectStatistics(
        subject_id=subject_id,
        total_students=len(scores),
        average=sum(scores) / len(scores),
        highest=max(scores),
        lowest=min(scores),
        pass_count=sum(1 for score in scores if is_passing(score, pass_mark)),
        pass_rate=pass_rate(scores, pass_mark),
        grade_distribution=_distribution(result.grade for result in results),
    )


def summarize_class(
    rows: Sequence[StudentResultRow],
    subject_ids: Iterable[str] = (),
    pass_mark: float = DEFAULT_PASS_MARK,
) -> ClassSummary:
    """Headline numbers for a ranked class list.

    Averages, highest and lowest only consider students with a positive average;
    the pass rate is taken over every student in the list.
    """
    if not rows:
        return ClassSummary()

    averages = [row.average_score for row in rows if row.average_score > 0]

    subject_averages: Dict[str, float] = {}
    for subject_id in subject_ids:
        stats = summarize_subject(subject_id, rows, pass_mark)
        if stats.total_students:
            subject_averages[subject_id] = stats.average

    return ClassSummary(
        total_students=len(rows),
        average_score=sum(averages) / len(averages) if averages else 0.0,
        pass_rate=pass_rate((row.average_score for row in rows), pass_mark),
        highest_score=max(averages) if averages else 0.0,
        lowest_score=min(averages) if averages else 0.0,
        top_student=top_student(rows),
        grade_distribution=_distribution((row.grade for row in rows), missing="F"),
        subject_averages=subject_averages,
    )


def subject_ids_in(rows: Iterable[StudentResultRow]) -> List[str]:
    seen: Dict[str, None] = {}
    for row in rows:
        for subject_id in row.subjects:
            seen.setdefault(subject_id, None)
    return sorted(seen)
