from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from skoolresults.core.entities import Assessment
from skoolresults.core.grading import GradingSystem, resolve_grade
from skoolresults.core.scores import SubjectScore, evaluate_subject_score


@dataclass(frozen=True)
class SubjectResult:
    score: Optional[float]
    grade: Optional[str]
    remark: Optional[str] = None


@dataclass(frozen=True)
class StudentResultRow:
    student_id: str
    student_name: str = ""
    subjects: Dict[str, SubjectResult] = field(default_factory=dict)
    total_score: float = 0.0
    average_score: float = 0.0
    grade: Optional[str] = None
    remark: Optional[str] = None
    subjects_counted: int = 0
    position: int = 0

    @property
    def is_ranked(self) -> bool:
        return self.average_score > 0

    def subject_totals(self) -> List[Optional[float]]:
        return [result.score for result in self.subjects.values()]

    def with_position(self, position: int) -> "StudentResultRow":
        return replace(self, position=position)


def calculate_student_aggregate(
    student_id: str,
    subject_scores: Mapping[str, SubjectScore],
    grading_system: Optional[GradingSystem] = None,
    student_name: str = "",
) -> StudentResultRow:
    """Roll one student's subject scores up into a result row.

    Subjects without a total (not started, absent, exempt) are left out of both the
    sum and the count. A student with nothing counted averages 0 and stays unranked.
    """
    subjects: Dict[str, SubjectResult] = {}
    total = 0.0
    counted = 0
    for subject_id, score in subject_scores.items():
        subjects[subject_id] = SubjectResult(score=score.total_score, grade=score.grade, remark=score.remark)
        if score.total_score is None:
            continue
        total += score.total_score
        counted += 1

    average = total / counted if counted > 0 else 0.0
    overall = resolve_grade(average, grading_system)
    return StudentResultRow(
        student_id=student_id,
        student_name=student_name,
        subjects=subjects,
        total_score=total,
        average_score=average,
        grade=overall.grade if overall else None,
        remark=overall.remark if overall else None,
        subjects_counted=counted,
        position=0,
    )


def group_assessments(assessments: Iterable[Assessment]) -> Dict[str, List[Assessment]]:
    grouped: Dict[str, List[Assessment]] = {}
    for assessment in assessments:
        grouped.setdefault(assessment.student_id, []).append(assessment)
    return grouped


def build_result_rows(
    students: Iterable[Tuple[str, str]],
    assessments: Iterable[Assessment],
    grading_system: Optional[GradingSystem] = None,
) -> List[StudentResultRow]:
    """Build unranked result rows for ``(student_id, student_name)`` pairs."""
    grouped = group_assessments(assessments)
    rows: List[StudentResultRow] = []
    for student_id, student_name in students:
        subject_scores = {
            a.subject_id: evaluate_subject_score(a.scores(), grading_system)
            for a in grouped.get(student_id, [])
        }
        rows.append(calculate_student_aggregate(student_id, subject_scores, grading_system, student_name))
    return rows
