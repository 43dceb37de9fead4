from dataclasses import dataclass
import math
from enum import Enum
from typing import Dict, Iterable, Optional

from skoolresults.core.entities import Assessment, Student


class CompletionStatus(str, Enum):
    ABSENT = "absent"
    EXEMPT = "exempt"
    NOT_STARTED = "not_started"
    COMPLETE = "complete"
    PARTIAL = "partial"


@dataclass(frozen=True)
class CompletionStatistics:
    total_students: int = 0
    students_with_data: int = 0
    complete_assessments: int = 0
    partial_assessments: int = 0
    absent_students: int = 0
    exempt_students: int = 0
    students_without_data: int = 0
    completion_percentage: int = 0


def classify_assessment(assessment: Optional[Assessment]) -> CompletionStatus:
    """Classify how much of one student-subject assessment has been filled in.

    Checked in priority order: absent, exempt, nothing entered, everything entered,
    and partial for anything in between. A missing row has not been started.
    """
    if assessment is None:
        return CompletionStatus.NOT_STARTED
    if assessment.is_absent:
        return CompletionStatus.ABSENT
    if assessment.is_exempt:
        return CompletionStatus.EXEMPT

    entered = sum(1 for value in assessment.scores().components() if value is not None)
    if entered == 0:
        return CompletionStatus.NOT_STARTED
    if entered == 4:
        return CompletionStatus.COMPLETE
    return CompletionStatus.PARTIAL


def calculate_completion_statistics(
    students: Iterable[Student],
    assessments: Iterable[Assessment],
) -> CompletionStatistics:
    by_student: Dict[str, Assessment] = {a.student_id: a for a in assessments}

    total_students = 0
    with_data = 0
    counts = {status: 0 for status in CompletionStatus}
    for student in students:
        total_students += 1
        assessment = by_student.get(student.id)
        if assessment is not None:
            with_data += 1
        counts[classify_assessment(assessment)] += 1

    finished = (
        counts[CompletionStatus.COMPLETE]
        + counts[CompletionStatus.ABSENT]
        + counts[CompletionStatus.EXEMPT]
    )
    # Halves round up.
    percentage = math.floor(finished / total_students * 100 + 0.5) if total_students > 0 else 0

    return CompletionStatistics(
        total_students=total_students,
        students_with_data=with_data,
        complete_assessments=counts[CompletionStatus.COMPLETE],
        partial_assessments=counts[CompletionStatus.PARTIAL],
        absent_students=counts[CompletionStatus.ABSENT],
        exempt_students=counts[CompletionStatus.EXEMPT],
        students_without_data=total_students - with_data,
        completion_percentage=percentage,
    )
