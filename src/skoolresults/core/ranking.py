from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from skoolresults.core.aggregates import StudentResultRow
from skoolresults.core.entities import Assessment
from skoolresults.core.scores import calculate_subject_total

ORDINAL_SUFFIXES = ("th", "st", "nd", "rd")


def _rank_key(row: StudentResultRow) -> Tuple[float, float, str, str]:
    return (-row.average_score, -row.total_score, row.student_name.casefold(), row.student_id)


def rank_students(rows: Iterable[StudentResultRow], shared_ties: bool = False) -> List[StudentResultRow]:
    """Assign class positions.

    Rows with a positive average are ordered by average desc, total desc, name, then id.
    Positions run 1..n in that order; with ``shared_ties`` rows that tie on average and
    total share the position of the first of them (1, 1, 3). Unranked rows get 0 and
    are listed after the ranked ones, by name.
    """
    rows = list(rows)
    ranked = sorted((row for row in rows if row.is_ranked), key=_rank_key)
    unranked = sorted(
        (row for row in rows if not row.is_ranked),
        key=lambda row: (row.student_name.casefold(), row.student_id),
    )

    results: List[StudentResultRow] = []
    position = 0
    previous: Optional[Tuple[float, float]] = None
    for index, row in enumerate(ranked):
        score_key = (row.average_score, row.total_score)
        if not shared_ties or score_key != previous:
            position = index + 1
        previous = score_key
        results.append(row.with_position(position))

    results.extend(row.with_position(0) for row in unranked)
    return results


def rank_subject(assessments: Iterable[Assessment]) -> Dict[str, Optional[int]]:
    """Per-subject positions keyed by student id, ties sharing a position.

    Absent, exempt and not-started rows get ``None``.
    """
    scored: List[Tuple[str, float]] = []
    positions: Dict[str, Optional[int]] = {}
    for assessment in assessments:
        total = calculate_subject_total(
            assessment.ca1,
            assessment.ca2,
            assessment.ca3,
            assessment.exam,
            is_absent=assessment.is_absent,
            is_exempt=assessment.is_exempt,
        )
        if total is None:
            positions[assessment.student_id] = None
        else:
            scored.append((assessment.student_id, total))

    scored.sort(key=lambda item: (-item[1], item[0]))
    position = 0
    previous: Optional[float] = None
    for index, (student_id, total) in enumerate(scored):
        if total != previous:
            position = index + 1
        previous = total
        positions[student_id] = position
    return positions


def ordinal_suffix(n: int) -> str:
    value = n % 100
    if 11 <= value <= 13:
        return "th"
    last = value % 10
    return ORDINAL_SUFFIXES[last] if last < 4 else "th"


def format_position(position: Optional[int]) -> str:
    if not position or position <= 0:
        return "-"
    return f"{position}{ordinal_suffix(position)}"


def top_student(rows: Sequence[StudentResultRow]) -> Optional[StudentResultRow]:
    for row in rows:
        if row.position == 1:
            return row
    return None
