from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from skoolresults.core.entities import Assessment, Student
from skoolresults.core.errors import PreconditionError
from skoolresults.core.grading import GradingSystem, resolve_grade
from skoolresults.core.scores import SCORE_FIELDS, calculate_subject_total, validate_score

FLAG_FIELDS = ("is_absent", "is_exempt")
EDITABLE_FIELDS = SCORE_FIELDS + FLAG_FIELDS
FLAG_TRUE = {"true", "1", "yes", "on"}
FLAG_FALSE = {"false", "0", "no", "off", ""}


@dataclass(frozen=True)
class ScoreEntry:
    student_id: str
    id: Optional[str] = None
    ca1: Optional[float] = 0
    ca2: Optional[float] = 0
    ca3: Optional[float] = 0
    exam: Optional[float] = 0
    total_score: Optional[float] = None
    grade: Optional[str] = None
    remark: Optional[str] = None
    is_absent: bool = False
    is_exempt: bool = False
    is_published: bool = False
    is_dirty: bool = False
    has_error: bool = False
    error_message: Optional[str] = None

    def to_input(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "ca1": self.ca1,
            "ca2": self.ca2,
            "ca3": self.ca3,
            "exam": self.exam,
            "is_absent": self.is_absent,
            "is_exempt": self.is_exempt,
        }


@dataclass(frozen=True)
class EditBufferState:
    scores: Dict[str, ScoreEntry] = field(default_factory=dict)
    has_changes: bool = False
    error_count: int = 0
    initialized: bool = False
    grading_system: Optional[GradingSystem] = None

    @property
    def can_save(self) -> bool:
        return self.has_changes and self.error_count == 0

    def dirty_entries(self) -> List[ScoreEntry]:
        return [entry for entry in self.scores.values() if entry.is_dirty]


# Actions

@dataclass(frozen=True)
class Init:
    students: Sequence[Student]
    assessments: Sequence[Assessment]
    grading_system: Optional[GradingSystem] = None


@dataclass(frozen=True)
class Update:
    student_id: str
    field: str
    value: Any


@dataclass(frozen=True)
class BatchUpdate:
    updates: Mapping[str, Mapping[str, Any]]


@dataclass(frozen=True)
class Reset:
    assessments: Sequence[Assessment]


@dataclass(frozen=True)
class MarkSaved:
    student_ids: Sequence[str]
    assessment_ids: Mapping[str, str]
    submitted: Optional[Mapping[str, Mapping[str, Any]]] = None


@dataclass(frozen=True)
class SetError:
    student_id: str
    error: Optional[str]


@dataclass(frozen=True)
class ClearAll:
    pass


Action = Union[Init, Update, BatchUpdate, Reset, MarkSaved, SetError, ClearAll]


def _entry_from(student_id: str, assessment: Optional[Assessment], current: Optional[ScoreEntry] = None) -> ScoreEntry:
    # Unset numbers start at 0 so inputs stay controlled.
    def number(value: Optional[float]) -> float:
        return value if value is not None else 0

    base = current or ScoreEntry(student_id=student_id)
    if assessment is None:
        return replace(
            base,
            ca1=0,
            ca2=0,
            ca3=0,
            exam=0,
            total_score=None,
            grade=None,
            remark=None,
            is_absent=False,
            is_exempt=False,
            is_dirty=False,
            has_error=False,
            error_message=None,
        )
    return replace(
        base,
        id=assessment.id if current is None else current.id,
        ca1=number(assessment.ca1),
        ca2=number(assessment.ca2),
        ca3=number(assessment.ca3),
        exam=number(assessment.exam),
        total_score=assessment.total_score,
        grade=assessment.grade,
        remark=assessment.remark,
        is_absent=assessment.is_absent,
        is_exempt=assessment.is_exempt,
        is_published=assessment.is_published if current is None else current.is_published,
        is_dirty=False,
        has_error=False,
        error_message=None,
    )


def _parse_flag(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in FLAG_TRUE:
            return True
        if text in FLAG_FALSE:
            return False
    return None


def _coerce(field_name: str, value: Any) -> Any:
    if field_name in FLAG_FIELDS:
        return _parse_flag(value)
    if field_name not in SCORE_FIELDS:
        return value
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return value
    return value


def _recount(state: EditBufferState, scores: Dict[str, ScoreEntry], **overrides: Any) -> EditBufferState:
    values = {
        "has_changes": any(entry.is_dirty for entry in scores.values()),
        "error_count": sum(1 for entry in scores.values() if entry.has_error),
    }
    values.update(overrides)
    return replace(state, scores=scores, **values)


def _first_error(entry: ScoreEntry) -> Optional[str]:
    for field_name in SCORE_FIELDS:
        validation = validate_score(field_name, getattr(entry, field_name))
        if not validation.is_valid:
            return validation.error
    return None


def _update(state: EditBufferState, action: Update) -> EditBufferState:
    current = state.scores.get(action.student_id)
    if current is None or action.field not in EDITABLE_FIELDS:
        return state

    value = _coerce(action.field, action.value)
    if action.field in FLAG_FIELDS and value is None:
        return state
    updated = replace(current, **{action.field: value}, is_dirty=True)
    error = _first_error(updated)
    updated = replace(updated, has_error=error is not None, error_message=error)

    if updated.is_absent or updated.is_exempt:
        updated = replace(updated, total_score=None, grade=None, remark=None)
    elif error is None:
        total = calculate_subject_total(updated.ca1, updated.ca2, updated.ca3, updated.exam)
        grade = resolve_grade(total, state.grading_system)
        updated = replace(
            updated,
            total_score=total,
            grade=grade.grade if grade else None,
            remark=grade.remark if grade else None,
        )

    scores = dict(state.scores)
    scores[action.student_id] = updated
    return _recount(state, scores)


def reduce(state: EditBufferState, action: Action) -> EditBufferState:
    if isinstance(action, Init):
        by_student = {a.student_id: a for a in action.assessments}
        scores = {s.id: _entry_from(s.id, by_student.get(s.id)) for s in action.students}
        return EditBufferState(
            scores=scores,
            has_changes=False,
            error_count=0,
            initialized=True,
            grading_system=action.grading_system,
        )

    if isinstance(action, Update):
        return _update(state, action)

    if isinstance(action, BatchUpdate):
        scores = dict(state.scores)
        for student_id, changes in action.updates.items():
            entry = scores.get(student_id)
            if entry is None:
                continue
            known = {k: v for k, v in changes.items() if hasattr(entry, k) and k != "student_id"}
            scores[student_id] = replace(entry, **known)
        return _recount(state, scores)

    if isinstance(action, Reset):
        by_student = {a.student_id: a for a in action.assessments}
        scores = {
            student_id: _entry_from(student_id, by_student.get(student_id), current=entry)
            for student_id, entry in state.scores.items()
        }
        return replace(state, scores=scores, has_changes=False, error_count=0)

    if isinstance(action, MarkSaved):
        scores = dict(state.scores)
        for student_id in action.student_ids:
            entry = scores.get(student_id)
            if entry is None:
                continue
            # Edits made after the rows were submitted stay dirty.
            changed = action.submitted is not None and action.submitted.get(student_id) != entry.to_input()
            scores[student_id] = replace(
                entry,
                is_dirty=entry.is_dirty and changed,
                id=action.assessment_ids.get(student_id) or entry.id,
            )
        return _recount(state, scores, error_count=state.error_count)

    if isinstance(action, SetError):
        entry = state.scores.get(action.student_id)
        if entry is None:
            return state
        scores = dict(state.scores)
        scores[action.student_id] = replace(
            entry,
            has_error=bool(action.error),
            error_message=action.error or None,
        )
        return _recount(state, scores, has_changes=state.has_changes)

    if isinstance(action, ClearAll):
        return EditBufferState()

    return state


class EditBuffer:
    """Holds the current edit state for one term/class/subject selection."""

    def __init__(self) -> None:
        self.state = EditBufferState()

    def dispatch(self, action: Action) -> EditBufferState:
        self.state = reduce(self.state, action)
        return self.state

    def initialize(
        self,
        students: Sequence[Student],
        assessments: Sequence[Assessment],
        grading_system: Optional[GradingSystem] = None,
    ) -> EditBufferState:
        return self.dispatch(Init(tuple(students), tuple(assessments), grading_system))

    def update(self, student_id: str, field_name: str, value: Any) -> EditBufferState:
        return self.dispatch(Update(student_id, field_name, value))

    def reset(self, assessments: Sequence[Assessment]) -> EditBufferState:
        return self.dispatch(Reset(tuple(assessments)))

    def mark_saved(
        self,
        student_ids: Sequence[str],
        assessment_ids: Mapping[str, str],
        submitted: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ) -> EditBufferState:
        return self.dispatch(MarkSaved(tuple(student_ids), dict(assessment_ids), submitted))

    def clear(self) -> EditBufferState:
        return self.dispatch(ClearAll())

    def pending_rows(self) -> Tuple[List[str], List[Dict[str, Any]]]:
        """Dirty rows to hand to the save call, in buffer order, with their student ids."""
        if self.state.error_count > 0:
            raise PreconditionError(f"Fix {self.state.error_count} invalid score(s) before saving.")
        entries = self.state.dirty_entries()
        return [entry.student_id for entry in entries], [entry.to_input() for entry in entries]
