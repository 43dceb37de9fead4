from dataclasses import dataclass, field
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, ValidationError

from skoolresults.config.settings import Settings, configure_logging, settings as default_settings
from skoolresults.core.aggregates import StudentResultRow, build_result_rows
from skoolresults.core.analytics import (
    ClassSummary,
    SubjectStatistics,
    subject_ids_in,
    summarize_class,
    summarize_subject,
)
from skoolresults.core.completion import CompletionStatus, calculate_completion_statistics, classify_assessment
from skoolresults.core.entities import Assessment, ClassTerm, Student
from skoolresults.core.errors import PersistenceError, PreconditionError, ResultsError
from skoolresults.core.grading import GradingSystem, pass_mark_of
from skoolresults.core.ranking import format_position, rank_students, rank_subject
from skoolresults.core.scores import SubjectScore, evaluate_subject_score
from skoolresults.core.transitions import (
    EligibilityPolicy,
    TransitionRequest,
    TransitionType,
    count_by_type,
    eligible_student_ids,
    evaluate_candidates,
)
from skoolresults.services.appwrite_service import AppwriteService, AppwriteServiceError

logger = logging.getLogger(__name__)


class AssessmentInputPayload(BaseModel):
    id: Optional[str] = None
    student_id: str
    ca1: Optional[float] = Field(default=None, ge=0, le=10)
    ca2: Optional[float] = Field(default=None, ge=0, le=10)
    ca3: Optional[float] = Field(default=None, ge=0, le=10)
    exam: Optional[float] = Field(default=None, ge=0, le=70)
    is_absent: bool = False
    is_exempt: bool = False


class TransitionPayload(BaseModel):
    from_class_term_id: str
    to_class_term_id: Optional[str] = None
    student_ids: List[str] = Field(default_factory=list)
    transition_type: TransitionType = TransitionType.PROMOTION
    notes: str = ""

    def to_request(self) -> TransitionRequest:
        return TransitionRequest(
            from_class_term_id=self.from_class_term_id,
            to_class_term_id=self.to_class_term_id,
            student_ids=tuple(self.student_ids),
            transition_type=self.transition_type,
            notes=self.notes,
        )


@dataclass(frozen=True)
class ServiceResult:
    success: bool
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "ServiceResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ServiceResult":
        return cls(success=False, error=error)


@dataclass(frozen=True)
class StudentAssessment:
    student: Student
    assessment: Optional[Assessment]
    status: CompletionStatus
    score: SubjectScore


@dataclass(frozen=True)
class StudentReport:
    row: StudentResultRow
    position_label: str
    class_size: int
    subject_positions: Dict[str, Optional[int]] = field(default_factory=dict)


def _validation_message(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        problems.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "Invalid input: " + "; ".join(problems)


class ResultsService:
    """Entry point for score entry, result compilation and transitions.

    Every public method returns a ``ServiceResult``. Precondition and persistence
    failures become ``ServiceResult.fail`` with the message the caller should show.
    """

    def __init__(self, repository: Any, config: Optional[Settings] = None) -> None:
        self.repository = repository
        self.config = config or default_settings

    @classmethod
    def from_settings(cls) -> "ResultsService":
        configure_logging()
        return cls(AppwriteService.from_settings(), default_settings)

    def _run(self, operation: str, action: Callable[[], Any]) -> ServiceResult:
        try:
            return ServiceResult.ok(action())
        except ValidationError as exc:
            message = _validation_message(exc)
            logger.warning("%s rejected: %s", operation, message)
            return ServiceResult.fail(message)
        except PreconditionError as exc:
            logger.warning("%s blocked: %s", operation, exc)
            return ServiceResult.fail(str(exc))
        except (AppwriteServiceError, PersistenceError) as exc:
            logger.exception("%s failed in storage", operation)
            return ServiceResult.fail(f"Failed to {operation}: {exc}")
        except ResultsError as exc:
            logger.exception("%s failed", operation)
            return ServiceResult.fail(str(exc))

    def _require_class_term(self, class_term_id: str) -> ClassTerm:
        if not class_term_id:
            raise PreconditionError("Class is required.")
        class_term = self.repository.get_class_term(class_term_id)
        if class_term is None:
            raise PreconditionError(f"Class term {class_term_id} not found.")
        return class_term

    def _grading_system_for(self, class_term: ClassTerm) -> Optional[GradingSystem]:
        if not class_term.school_id:
            return None
        return self.repository.get_grading_system(class_term.school_id)

    def _require_grading_system(self, class_term: ClassTerm) -> GradingSystem:
        grading_system = self._grading_system_for(class_term)
        if grading_system is None:
            raise PreconditionError(
                "No grading system configured for this school. Set one up before viewing results."
            )
        return grading_system

    def _load_rows(
        self, class_term: ClassTerm, grading_system: GradingSystem
    ) -> Tuple[List[StudentResultRow], List[Assessment]]:
        students = self.repository.list_students(class_term.id)
        assessments = self.repository.list_assessments(class_term.term_id, [s.id for s in students])
        rows = build_result_rows(((s.id, s.full_name) for s in students), assessments, grading_system)
        return rows, assessments

    def _ranked_rows(self, class_term: ClassTerm, grading_system: GradingSystem) -> List[StudentResultRow]:
        rows, _ = self._load_rows(class_term, grading_system)
        return rank_students(rows, shared_ties=self.config.ranking_shared_ties)

    # Score entry

    def fetch_assessments(self, class_term_id: str, subject_id: str, term_id: str) -> ServiceResult:
        def action() -> Dict[str, Any]:
            if not (subject_id and term_id):
                raise PreconditionError("Term, class and subject must all be selected.")
            class_term = self._require_class_term(class_term_id)
            grading_system = self._grading_system_for(class_term)
            students = self.repository.list_students(class_term_id)
            assessments = self.repository.list_assessments(term_id, [s.id for s in students], subject_id)
            by_student = {a.student_id: a for a in assessments}

            rows = []
            for student in students:
                assessment = by_student.get(student.id)
                score = evaluate_subject_score(assessment.scores(), grading_system) if assessment else None
                if score is not None and grading_system is None:
                    # Totals still show; grades wait for a grading system.
                    score = SubjectScore(score.ca_total, score.total_score, None, None, False, score.is_complete)
                rows.append(
                    StudentAssessment(
                        student=student,
                        assessment=assessment,
                        status=classify_assessment(assessment),
                        score=score or SubjectScore(None, None, None, None, False, False),
                    )
                )

            return {
                "assessments": rows,
                "statistics": calculate_completion_statistics(students, assessments),
                "class_info": class_term.info(),
                "grading_system": grading_system,
            }

        return self._run("fetch assessments", action)

    def save_assessments(
        self,
        rows: Sequence[Mapping[str, Any]],
        term_id: str,
        subject_id: str,
        school_id: str,
        class_term_id: Optional[str] = None,
        teacher_id: Optional[str] = None,
        teacher_name: str = "",
    ) -> ServiceResult:
        def action() -> Dict[str, Any]:
            if not (term_id and subject_id):
                raise PreconditionError("Term and subject are required to save scores.")
            payloads = [AssessmentInputPayload(**row) for row in rows]
            if not payloads:
                return {"assessments": [], "teacher_info": None}
            student_ids = [payload.student_id for payload in payloads]
            repeated = sorted({student_id for student_id in student_ids if student_ids.count(student_id) > 1})
            if repeated:
                raise PreconditionError(f"Student(s) listed more than once: {', '.join(repeated)}")

            teacher_info = None
            if teacher_id:
                if not class_term_id:
                    raise PreconditionError("Class is required to check the teacher assignment.")
                if self.repository.get_teacher_assignment(teacher_id, subject_id, class_term_id) is None:
                    raise PreconditionError("You are not assigned to teach this subject in this class.")
                teacher_info = {
                    "teacher_id": teacher_id,
                    "is_assigned": True,
                    "message": f"Assessments saved by {teacher_name or teacher_id}",
                }

            grading_system = self.repository.get_grading_system(school_id) if school_id else None
            to_save = []
            for payload in payloads:
                assessment = Assessment(
                    id=payload.id,
                    student_id=payload.student_id,
                    subject_id=subject_id,
                    term_id=term_id,
                    class_term_id=class_term_id,
                    ca1=payload.ca1,
                    ca2=payload.ca2,
                    ca3=payload.ca3,
                    exam=payload.exam,
                    is_absent=payload.is_absent,
                    is_exempt=payload.is_exempt,
                )
                score = evaluate_subject_score(assessment.scores(), grading_system)
                to_save.append(
                    assessment.with_values(
                        total_score=score.total_score,
                        grade=score.grade if grading_system else None,
                        remark=score.remark if grading_system else None,
                    )
                )

            saved = self.repository.save_assessments(to_save, teacher_id)
            if len(saved) != len(to_save):
                raise PersistenceError(f"Saved {len(saved)} of {len(to_save)} assessments")
            logger.info("Saved %s assessments for subject %s, term %s", len(saved), subject_id, term_id)
            return {"assessments": saved, "teacher_info": teacher_info}

        return self._run("save assessments", action)

    def fetch_grading_system(self, school_id: str) -> ServiceResult:
        def action() -> Optional[GradingSystem]:
            if not school_id:
                raise PreconditionError("School is required.")
            grading_system = self.repository.get_grading_system(school_id)
            if grading_system is not None:
                for problem in grading_system.validate():
                    logger.warning("Grading system %s: %s", grading_system.id, problem)
            return grading_system

        return self._run("fetch grading system", action)

    # Results

    def fetch_class_term_results(self, class_term_id: str) -> ServiceResult:
        def action() -> List[StudentResultRow]:
            class_term = self._require_class_term(class_term_id)
            return self._ranked_rows(class_term, self._require_grading_system(class_term))

        return self._run("fetch class results", action)

    def fetch_class_summary(self, class_term_id: str) -> ServiceResult:
        def action() -> Dict[str, Any]:
            class_term = self._require_class_term(class_term_id)
            grading_system = self._require_grading_system(class_term)
            rows = self._ranked_rows(class_term, grading_system)
            pass_mark = pass_mark_of(grading_system)
            subject_ids = subject_ids_in(rows)
            subjects: Dict[str, SubjectStatistics] = {
                subject_id: summarize_subject(subject_id, rows, pass_mark) for subject_id in subject_ids
            }
            summary: ClassSummary = summarize_class(rows, subject_ids, pass_mark)
            return {"summary": summary, "subjects": subjects, "class_info": class_term.info()}

        return self._run("fetch class summary", action)

    def fetch_student_report(self, class_term_id: str, student_id: str) -> ServiceResult:
        def action() -> StudentReport:
            class_term = self._require_class_term(class_term_id)
            grading_system = self._require_grading_system(class_term)
            rows, assessments = self._load_rows(class_term, grading_system)
            rows = rank_students(rows, shared_ties=self.config.ranking_shared_ties)
            row = next((r for r in rows if r.student_id == student_id), None)
            if row is None:
                raise PreconditionError(f"Student {student_id} is not enrolled in this class.")

            positions: Dict[str, Optional[int]] = {}
            for subject_id in row.subjects:
                subject_rows = [a for a in assessments if a.subject_id == subject_id]
                positions[subject_id] = rank_subject(subject_rows).get(student_id)

            return StudentReport(
                row=row,
                position_label=format_position(row.position),
                class_size=len(rows),
                subject_positions=positions,
            )

        return self._run("fetch student report", action)

    # Transitions

    def evaluate_transition_candidates(
        self,
        from_class_term_id: str,
        policy: Optional[EligibilityPolicy] = None,
    ) -> ServiceResult:
        def action() -> Dict[str, Any]:
            class_term = self._require_class_term(from_class_term_id)
            grading_system = self._require_grading_system(class_term)
            rows, _ = self._load_rows(class_term, grading_system)
            candidates, statistics = evaluate_candidates(
                rows,
                pass_mark=pass_mark_of(grading_system),
                policy=policy,
                shared_ties=self.config.ranking_shared_ties,
            )
            return {
                "students": candidates,
                "statistics": statistics,
                "eligible_student_ids": eligible_student_ids(candidates),
                "class_info": class_term.info(),
            }

        return self._run("evaluate transition candidates", action)

    def execute_transitions(self, request: Mapping[str, Any], created_by: str = "") -> ServiceResult:
        def action() -> Dict[str, Any]:
            transition = TransitionPayload(**request).to_request()
            transition.validate()
            self._require_class_term(transition.from_class_term_id)
            if self.repository.get_class_term(transition.to_class_term_id) is None:
                raise PreconditionError("Destination class not found.")

            records = self.repository.create_transitions(transition, created_by)
            count = len(records)
            logger.info(
                "%s %s students from %s to %s",
                transition.transition_type.value,
                count,
                transition.from_class_term_id,
                transition.to_class_term_id,
            )
            noun = "student" if count == 1 else "students"
            return {
                "message": f"Successfully processed {count} {noun}",
                "transitions_created": count,
                "transitions": records,
            }

        return self._run("execute transitions", action)

    def fetch_transition_counts(self, class_term_id: str) -> ServiceResult:
        def action() -> Dict[str, int]:
            self._require_class_term(class_term_id)
            return count_by_type(self.repository.list_transition_types(class_term_id))

        return self._run("fetch transition counts", action)
