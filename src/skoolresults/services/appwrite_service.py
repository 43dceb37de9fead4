from datetime import datetime, timezone
import json
import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

from appwrite.client import Client
from appwrite.exception import AppwriteException
from appwrite.id import ID
from appwrite.query import Query
from appwrite.services.databases import Databases

from skoolresults.config.settings import settings
from skoolresults.core.entities import Assessment, ClassTerm, Student
from skoolresults.core.grading import GradingSystem
from skoolresults.core.scores import SCORE_FIELDS, validate_score
from skoolresults.core.transitions import TransitionRequest

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
# Appwrite caps the number of values in one Query.equal.
MAX_QUERY_VALUES = 100

ASSESSMENT_FIELDS = (
    "student_id",
    "subject_id",
    "term_id",
    "class_term_id",
    "ca1",
    "ca2",
    "ca3",
    "exam",
    "is_absent",
    "is_exempt",
    "total_score",
    "grade",
    "remark",
    "is_published",
)


class AppwriteServiceError(Exception):
    pass


class AppwriteService:
    def __init__(
        self,
        endpoint: str,
        project_id: str,
        api_key: str,
        database_id: str,
        class_terms_collection_id: str,
        enrollments_collection_id: str,
        assessments_collection_id: str,
        grading_systems_collection_id: str,
        transitions_collection_id: str,
        teacher_subjects_collection_id: str,
    ) -> None:
        if not endpoint:
            raise AppwriteServiceError("Missing APPWRITE_ENDPOINT in environment")
        if not project_id:
            raise AppwriteServiceError("Missing APPWRITE_PROJECT_ID in environment")
        if not api_key:
            raise AppwriteServiceError("Missing APPWRITE_API_KEY in environment")
        if not database_id:
            raise AppwriteServiceError("Missing APPWRITE_DATABASE_ID in environment")

        self.database_id = database_id
        self.class_terms_collection_id = class_terms_collection_id
        self.enrollments_collection_id = enrollments_collection_id
        self.assessments_collection_id = assessments_collection_id
        self.grading_systems_collection_id = grading_systems_collection_id
        self.transitions_collection_id = transitions_collection_id
        self.teacher_subjects_collection_id = teacher_subjects_collection_id

        client = Client()
        client.set_endpoint(endpoint.rstrip("/"))
        client.set_project(project_id)
        client.set_key(api_key)

        self.db = Databases(client)

    @classmethod
    def from_settings(cls) -> "AppwriteService":
        return cls(
            endpoint=settings.appwrite_endpoint,
            project_id=settings.appwrite_project_id,
            api_key=settings.appwrite_api_key,
            database_id=settings.appwrite_database_id,
            class_terms_collection_id=settings.appwrite_class_terms_collection_id,
            enrollments_collection_id=settings.appwrite_enrollments_collection_id,
            assessments_collection_id=settings.appwrite_assessments_collection_id,
            grading_systems_collection_id=settings.appwrite_grading_systems_collection_id,
            transitions_collection_id=settings.appwrite_transitions_collection_id,
            teacher_subjects_collection_id=settings.appwrite_teacher_subjects_collection_id,
        )

    @staticmethod
    def _to_iso(value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()

    def _list_documents(self, collection_id: str, queries: List[str]) -> List[Dict]:
        documents: List[Dict] = []
        offset = 0
        while True:
            try:
                result = self.db.list_documents(
                    self.database_id,
                    collection_id,
                    queries=[*queries, Query.limit(PAGE_SIZE), Query.offset(offset)],
                )
            except AppwriteException as exc:
                raise AppwriteServiceError(str(exc)) from exc
            page = list(result.get("documents", []))
            documents.extend(page)
            if len(page) < PAGE_SIZE:
                return documents
            offset += PAGE_SIZE

    def _list_for_students(self, collection_id: str, queries: List[str], student_ids: Sequence[str]) -> List[Dict]:
        documents: List[Dict] = []
        for start in range(0, len(student_ids), MAX_QUERY_VALUES):
            chunk = list(student_ids[start:start + MAX_QUERY_VALUES])
            documents.extend(self._list_documents(collection_id, [*queries, Query.equal("student_id", chunk)]))
        return documents

    def _create_document(self, collection_id: str, data: Dict, document_id: Optional[str] = None) -> Dict:
        try:
            return self.db.create_document(
                self.database_id,
                collection_id,
                document_id or ID.unique(),
                data,
            )
        except AppwriteException as exc:
            raise AppwriteServiceError(str(exc)) from exc

    def _get_document(self, collection_id: str, document_id: str) -> Optional[Dict]:
        try:
            return self.db.get_document(self.database_id, collection_id, document_id)
        except AppwriteException as exc:
            if getattr(exc, "code", None) == 404:
                return None
            raise AppwriteServiceError(str(exc)) from exc

    def _update_document(self, collection_id: str, document_id: str, data: Dict) -> Dict:
        try:
            return self.db.update_document(self.database_id, collection_id, document_id, data)
        except AppwriteException as exc:
            raise AppwriteServiceError(str(exc)) from exc

    def _delete_document(self, collection_id: str, document_id: str) -> None:
        try:
            self.db.delete_document(self.database_id, collection_id, document_id)
        except AppwriteException as exc:
            raise AppwriteServiceError(str(exc)) from exc

    def _find_first(self, collection_id: str, queries: List[str]) -> Optional[Dict]:
        try:
            result = self.db.list_documents(self.database_id, collection_id, queries=[*queries, Query.limit(1)])
        except AppwriteException as exc:
            raise AppwriteServiceError(str(exc)) from exc
        docs = list(result.get("documents", []))
        if not docs:
            return None
        return docs[0]

    def get_class_term(self, class_term_id: str) -> Optional[ClassTerm]:
        doc = self._get_document(self.class_terms_collection_id, class_term_id)
        if not doc:
            return None
        return ClassTerm(
            id=doc["$id"],
            class_id=str(doc.get("class_id", "")),
            class_name=str(doc.get("class_name", "")),
            class_level=str(doc.get("class_level", "")),
            term_id=str(doc.get("term_id", "")),
            term_name=str(doc.get("term_name", "")),
            school_id=doc.get("school_id"),
        )

    def list_students(self, class_term_id: str) -> List[Student]:
        docs = self._list_documents(
            self.enrollments_collection_id,
            [
                Query.equal("class_term_id", [class_term_id]),
                Query.equal("status", ["ACTIVE"]),
            ],
        )
        students = [
            Student(
                id=str(doc["student_id"]),
                full_name=str(doc.get("full_name", "")),
                admission_no=str(doc.get("admission_no", "")),
                gender=doc.get("gender"),
                student_class_term_id=doc["$id"],
            )
            for doc in docs
        ]
        students.sort(key=lambda student: (student.full_name.casefold(), student.id))
        return students

    def list_assessments(
        self, term_id: str, student_ids: Sequence[str], subject_id: Optional[str] = None
    ) -> List[Assessment]:
        if not student_ids:
            return []
        queries = [Query.equal("term_id", [term_id])]
        if subject_id:
            queries.append(Query.equal("subject_id", [subject_id]))
        documents = self._list_for_students(self.assessments_collection_id, queries, list(student_ids))
        return [Assessment.from_dict(doc) for doc in documents]

    def get_grading_system(self, school_id: str) -> Optional[GradingSystem]:
        doc = self._find_first(
            self.grading_systems_collection_id,
            [
                Query.equal("school_id", [school_id]),
                Query.equal("is_default", [True]),
            ],
        )
        if not doc:
            return None

        row = dict(doc)
        levels = row.get("levels")
        if isinstance(levels, str):
            try:
                row["levels"] = json.loads(levels) if levels else []
            except ValueError as exc:
                raise AppwriteServiceError(f"Grading system {doc['$id']} has unreadable levels") from exc
        return GradingSystem.from_dict(row)

    def get_teacher_assignment(self, teacher_id: str, subject_id: str, class_term_id: str) -> Optional[Dict]:
        return self._find_first(
            self.teacher_subjects_collection_id,
            [
                Query.equal("teacher_id", [teacher_id]),
                Query.equal("subject_id", [subject_id]),
                Query.equal("class_term_id", [class_term_id]),
            ],
        )

    def save_assessments(self, rows: Sequence[Assessment], edited_by: Optional[str] = None) -> List[Assessment]:
        """Create or update a batch of assessments, all or nothing.

        Rows are matched on (student, subject, term). Published rows are refused. If a
        write fails, the writes already made in this batch are undone before the error
        is raised.
        """
        if not rows:
            return []

        seen: Set[Tuple[str, str, str]] = set()
        for row in rows:
            key = (row.student_id, row.subject_id, row.term_id)
            if key in seen:
                raise AppwriteServiceError(f"Assessment for student {row.student_id} is listed twice in the batch")
            seen.add(key)

        existing_by_key: Dict[Tuple[str, str, str], Dict] = {}
        for term_id, subject_id in {(row.term_id, row.subject_id) for row in rows}:
            student_ids = [row.student_id for row in rows if row.term_id == term_id and row.subject_id == subject_id]
            for doc in self._list_for_students(
                self.assessments_collection_id,
                [Query.equal("term_id", [term_id]), Query.equal("subject_id", [subject_id])],
                student_ids,
            ):
                existing_by_key[(doc["student_id"], doc["subject_id"], doc["term_id"])] = doc

        for row in rows:
            for field_name in SCORE_FIELDS:
                check = validate_score(field_name, getattr(row, field_name))
                if not check.is_valid:
                    raise AppwriteServiceError(f"{field_name} for student {row.student_id}: {check.error}")
            existing = existing_by_key.get((row.student_id, row.subject_id, row.term_id))
            if existing and existing.get("is_published"):
                raise AppwriteServiceError(
                    f"Assessment for student {row.student_id} is published and cannot be edited"
                )

        saved: List[Assessment] = []
        undo: List[Tuple[str, Optional[Dict]]] = []
        now = self._to_iso(datetime.now(timezone.utc))
        try:
            for row in rows:
                payload = {key: value for key, value in row.to_dict().items() if key in ASSESSMENT_FIELDS}
                payload["is_published"] = False
                payload["updated_at"] = now
                if edited_by:
                    payload["edited_by"] = edited_by

                existing = existing_by_key.get((row.student_id, row.subject_id, row.term_id))
                if existing:
                    self._warn_if_stale(row, existing)
                    doc = self._update_document(self.assessments_collection_id, existing["$id"], payload)
                    undo.append((existing["$id"], {k: existing.get(k) for k in payload}))
                else:
                    doc = self._create_document(self.assessments_collection_id, payload)
                    undo.append((doc["$id"], None))
                saved.append(Assessment.from_dict(doc))
        except AppwriteServiceError:
            self._undo_assessments(undo)
            raise
        return saved

    @staticmethod
    def _warn_if_stale(row: Assessment, existing: Dict) -> None:
        stored = Assessment.from_dict(existing).updated_at
        if not (row.updated_at and stored):
            return
        loaded = row.updated_at if row.updated_at.tzinfo else row.updated_at.replace(tzinfo=timezone.utc)
        stored = stored if stored.tzinfo else stored.replace(tzinfo=timezone.utc)
        if stored > loaded:
            logger.warning(
                "Overwriting assessment %s changed at %s since it was loaded at %s",
                existing["$id"],
                stored.isoformat(),
                loaded.isoformat(),
            )

    def _undo_assessments(self, undo: List[Tuple[str, Optional[Dict]]]) -> None:
        for document_id, previous in reversed(undo):
            try:
                if previous is None:
                    self._delete_document(self.assessments_collection_id, document_id)
                else:
                    self._update_document(self.assessments_collection_id, document_id, previous)
            except AppwriteServiceError:
                logger.exception("Could not roll back assessment %s", document_id)

    def create_transitions(self, request: TransitionRequest, created_by: str) -> List[Dict]:
        """Move every selected student to the destination class-term, or none of them."""
        sources: Dict[str, Dict] = {}
        for student_id in request.student_ids:
            source = self._find_first(
                self.enrollments_collection_id,
                [
                    Query.equal("student_id", [student_id]),
                    Query.equal("class_term_id", [request.from_class_term_id]),
                ],
            )
            if not source:
                raise AppwriteServiceError(f"Student {student_id} not found in source class")
            already = self._find_first(
                self.enrollments_collection_id,
                [
                    Query.equal("student_id", [student_id]),
                    Query.equal("class_term_id", [request.to_class_term_id]),
                ],
            )
            sources[student_id] = source
            if already:
                raise AppwriteServiceError(f"Student {student_id} already exists in destination class")

        created: List[Tuple[str, str]] = []
        records: List[Dict] = []
        now = self._to_iso(datetime.now(timezone.utc))
        try:
            for student_id in request.student_ids:
                source = sources[student_id]
                enrollment = self._create_document(
                    self.enrollments_collection_id,
                    {
                        "student_id": student_id,
                        "class_term_id": request.to_class_term_id,
                        "full_name": source.get("full_name", ""),
                        "admission_no": source.get("admission_no", ""),
                        "gender": source.get("gender"),
                        "status": "ACTIVE",
                    },
                )
                created.append((self.enrollments_collection_id, enrollment["$id"]))

                record = self._create_document(
                    self.transitions_collection_id,
                    {
                        "student_id": student_id,
                        "from_class_term_id": request.from_class_term_id,
                        "to_class_term_id": request.to_class_term_id,
                        "transition_type": request.transition_type.value,
                        "transition_date": now,
                        "notes": request.notes or "",
                        "created_by": created_by,
                    },
                )
                created.append((self.transitions_collection_id, record["$id"]))
                records.append(
                    {
                        "student_id": student_id,
                        "transition_id": record["$id"],
                        "new_student_class_term_id": enrollment["$id"],
                    }
                )
        except AppwriteServiceError:
            for collection_id, document_id in reversed(created):
                try:
                    self._delete_document(collection_id, document_id)
                except AppwriteServiceError:
                    logger.exception("Could not roll back %s/%s", collection_id, document_id)
            raise
        return records

    def list_transition_types(self, class_term_id: str) -> List[str]:
        docs = self._list_documents(
            self.transitions_collection_id,
            [
                Query.equal("to_class_term_id", [class_term_id]),
            ],
        )
        return [str(doc.get("transition_type", "")) for doc in docs]
