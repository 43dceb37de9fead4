from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from skoolresults.core.scores import AssessmentScores


@dataclass(frozen=True)
class Student:
    id: str
    full_name: str = ""
    admission_no: str = ""
    gender: str | None = None
    student_class_term_id: str | None = None


@dataclass(frozen=True)
class Assessment:
    student_id: str
    subject_id: str
    term_id: str
    ca1: float | None = None
    ca2: float | None = None
    ca3: float | None = None
    exam: float | None = None
    is_absent: bool = False
    is_exempt: bool = False
    total_score: float | None = None
    grade: str | None = None
    remark: str | None = None
    is_published: bool = False
    id: str | None = None
    class_term_id: str | None = None
    updated_at: datetime | None = None

    def scores(self) -> AssessmentScores:
        return AssessmentScores(
            ca1=self.ca1,
            ca2=self.ca2,
            ca3=self.ca3,
            exam=self.exam,
            is_absent=self.is_absent,
            is_exempt=self.is_exempt,
        )

    def with_values(self, **changes: Any) -> "Assessment":
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Assessment":
        return cls(
            student_id=str(data["student_id"]),
            subject_id=str(data.get("subject_id", "")),
            term_id=str(data.get("term_id", "")),
            ca1=_optional_float(data.get("ca1")),
            ca2=_optional_float(data.get("ca2")),
            ca3=_optional_float(data.get("ca3")),
            exam=_optional_float(data.get("exam")),
            is_absent=bool(data.get("is_absent", False)),
            is_exempt=bool(data.get("is_exempt", False)),
            total_score=_optional_float(data.get("total_score")),
            grade=data.get("grade"),
            remark=data.get("remark"),
            is_published=bool(data.get("is_published", False)),
            id=data.get("id") or data.get("$id"),
            class_term_id=data.get("class_term_id"),
            updated_at=_parse_iso(data.get("updated_at") or data.get("$updatedAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "subject_id": self.subject_id,
            "term_id": self.term_id,
            "class_term_id": self.class_term_id,
            "ca1": self.ca1,
            "ca2": self.ca2,
            "ca3": self.ca3,
            "exam": self.exam,
            "is_absent": self.is_absent,
            "is_exempt": self.is_exempt,
            "total_score": self.total_score,
            "grade": self.grade,
            "remark": self.remark,
            "is_published": self.is_published,
        }


@dataclass(frozen=True)
class ClassTerm:
    id: str
    class_id: str
    class_name: str
    term_id: str
    term_name: str = ""
    class_level: str = ""
    school_id: str | None = None

    def info(self) -> Dict[str, str]:
        return {
            "class_name": self.class_name,
            "class_level": self.class_level,
            "term_name": self.term_name,
        }


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def _parse_iso(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
