from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

DEFAULT_PASS_MARK = 40.0

# (min_score, grade) checked top-down; used when a school has no grading system.
DEFAULT_GRADE_BANDS: List[Tuple[float, str]] = [
    (70, "A"),
    (60, "B"),
    (50, "C"),
    (45, "D"),
    (40, "E"),
    (0, "F"),
]


@dataclass(frozen=True)
class GradingLevel:
    grade: str
    min_score: float
    max_score: float
    remark: Optional[str] = None


@dataclass(frozen=True)
class GradeResult:
    grade: str
    remark: Optional[str]
    passed: bool


@dataclass(frozen=True)
class GradingSystem:
    levels: Tuple[GradingLevel, ...]
    pass_mark: float = DEFAULT_PASS_MARK
    id: Optional[str] = None
    school_id: Optional[str] = None
    name: str = ""

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.levels, key=lambda level: level.min_score, reverse=True))
        object.__setattr__(self, "levels", ordered)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GradingSystem":
        """Build a grading system from a loosely typed mapping.

        Accepts both camelCase (``passMark``, ``minScore``) and snake_case keys.
        """
        raw_levels = data.get("levels") or []
        levels = [
            GradingLevel(
                grade=str(level["grade"]),
                min_score=float(_pick(level, "min_score", "minScore")),
                max_score=float(_pick(level, "max_score", "maxScore")),
                remark=level.get("remark"),
            )
            for level in raw_levels
        ]
        pass_mark = _pick(data, "pass_mark", "passMark", default=DEFAULT_PASS_MARK)
        return cls(
            levels=tuple(levels),
            pass_mark=float(pass_mark),
            id=data.get("id") or data.get("$id"),
            school_id=_pick(data, "school_id", "schoolId", default=None),
            name=str(data.get("name", "")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "school_id": self.school_id,
            "name": self.name,
            "pass_mark": self.pass_mark,
            "levels": [
                {
                    "grade": level.grade,
                    "min_score": level.min_score,
                    "max_score": level.max_score,
                    "remark": level.remark,
                }
                for level in self.levels
            ],
        }

    def validate(self) -> List[str]:
        """Return gap/overlap problems in the level table; empty when it partitions [0, 100].

        Adjacent levels are contiguous when the lower level's max is within one point of
        the upper level's min (whole-number tables such as 70-100 / 60-69).
        """
        problems: List[str] = []
        if not self.levels:
            return ["Grading system has no levels"]

        for level in self.levels:
            if level.min_score > level.max_score:
                problems.append(f"{level.grade}: min score {level.min_score:g} exceeds max score {level.max_score:g}")

        if self.levels[0].max_score < 100:
            problems.append(f"Top level {self.levels[0].grade} stops at {self.levels[0].max_score:g}, not 100")
        if self.levels[-1].min_score != 0:
            problems.append(f"Lowest level {self.levels[-1].grade} starts at {self.levels[-1].min_score:g}, not 0")

        for upper, lower in zip(self.levels, self.levels[1:]):
            if lower.max_score >= upper.min_score:
                problems.append(f"{lower.grade} overlaps {upper.grade}")
            elif upper.min_score - lower.max_score > 1:
                problems.append(f"Gap between {lower.grade} and {upper.grade}")
        return problems


def _pick(data: Mapping[str, Any], *keys: str, default: Any = KeyError) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    if default is KeyError:
        raise KeyError(keys[0])
    return default


def _default_grade(total: float) -> str:
    for min_score, letter in DEFAULT_GRADE_BANDS:
        if total >= min_score:
            return letter
    return "F"


def resolve_grade(total: Optional[float], grading_system: Optional[GradingSystem] = None) -> Optional[GradeResult]:
    if total is None or (isinstance(total, float) and math.isnan(total)):
        return None

    if grading_system is None:
        return GradeResult(grade=_default_grade(total), remark=None, passed=total >= DEFAULT_PASS_MARK)

    if not grading_system.levels:
        return None

    passed = total >= grading_system.pass_mark
    for level in grading_system.levels:
        if level.min_score <= total <= level.max_score:
            return GradeResult(grade=level.grade, remark=level.remark, passed=passed)

    lowest = grading_system.levels[-1]
    return GradeResult(grade=lowest.grade, remark=lowest.remark, passed=passed)


def pass_mark_of(grading_system: Optional[GradingSystem]) -> float:
    return grading_system.pass_mark if grading_system is not None else DEFAULT_PASS_MARK


def is_passing(score: Optional[float], pass_mark: float = DEFAULT_PASS_MARK) -> bool:
    if score is None:
        return False
    return score >= pass_mark


def pass_rate(scores: Iterable[float], pass_mark: float = DEFAULT_PASS_MARK) -> float:
    values = list(scores)
    if not values:
        return 0.0
    passed = sum(1 for score in values if score >= pass_mark)
    return (passed / len(values)) * 100
