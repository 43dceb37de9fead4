from dataclasses import dataclass
import logging
import os
from dotenv import load_dotenv


load_dotenv()


def _to_bool(value: str) -> bool:
    return value.strip().lower() in {"true", "1", "yes", "y", "on"}


def _to_float(value: str, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Settings:
    appwrite_endpoint: str = os.getenv("APPWRITE_ENDPOINT", "")
    appwrite_project_id: str = os.getenv("APPWRITE_PROJECT_ID", "")
    appwrite_api_key: str = os.getenv("APPWRITE_API_KEY") or os.getenv("APPWRITE_FUNCTION_API_KEY", "")
    appwrite_database_id: str = os.getenv("APPWRITE_DATABASE_ID", "")

    appwrite_class_terms_collection_id: str = os.getenv("APPWRITE_CLASS_TERMS_COLLECTION_ID", "class_terms")
    appwrite_enrollments_collection_id: str = os.getenv(
        "APPWRITE_ENROLLMENTS_COLLECTION_ID", "student_class_terms"
    )
    appwrite_assessments_collection_id: str = os.getenv("APPWRITE_ASSESSMENTS_COLLECTION_ID", "assessments")
    appwrite_grading_systems_collection_id: str = os.getenv(
        "APPWRITE_GRADING_SYSTEMS_COLLECTION_ID", "grading_systems"
    )
    appwrite_transitions_collection_id: str = os.getenv("APPWRITE_TRANSITIONS_COLLECTION_ID", "student_transitions")
    appwrite_teacher_subjects_collection_id: str = os.getenv(
        "APPWRITE_TEACHER_SUBJECTS_COLLECTION_ID", "teacher_subjects"
    )

    default_pass_mark: float = _to_float(os.getenv("DEFAULT_PASS_MARK", "40"), 40.0)
    ranking_shared_ties: bool = _to_bool(os.getenv("RANKING_SHARED_TIES", "false"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()


def configure_logging(level: str = "") -> None:
    logging.basicConfig(
        level=level or settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
