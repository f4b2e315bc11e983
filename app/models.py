"""Data models for the university accounting reports."""

import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from app.errors import DecodeError


HOURS_PER_SESSION = 2


class SearchHit(BaseModel):
    """One document returned by the search index."""
    document_id: str
    source: Dict[str, Any]


class AttendanceAggregate(BaseModel):
    """Share of present records for one student; None when undefined."""
    model_config = ConfigDict(coerce_numbers_to_str=True)

    student_id: str
    attendance_rate: Optional[float] = None


class StudentProfile(BaseModel):
    """Denormalized student document kept in the key-value cache."""
    student_id: str
    name: str
    group: str
    course: int
    department: str = Field(validation_alias=AliasChoices("department-name", "department"))
    email: str
    birth: str


class StudentReport(BaseModel):
    """Individual student row of the attendance report."""
    student_id: str
    name: str
    group: str
    course: int
    department: str
    email: str
    birth: str
    attendance_rate: float
    reporting_period: str
    matched_term: str


class DisciplineDescriptor(BaseModel):
    """Discipline document from the search index."""
    model_config = ConfigDict(extra="ignore")

    discipline_id: int
    name: str
    description: str

    @classmethod
    def from_hit(cls, hit: SearchHit) -> "DisciplineDescriptor":
        try:
            return cls.model_validate(hit.source)
        except PydanticValidationError as e:
            raise DecodeError(
                f"discipline document {hit.document_id} has unexpected shape: {e.errors()[0]['msg']}"
            )


class LectureRow(BaseModel):
    """Per-lesson, per-date aggregate as read from the relational store."""
    topic: str
    type: Optional[int] = None
    date: datetime.date
    student_count: int
    equipment: List[Optional[str]] = Field(default_factory=list)


class LectureSummary(BaseModel):
    topic: str
    type: str
    date: datetime.date
    student_count: int
    equipment: List[str]


class CourseReport(BaseModel):
    discipline_id: int
    name: str
    description: str
    reporting_period: str
    lectures: List[LectureSummary]


class GroupRoster(BaseModel):
    """Group identifier and its students' card ids, ordered by card id."""
    group_id: int
    student_ids: List[str]


class DisciplineHours(BaseModel):
    planned_hours: int
    attended_hours: int

    @classmethod
    def from_sessions(cls, planned_sessions: int, attended_sessions: int) -> "DisciplineHours":
        """
        Convert session counts to academic hours.

        Args:
            planned_sessions: Scheduled sessions for the discipline and group
            attended_sessions: Sessions the student was marked present at

        Returns:
            Hours, two per session
        """
        if planned_sessions < 0 or attended_sessions < 0:
            raise DecodeError("session counts cannot be negative")
        return cls(
            planned_hours=planned_sessions * HOURS_PER_SESSION,
            attended_hours=attended_sessions * HOURS_PER_SESSION,
        )


class DisciplineReport(BaseModel):
    discipline_id: int
    name: str
    description: str
    planned_hours: int
    attended_hours: int


class StudentHoursReport(BaseModel):
    student: StudentProfile
    disciplines: List[DisciplineReport]


class GroupReport(BaseModel):
    """Per-student, per-special-discipline hour breakdown for one group."""
    group_id: int
    group_name: str
    students: List[StudentHoursReport]
