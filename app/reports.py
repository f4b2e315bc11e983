"""Report pipelines composing the search index, graph, relational store and profile cache."""

import logging
from contextlib import contextmanager
from datetime import date
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

import numpy as np

from app.container import Stores
from app.errors import NotFound, PipelineError, ReportError
from app.models import (
    CourseReport,
    DisciplineDescriptor,
    DisciplineReport,
    GroupReport,
    LectureRow,
    LectureSummary,
    SearchHit,
    StudentHoursReport,
    StudentReport,
)

logger = logging.getLogger(__name__)

MATERIALS_INDEX = "materials"
MATERIAL_CONTENT_FIELD = "content"
MATERIAL_ID_FIELD = "material_id"
DISCIPLINES_INDEX = "disciplines"
DISCIPLINE_ID_FIELD = "discipline_id"

ATTENDANCE_REPORT_SIZE = 10

# Spring of the last year still has to fit in a date.
MIN_YEAR = 1
MAX_YEAR = 9998

LESSON_TYPES: Dict[int, str] = {
    1: "Lecture",
    2: "Practice",
    3: "Lab",
}


def lesson_type_label(code: Optional[int]) -> str:
    """Map a lesson type code to its label; unknown codes give an empty label."""
    if code is None:
        return ""
    return LESSON_TYPES.get(code, "")


def semester_window(year: int, semester: int) -> Tuple[date, date]:
    """
    Date window of a semester in the academic year starting in ``year``.

    Args:
        year: Calendar year the academic year starts in
        semester: 1 (fall) or 2 (spring)

    Returns:
        Inclusive (start, end) dates
    """
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise ValueError(f"year must be between {MIN_YEAR} and {MAX_YEAR}, got {year}")
    if semester == 1:
        return date(year, 9, 1), date(year, 12, 31)
    if semester == 2:
        return date(year + 1, 3, 1), date(year + 1, 8, 31)
    raise ValueError(f"semester must be 1 or 2, got {semester}")


def reporting_period(start_date: date, end_date: date) -> str:
    return f"{start_date.isoformat()} to {end_date.isoformat()}"


def extract_material_ids(hits: Iterable[SearchHit]) -> List[int]:
    """Material ids of hits carrying a string-encoded integer ``material_id``."""
    material_ids = []
    for hit in hits:
        raw = hit.source.get(MATERIAL_ID_FIELD)
        if not isinstance(raw, str):
            continue
        try:
            material_ids.append(int(raw.strip()))
        except ValueError:
            continue
    return material_ids


def unique(values: Iterable[int]) -> List[int]:
    """Drop repeated values, keeping first-seen order."""
    return list(dict.fromkeys(values))


def is_valid_rate(value: Optional[float]) -> bool:
    """True for a finite attendance rate within [0, 1]."""
    if value is None or not np.isfinite(value):
        return False
    return 0.0 <= value <= 1.0


def summarize_lecture(row: LectureRow) -> LectureSummary:
    equipment = sorted({name for name in row.equipment if name})
    return LectureSummary(
        topic=row.topic,
        type=lesson_type_label(row.type),
        date=row.date,
        student_count=row.student_count,
        equipment=equipment,
    )


@contextmanager
def stage(name: str) -> Iterator[None]:
    """Re-raise store failures inside the block as PipelineError tagged with ``name``."""
    try:
        yield
    except PipelineError:
        raise
    except ReportError as e:
        raise PipelineError(name, e) from e


class ReportComposer:
    """Entry point for the attendance, course and group reports."""

    def __init__(self, stores: Stores):
        self.stores = stores

    def generate_attendance_report(self, term: str, start_date: date, end_date: date) -> List[StudentReport]:
        """
        Students with the lowest attendance at lessons whose materials match ``term``.

        Students whose profile cannot be fetched, or whose rate is undefined,
        are logged and left out. The result is sorted by attendance rate
        ascending and holds at most ten entries.
        """
        with stage("material search"):
            hits = self.stores.search.match_phrase(MATERIALS_INDEX, MATERIAL_CONTENT_FIELD, term)
        material_ids = extract_material_ids(hits)
        if not material_ids:
            logger.info("No materials match term %r", term)
            return []

        with stage("lesson lookup"):
            lesson_ids = unique(self.stores.graph.lessons_for_materials(material_ids))
        if not lesson_ids:
            logger.info("No lessons linked to %d materials for term %r", len(material_ids), term)
            return []

        with stage("attendance aggregation"):
            aggregates = self.stores.relational.attendance_rates(lesson_ids, start_date, end_date)

        period = reporting_period(start_date, end_date)
        reports: List[StudentReport] = []
        for aggregate in aggregates:
            if not is_valid_rate(aggregate.attendance_rate):
                logger.warning(
                    "Skipping student %s: undefined attendance rate %r",
                    aggregate.student_id, aggregate.attendance_rate,
                )
                continue
            try:
                profile = self.stores.profiles.get(aggregate.student_id)
            except ReportError as e:
                logger.warning("Skipping student %s: %s", aggregate.student_id, e)
                continue

            reports.append(StudentReport(
                **profile.model_dump(),
                attendance_rate=float(aggregate.attendance_rate),
                reporting_period=period,
                matched_term=term,
            ))

        # Lowest attendance first surfaces at-risk students
        reports.sort(key=lambda r: (r.attendance_rate, r.student_id))
        return reports[:ATTENDANCE_REPORT_SIZE]

    def generate_course_report(self, year: int, semester: int) -> List[CourseReport]:
        """Lecture summaries for every discipline taught during the semester."""
        start_date, end_date = semester_window(year, semester)

        with stage("discipline lookup"):
            discipline_ids = self.stores.relational.disciplines_between(start_date, end_date)
        if not discipline_ids:
            return []

        with stage("discipline descriptors"):
            descriptors = self._descriptors(discipline_ids)

        period = reporting_period(start_date, end_date)
        reports = []
        for discipline_id in discipline_ids:
            descriptor = descriptors[discipline_id]
            with stage(f"lecture details for discipline {discipline_id}"):
                rows = self.stores.relational.lecture_details(discipline_id, start_date, end_date)

            reports.append(CourseReport(
                discipline_id=descriptor.discipline_id,
                name=descriptor.name,
                description=descriptor.description,
                reporting_period=period,
                lectures=[summarize_lecture(row) for row in rows],
            ))

        logger.info("Course report %d/%d: %d disciplines", year, semester, len(reports))
        return reports

    def generate_group_report(self, group_name: str) -> GroupReport:
        """Planned and attended hours of special disciplines for every student of a group."""
        with stage("group lookup"):
            roster = self.stores.relational.group_roster(group_name)

        with stage("student profiles"):
            profiles = [self.stores.profiles.get(student_id) for student_id in roster.student_ids]

        with stage("special disciplines"):
            discipline_ids = self.stores.relational.special_disciplines(roster.group_id)

        students = []
        for profile in profiles:
            disciplines = []
            for discipline_id in discipline_ids:
                with stage(f"discipline {discipline_id} for student {profile.student_id}"):
                    descriptor = self._descriptor(discipline_id)
                    hours = self.stores.relational.discipline_hours(
                        discipline_id, roster.group_id, profile.student_id
                    )
                disciplines.append(DisciplineReport(
                    discipline_id=descriptor.discipline_id,
                    name=descriptor.name,
                    description=descriptor.description,
                    planned_hours=hours.planned_hours,
                    attended_hours=hours.attended_hours,
                ))
            students.append(StudentHoursReport(student=profile, disciplines=disciplines))

        return GroupReport(group_id=roster.group_id, group_name=group_name, students=students)

    def list_groups(self) -> List[str]:
        with stage("group names"):
            return self.stores.relational.group_names()

    def _descriptors(self, discipline_ids: List[int]) -> Dict[int, DisciplineDescriptor]:
        hits = self.stores.search.match_terms(DISCIPLINES_INDEX, DISCIPLINE_ID_FIELD, discipline_ids)
        if not hits:
            raise NotFound(f"no discipline documents for ids {discipline_ids}")

        descriptors: Dict[int, DisciplineDescriptor] = {}
        for hit in hits:
            descriptor = DisciplineDescriptor.from_hit(hit)
            descriptors.setdefault(descriptor.discipline_id, descriptor)
        for discipline_id in discipline_ids:
            if discipline_id not in descriptors:
                raise NotFound(f"no discipline document for id {discipline_id}")
        return descriptors

    def _descriptor(self, discipline_id: int) -> DisciplineDescriptor:
        hits = self.stores.search.match_terms(DISCIPLINES_INDEX, DISCIPLINE_ID_FIELD, [discipline_id])
        if not hits:
            raise NotFound(f"no discipline document for id {discipline_id}")
        return DisciplineDescriptor.from_hit(hits[0])
