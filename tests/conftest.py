"""Shared fixtures: in-memory stand-ins for the four store adapters."""

from datetime import date
from typing import Dict, List, Optional

import pytest

from app.container import Stores
from app.errors import BackendUnavailable, NotFound, ReportError
from app.models import (
    AttendanceAggregate,
    DisciplineHours,
    GroupRoster,
    LectureRow,
    SearchHit,
    StudentProfile,
)
from app.reports import ReportComposer


def make_profile(student_id: str, group: str = "CS-101") -> StudentProfile:
    return StudentProfile(
        student_id=student_id,
        name=f"Student {student_id}",
        group=group,
        course=2,
        department="Computer Science",
        email=f"{student_id}@uni.example",
        birth="2003-05-17",
    )


class FakeSearch:
    def __init__(self):
        self.materials: List[SearchHit] = []
        self.disciplines: Dict[int, SearchHit] = {}
        self.fail: Optional[str] = None
        self.calls: List[tuple] = []

    def add_material(self, doc_id: str, material_id):
        self.materials.append(SearchHit(document_id=doc_id, source={"material_id": material_id}))

    def add_discipline(self, discipline_id: int, name: str, description: str = ""):
        self.disciplines[discipline_id] = SearchHit(
            document_id=f"d{discipline_id}",
            source={"discipline_id": str(discipline_id), "name": name, "description": description},
        )

    def match_phrase(self, index, field, phrase):
        self.calls.append(("match_phrase", index, field, phrase))
        if self.fail:
            raise BackendUnavailable(self.fail)
        return list(self.materials)

    def match_terms(self, index, field, terms):
        terms = list(terms)
        self.calls.append(("match_terms", index, field, terms))
        if self.fail:
            raise BackendUnavailable(self.fail)
        return [self.disciplines[t] for t in terms if t in self.disciplines]


class FakeGraph:
    def __init__(self):
        self.edges: Dict[int, List[int]] = {}
        self.received: List[List[int]] = []

    def lessons_for_materials(self, material_ids):
        self.received.append(list(material_ids))
        lessons = []
        for material_id in material_ids:
            lessons.extend(self.edges.get(material_id, []))
        return lessons


class FakeRelational:
    def __init__(self):
        self.rates: List[AttendanceAggregate] = []
        self.rate_calls: List[tuple] = []
        self.discipline_ids: List[int] = []
        self.window_calls: List[tuple] = []
        self.lectures: Dict[int, List[LectureRow]] = {}
        self.special: List[int] = []
        self.rosters: Dict[str, GroupRoster] = {}
        self.sessions: Dict[tuple, tuple] = {}
        self.names: List[str] = []
        self.fail_lectures_for: Optional[int] = None
        self.lecture_calls: List[int] = []

    def attendance_rates(self, lesson_ids, start_date, end_date):
        self.rate_calls.append((list(lesson_ids), start_date, end_date))
        return list(self.rates)

    def disciplines_between(self, start_date, end_date):
        self.window_calls.append((start_date, end_date))
        return list(self.discipline_ids)

    def lecture_details(self, discipline_id, start_date, end_date):
        self.lecture_calls.append(discipline_id)
        if discipline_id == self.fail_lectures_for:
            raise BackendUnavailable("connection reset")
        return list(self.lectures.get(discipline_id, []))

    def special_disciplines(self, group_id):
        return list(self.special)

    def group_roster(self, group_name):
        if group_name not in self.rosters:
            raise NotFound(f"group '{group_name}' not found")
        return self.rosters[group_name]

    def discipline_hours(self, discipline_id, group_id, student_id):
        planned, attended = self.sessions.get((discipline_id, student_id), (0, 0))
        return DisciplineHours.from_sessions(planned, attended)

    def group_names(self):
        return list(self.names)


class FakeProfiles:
    def __init__(self):
        self.profiles: Dict[str, StudentProfile] = {}
        self.requested: List[str] = []
        self.failures: Dict[str, ReportError] = {}

    def add(self, *student_ids: str):
        for student_id in student_ids:
            self.profiles[student_id] = make_profile(student_id)

    def get(self, student_id):
        self.requested.append(student_id)
        if student_id in self.failures:
            raise self.failures[student_id]
        if student_id not in self.profiles:
            raise NotFound(f"no cached profile for student {student_id}")
        return self.profiles[student_id]


@pytest.fixture
def stores():
    return Stores(
        search=FakeSearch(),
        graph=FakeGraph(),
        relational=FakeRelational(),
        profiles=FakeProfiles(),
    )


@pytest.fixture
def composer(stores):
    return ReportComposer(stores)


@pytest.fixture
def calculus_stores(stores):
    """Three students attended lessons linked to calculus materials in January 2024."""
    stores.search.add_material("m1", "11")
    stores.search.add_material("m2", "12")
    stores.graph.edges = {11: [101, 102], 12: [102]}
    stores.relational.rates = [
        AttendanceAggregate(student_id="S3", attendance_rate=0.25),
        AttendanceAggregate(student_id="S1", attendance_rate=0.9),
        AttendanceAggregate(student_id="S2", attendance_rate=0.5),
    ]
    stores.profiles.add("S1", "S2", "S3")
    return stores


@pytest.fixture
def january():
    return date(2024, 1, 1), date(2024, 1, 31)
