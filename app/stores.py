"""Typed adapters over the search index, graph, relational store and profile cache."""

import json
import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Type, TypeVar

from elastic_transport import TransportError
from elasticsearch import ApiError, Elasticsearch
from neo4j import Driver
from neo4j.exceptions import DriverError, Neo4jError
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from app import queries
from app.errors import BackendUnavailable, DecodeError, NotFound
from app.models import (
    AttendanceAggregate,
    DisciplineHours,
    GroupRoster,
    LectureRow,
    SearchHit,
    StudentProfile,
)

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


class SearchAdapter:
    """Phrase and term lookups against Elasticsearch."""

    def __init__(self, client: Elasticsearch, max_hits: int = 100):
        self.client = client
        self.max_hits = max_hits

    def match_phrase(self, index: str, field: str, phrase: str) -> List[SearchHit]:
        return self._search(index, {"match_phrase": {field: phrase}}, self.max_hits)

    def match_terms(self, index: str, field: str, terms: Iterable[Any]) -> List[SearchHit]:
        values = list(dict.fromkeys(terms))
        if not values:
            return []
        # The default result window (10) would silently cut batch lookups.
        size = max(len(values), self.max_hits)
        return self._search(index, {"terms": {field: values}}, size)

    def ping(self) -> None:
        try:
            self.client.info()
        except (ApiError, TransportError) as e:
            raise BackendUnavailable(f"search index unreachable: {e}")

    def _search(self, index: str, query: Dict[str, Any], size: int) -> List[SearchHit]:
        try:
            response = self.client.search(index=index, query=query, size=size)
        except (ApiError, TransportError) as e:
            raise BackendUnavailable(f"search on '{index}' failed: {e}")
        return decode_hits(response, index)


def decode_hits(response: Mapping[str, Any], index: str) -> List[SearchHit]:
    """
    Decode a search response body into hits.

    Args:
        response: Search response (``hits.hits`` list of ``_id``/``_source`` objects)
        index: Index name, used in error messages

    Returns:
        Hits in the order returned by the index
    """
    try:
        raw_hits = response["hits"]["hits"]
    except (KeyError, TypeError):
        raise DecodeError(f"search response from '{index}' has no hits list")
    if not isinstance(raw_hits, list):
        raise DecodeError(f"search response from '{index}' has no hits list")

    hits = []
    for raw in raw_hits:
        if not isinstance(raw, Mapping) or not isinstance(raw.get("_source"), Mapping):
            raise DecodeError(f"search hit from '{index}' has no _source object")
        hits.append(SearchHit(document_id=str(raw.get("_id", "")), source=dict(raw["_source"])))
    return hits


class GraphAdapter:
    """Material to lesson traversal in Neo4j."""

    def __init__(self, driver: Driver, database: Optional[str] = None):
        self.driver = driver
        self.database = database

    def lessons_for_materials(self, material_ids: List[int]) -> List[int]:
        if not material_ids:
            return []
        try:
            with self.driver.session(database=self.database) as session:
                result = session.run(queries.LESSONS_FOR_MATERIALS, material_ids=list(material_ids))
                values = [record["lesson_id"] for record in result]
        except (Neo4jError, DriverError) as e:
            raise BackendUnavailable(f"lesson traversal failed: {e}")

        lesson_ids = []
        for value in values:
            if isinstance(value, bool) or not isinstance(value, int):
                raise DecodeError(f"lesson id {value!r} is not an integer")
            lesson_ids.append(value)
        return lesson_ids

    def ping(self) -> None:
        try:
            self.driver.verify_connectivity()
        except (Neo4jError, DriverError) as e:
            raise BackendUnavailable(f"graph store unreachable: {e}")


class RelationalAdapter:
    """Parameterized read queries against PostgreSQL."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def attendance_rates(self, lesson_ids: List[int], start_date: date, end_date: date) -> List[AttendanceAggregate]:
        rows = self._fetch(
            queries.ATTENDANCE_RATES,
            lesson_ids=list(lesson_ids), start_date=start_date, end_date=end_date,
        )
        return _decode_rows(AttendanceAggregate, rows)

    def disciplines_between(self, start_date: date, end_date: date) -> List[int]:
        rows = self._fetch(queries.DISCIPLINES_BETWEEN, start_date=start_date, end_date=end_date)
        return [_int_column(row, "discipline_id") for row in rows]

    def lecture_details(self, discipline_id: int, start_date: date, end_date: date) -> List[LectureRow]:
        rows = self._fetch(
            queries.LECTURE_DETAILS,
            discipline_id=discipline_id, start_date=start_date, end_date=end_date,
        )
        return _decode_rows(LectureRow, rows)

    def special_disciplines(self, group_id: int) -> List[int]:
        rows = self._fetch(queries.SPECIAL_DISCIPLINES, group_id=group_id)
        return [_int_column(row, "discipline_id") for row in rows]

    def group_roster(self, group_name: str) -> GroupRoster:
        rows = self._fetch(queries.GROUP_ROSTER, group_name=group_name)
        if not rows:
            raise NotFound(f"group '{group_name}' not found")

        group_id = _int_column(rows[0], "group_id")
        student_ids = [str(row["card_id"]) for row in rows if row.get("card_id") is not None]
        return GroupRoster(group_id=group_id, student_ids=student_ids)

    def discipline_hours(self, discipline_id: int, group_id: int, student_id: str) -> DisciplineHours:
        planned = self._fetch(queries.PLANNED_SESSIONS, discipline_id=discipline_id, group_id=group_id)
        attended = self._fetch(
            queries.ATTENDED_SESSIONS,
            discipline_id=discipline_id, group_id=group_id, student_id=student_id,
        )
        if len(planned) != 1 or len(attended) != 1:
            raise DecodeError("session count query did not return exactly one row")
        return DisciplineHours.from_sessions(
            _int_column(planned[0], "sessions"),
            _int_column(attended[0], "sessions"),
        )

    def group_names(self) -> List[str]:
        rows = self._fetch(queries.GROUP_NAMES)
        names = []
        for row in rows:
            name = row.get("name")
            if not isinstance(name, str):
                raise DecodeError(f"group name {name!r} is not a string")
            names.append(name)
        return names

    def ping(self) -> None:
        self._fetch("SELECT 1 AS ok")

    def _fetch(self, query: str, **params: Any) -> List[Dict[str, Any]]:
        try:
            with self.engine.connect() as conn:
                result = conn.execute(text(query), params)
                return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as e:
            raise BackendUnavailable(f"relational query failed: {e}")


def _int_column(row: Mapping[str, Any], column: str) -> int:
    value = row.get(column)
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"column '{column}' holds {value!r}, expected an integer")
    return value


def _decode_rows(model: Type[RecordT], rows: List[Dict[str, Any]]) -> List[RecordT]:
    try:
        return [model.model_validate(row) for row in rows]
    except PydanticValidationError as e:
        raise DecodeError(f"unexpected {model.__name__} row: {e.errors()[0]['msg']}")


class ProfileCache:
    """Student profiles stored as JSON under ``student:<id>``."""

    KEY_PREFIX = "student:"

    def __init__(self, client: Redis):
        self.client = client

    def get(self, student_id: str) -> StudentProfile:
        key = f"{self.KEY_PREFIX}{student_id}"
        try:
            raw = self.client.get(key)
        except RedisError as e:
            raise BackendUnavailable(f"profile cache lookup for {key} failed: {e}")
        if raw is None:
            raise NotFound(f"no cached profile for student {student_id}")

        try:
            document = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise DecodeError(f"profile for student {student_id} is not valid JSON: {e}")
        if not isinstance(document, dict):
            raise DecodeError(f"profile for student {student_id} is not a JSON object")

        document["student_id"] = student_id
        try:
            return StudentProfile.model_validate(document)
        except PydanticValidationError as e:
            raise DecodeError(f"profile for student {student_id} has unexpected shape: {e.errors()[0]['msg']}")

    def ping(self) -> None:
        try:
            self.client.ping()
        except RedisError as e:
            raise BackendUnavailable(f"profile cache unreachable: {e}")
