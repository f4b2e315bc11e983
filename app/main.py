"""FastAPI main application for the university accounting reports."""

import logging
import traceback
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import List

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import configure_logging, load_settings
from app.container import Stores
from app.errors import ReportError, ValidationError
from app.models import CourseReport, GroupReport, StudentReport
from app.reports import MAX_YEAR, MIN_YEAR, ReportComposer

settings = load_settings()
configure_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect the stores on startup and release them on shutdown."""
    stores = Stores.connect(settings)
    if settings.verify_connections:
        try:
            stores.verify()
        except ReportError:
            stores.close()
            raise
    app.state.composer = ReportComposer(stores)
    logger.info("Server was started")

    yield

    logger.info("Closing store connections")
    stores.close()


app = FastAPI(title="University Accounting Reports", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins,
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler_json(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions (unknown path, wrong method) and return JSON."""
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def request_validation_handler_json(request: Request, exc: RequestValidationError):
    """Missing or mistyped query parameters are reported by name."""
    errors = exc.errors()
    names = []
    for error in errors:
        loc = error.get("loc", ())
        if loc:
            names.append(str(loc[-1]))
    if errors and errors[0].get("type") == "missing":
        message = f"missing required parameter: {', '.join(names)}"
    else:
        message = f"malformed parameter: {', '.join(names)}"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(ValidationError)
async def validation_error_handler_json(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content=exc.to_dict())


@app.exception_handler(ReportError)
async def report_error_handler_json(request: Request, exc: ReportError):
    """Store and pipeline failures become 500 with the failure message."""
    logger.error("%s %s failed (%s): %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=500, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions and return JSON."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error_detail = str(exc) or type(exc).__name__
    if settings.debug:
        error_detail = f"{error_detail}\n\n{traceback.format_exc()}"
    return JSONResponse(status_code=500, content={"error": error_detail})


def get_composer(request: Request) -> ReportComposer:
    return request.app.state.composer


def parse_date(name: str, value: str) -> date:
    """Parse a YYYY-MM-DD query parameter."""
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"'{name}' must be in the format YYYY-MM-DD")


@app.get("/status", response_class=PlainTextResponse)
def status():
    """Liveness probe."""
    return "OK"


@app.get("/api/v1/attendance-report", response_model=List[StudentReport])
def attendance_report(
    term: str = Query(...),
    start_date: str = Query(..., alias="startDate"),
    end_date: str = Query(..., alias="endDate"),
    composer: ReportComposer = Depends(get_composer),
):
    """Ten students with the lowest attendance at lessons matching a search term."""
    start = parse_date("startDate", start_date)
    end = parse_date("endDate", end_date)
    if start > end:
        raise ValidationError("'startDate' must not be after 'endDate'")

    reports = composer.generate_attendance_report(term, start, end)
    logger.info("Attendance report for %r: %d students", term, len(reports))
    return reports


@app.get("/api/v1/course-report", response_model=List[CourseReport])
def course_report(
    year: int = Query(..., ge=MIN_YEAR, le=MAX_YEAR),
    sem: int = Query(...),
    composer: ReportComposer = Depends(get_composer),
):
    """Lecture summaries per discipline for one semester."""
    if sem not in (1, 2):
        raise ValidationError("'sem' must be 1 or 2")
    return composer.generate_course_report(year, sem)


@app.get("/api/v1/group-report", response_model=GroupReport)
def group_report(
    group: str = Query(...),
    composer: ReportComposer = Depends(get_composer),
):
    """Special-discipline hours for every student of a group."""
    return composer.generate_group_report(group)


@app.get("/api/v1/groups", response_model=List[str])
def groups(composer: ReportComposer = Depends(get_composer)):
    """Names of all groups."""
    return composer.list_groups()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
