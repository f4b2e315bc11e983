"""Error taxonomy shared by the store adapters, pipelines and HTTP layer."""

from typing import Any, Dict


class ReportError(Exception):
    """
    Base class for every failure the reporting core can surface.

    Carries a short ``kind`` code so the HTTP layer and logs can tell
    backend faults apart from bad data without inspecting the message.
    """

    kind: str = "report_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}

    def __str__(self) -> str:
        return self.message


class BackendUnavailable(ReportError):
    """A store could not be reached or rejected the query."""

    kind = "backend_unavailable"


class DecodeError(ReportError):
    """A store answered with data that does not match the expected shape."""

    kind = "decode_error"


class NotFound(ReportError):
    """A required document or row does not exist."""

    kind = "not_found"


class ValidationError(ReportError):
    """A request parameter is missing or malformed."""

    kind = "validation_error"


class PipelineError(ReportError):
    """
    A stage of a report pipeline failed.

    Args:
        stage: Name of the stage that was running
        cause: The adapter error that stopped it
    """

    def __init__(self, stage: str, cause: ReportError) -> None:
        super().__init__(f"{stage}: {cause.message}")
        self.stage = stage
        self.cause = cause
        self.kind = cause.kind
