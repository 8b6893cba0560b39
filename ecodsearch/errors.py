"""Error taxonomy shared by the submission, status and cleanup paths."""

from __future__ import annotations


class JobError(Exception):
    """Base class; ``code`` is the machine-readable error tag sent to clients."""

    status_code = 500
    default_code = "JOB_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_detail(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class InvalidInput(JobError):
    """Malformed or out-of-bounds user input; nothing has been created yet."""

    status_code = 400
    default_code = "INVALID_INPUT"


class NotFound(JobError):
    status_code = 404
    default_code = "NOT_FOUND"


class UpstreamFetchFailure(JobError):
    """A referenced structure could not be downloaded from its repository."""

    status_code = 502
    default_code = "FETCH_FAILED"


class ToolExecutionFailure(JobError):
    status_code = 200
    default_code = "TOOL_FAILED"


class ParseFailure(JobError):
    status_code = 500
    default_code = "PARSE_ERROR"


class CorrelationFailure(JobError):
    default_code = "CORRELATION_FAILED"


__all__ = [
    "JobError",
    "InvalidInput",
    "NotFound",
    "UpstreamFetchFailure",
    "ToolExecutionFailure",
    "ParseFailure",
    "CorrelationFailure",
]
