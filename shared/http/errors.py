"""RFC 7807 problem responses for the reporting API.

Every error leaves the service as ``application/problem+json``. Routes raise
one of the :class:`ProblemDetailsException` subclasses below; lower layers
raise their own exceptions, which :func:`register_exception_handlers` maps to
a problem class through the ``translations`` table.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Any, Callable, Mapping, cast

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.ddl import DDLParseError
from shared.observability.logger import get_logger

__all__ = [
    "DatabaseOperationError",
    "InvalidDDLError",
    "InvalidRequestError",
    "ProblemDetails",
    "ProblemDetailsException",
    "ProblemFactory",
    "ResourceNotFoundError",
    "problem_response",
    "register_exception_handlers",
]

logger = get_logger(__name__)

PROBLEM_BASE = "https://reporting.ascent.local/problems"


class ProblemDetails(BaseModel):
    """Problem payload; extension members are kept as extra fields."""

    type: str = "about:blank"
    title: str = "An error occurred"
    status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail: str | None = None
    instance: str | None = None
    errors: list[Any] | None = None

    model_config = ConfigDict(extra="allow")


class ProblemDetailsException(RuntimeError):
    """Exception rendered as a problem response by the registered handlers.

    Subclasses set ``default_status_code``, ``default_title`` and
    ``default_type``; ``extensions`` become additional members of the payload.
    """

    default_status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_title = "Service Error"
    default_type = "about:blank"

    def __init__(
        self,
        detail: str | None = None,
        *,
        status_code: int | None = None,
        title: str | None = None,
        extensions: Mapping[str, Any] | None = None,
    ) -> None:
        self.title = title or self.default_title
        self.detail = detail or self.title
        super().__init__(self.detail)
        self.status_code = status_code or self.default_status_code
        self.extensions = dict(extensions or {})

    def to_problem_details(self, *, instance: str | None = None) -> ProblemDetails:
        return ProblemDetails(
            type=self.default_type,
            title=self.title,
            status=self.status_code,
            detail=self.detail,
            instance=instance,
            **self.extensions,
        )


class InvalidDDLError(ProblemDetailsException):
    """The submitted ``CREATE TABLE`` text yields no columns.

    The parser diagnostic becomes ``detail`` unchanged and the failure class
    is exposed as the ``reason`` member.
    """

    default_status_code = status.HTTP_400_BAD_REQUEST
    default_title = "Invalid Table Definition"
    default_type = f"{PROBLEM_BASE}/invalid-ddl"

    def __init__(self, error: DDLParseError) -> None:
        self.error = error
        super().__init__(str(error), extensions={"reason": type(error).__name__})


class InvalidRequestError(ProblemDetailsException):
    """A well-formed request that breaks a business rule."""

    default_status_code = status.HTTP_400_BAD_REQUEST
    default_title = "Invalid Request"
    default_type = f"{PROBLEM_BASE}/invalid-request"


class ResourceNotFoundError(ProblemDetailsException):
    default_status_code = status.HTTP_404_NOT_FOUND
    default_title = "Resource Not Found"
    default_type = f"{PROBLEM_BASE}/not-found"

    def __init__(
        self, resource: str, identifier: str | int, *, detail: str | None = None
    ) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(
            detail or f"{resource} '{identifier}' was not found.",
            extensions={"resource": resource, "identifier": str(identifier)},
        )


class DatabaseOperationError(ProblemDetailsException):
    """A statement or stored procedure failed on the database side."""

    default_status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_title = "Database Operation Failed"
    default_type = f"{PROBLEM_BASE}/database-operation"


ProblemFactory = Callable[[Exception], ProblemDetailsException]


def problem_response(problem: ProblemDetails) -> JSONResponse:
    """Render ``problem`` as an ``application/problem+json`` response."""

    return JSONResponse(
        problem.model_dump(mode="json", exclude_none=True),
        status_code=problem.status,
        media_type="application/problem+json",
    )


def _render(request: Request, problem_exception: ProblemDetailsException) -> JSONResponse:
    if problem_exception.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(
            "request_failed",
            error=problem_exception.detail,
            problem=type(problem_exception).__name__,
            path=request.url.path,
        )
    return problem_response(
        problem_exception.to_problem_details(instance=str(request.url))
    )


def _problem_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return _render(request, cast(ProblemDetailsException, exc))


def _translating_handler(
    factory: ProblemFactory,
) -> Callable[[Request, Exception], JSONResponse]:
    def handler(request: Request, exc: Exception) -> JSONResponse:
        return _render(request, factory(exc))

    return handler


def _http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    http_error = cast(StarletteHTTPException, exc)
    try:
        title = HTTPStatus(http_error.status_code).phrase
    except ValueError:
        title = "HTTP Error"
    detail = http_error.detail
    problem = ProblemDetails(
        title=title,
        status=http_error.status_code,
        detail=None if isinstance(detail, list) else detail,
        errors=detail if isinstance(detail, list) else None,
        instance=str(request.url),
    )
    return problem_response(problem)


def _validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    problem = ProblemDetails(
        type=f"{PROBLEM_BASE}/request-validation",
        title="Request Validation Failed",
        status=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail="One or more request parameters failed validation.",
        instance=str(request.url),
        errors=cast(RequestValidationError, exc).errors(),
    )
    return problem_response(problem)


def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception", error=str(exc), path=request.url.path)
    problem = ProblemDetails(
        type=f"{PROBLEM_BASE}/internal-server-error",
        title="Internal Server Error",
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="An unexpected error occurred while processing the request.",
        instance=str(request.url),
    )
    return problem_response(problem)


def register_exception_handlers(
    app: FastAPI,
    translations: Mapping[type[Exception], ProblemFactory] | None = None,
) -> None:
    """Install the problem handlers on ``app``.

    ``translations`` maps exceptions raised below the HTTP layer, such as
    database failures, to the problem exception they should be reported as.
    """

    app.add_exception_handler(ProblemDetailsException, _problem_exception_handler)
    for exception_type, factory in (translations or {}).items():
        app.add_exception_handler(exception_type, _translating_handler(factory))
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
