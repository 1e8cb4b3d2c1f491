"""HTTP helpers and exception definitions used by the reporting service."""

from .errors import (
    DatabaseOperationError,
    InvalidDDLError,
    InvalidRequestError,
    ProblemDetails,
    ProblemDetailsException,
    ResourceNotFoundError,
    problem_response,
    register_exception_handlers,
)

__all__ = [
    "DatabaseOperationError",
    "InvalidDDLError",
    "InvalidRequestError",
    "ProblemDetails",
    "ProblemDetailsException",
    "ResourceNotFoundError",
    "problem_response",
    "register_exception_handlers",
]
