"""Error taxonomy shared by the registry, injector, supervisor and pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence


class RoutekitError(Exception):
    """Base class for every error raised by routekit itself."""


# ---------------------------------------------------------------------------
# Setup-time errors
# ---------------------------------------------------------------------------


class ConfigurationError(RoutekitError, ValueError):
    """Invalid settings or document configuration."""


class RouteDefinitionError(RoutekitError, ValueError):
    """A route declaration is malformed."""


class RouteConflictError(RoutekitError):
    """A route collides with one that is already registered."""

    def __init__(self, message: str, *, method: str, path: str) -> None:
        super().__init__(message)
        self.method = method
        self.path = path


class DuplicateRouteError(RouteConflictError):
    """The (method, normalized path) pair is already registered."""


class AmbiguousRouteError(RouteConflictError):
    """Two templates overlap with a literal and a parameter in one position."""

    def __init__(
        self, message: str, *, method: str, path: str, existing: str
    ) -> None:
        super().__init__(message, method=method, path=path)
        self.existing = existing


class RegistryFrozenError(RoutekitError):
    """Registration was attempted after the registry was frozen."""


class InvalidSchemaError(RoutekitError, TypeError):
    """A schema reference is absent or cannot be used by the adapter."""


class DependencyCycleError(RoutekitError):
    """A dependency descriptor depends on itself, directly or transitively."""

    def __init__(self, chain: Sequence[str]) -> None:
        self.chain = list(chain)
        super().__init__("Dependency cycle detected: " + " -> ".join(self.chain))


# ---------------------------------------------------------------------------
# Per-request errors
# ---------------------------------------------------------------------------


class RouteNotFound(RoutekitError, LookupError):
    """No registered route matches the request."""

    def __init__(self, method: str, path: str) -> None:
        super().__init__(f"No route for {method} {path}")
        self.method = method
        self.path = path


@dataclass(frozen=True)
class FieldError:
    """One violated field: location, message and machine-readable type."""

    loc: tuple[str | int, ...]
    msg: str
    type: str = "value_error"
    input: Any = None

    @property
    def field(self) -> str:
        return ".".join(str(part) for part in self.loc)

    def as_dict(self) -> dict[str, Any]:
        return {
            "loc": list(self.loc),
            "field": self.field,
            "msg": self.msg,
            "type": self.type,
        }


class ValidationError(RoutekitError):
    """Validation failed for one schema; carries one entry per violation."""

    def __init__(
        self,
        field_errors: Sequence[FieldError],
        message: str = "Validation Error",
    ) -> None:
        super().__init__(message)
        self.field_errors = list(field_errors)

    def errors(self) -> list[dict[str, Any]]:
        return [err.as_dict() for err in self.field_errors]

    @property
    def fields(self) -> list[str]:
        return [err.field for err in self.field_errors]

    def with_prefix(self, *prefix: str | int) -> "ValidationError":
        """Return a copy whose locations start with *prefix*."""

        return type(self)(
            [
                FieldError(
                    tuple(prefix) + err.loc, err.msg, err.type, err.input
                )
                for err in self.field_errors
            ],
            str(self),
        )


class DependencyResolutionError(RoutekitError):
    """A dependency factory failed while resolving a request."""

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(f"Failed to resolve dependency '{name}': {cause}")
        self.name = name
        self.cause = cause


class HandlerError(RoutekitError):
    """The route handler raised an unexpected exception."""

    def __init__(self, route_id: str, cause: BaseException) -> None:
        super().__init__(f"Handler for {route_id} failed: {cause}")
        self.route_id = route_id
        self.cause = cause


class ResponseContractViolation(RoutekitError):
    """The handler returned a value that breaks the declared response schema."""

    def __init__(self, route_id: str, error: ValidationError) -> None:
        super().__init__(f"Response of {route_id} violates its schema")
        self.route_id = route_id
        self.error = error


# ---------------------------------------------------------------------------
# Detached task errors
# ---------------------------------------------------------------------------


class TaskError(RoutekitError):
    """Base class for background task failures."""

    def __init__(self, message: str, *, task_name: str) -> None:
        super().__init__(message)
        self.task_name = task_name


class TaskFailure(TaskError):
    """A background task raised an exception."""

    def __init__(self, task_name: str, cause: BaseException) -> None:
        super().__init__(
            f"Background task '{task_name}' failed: {cause!r}", task_name=task_name
        )
        self.cause = cause


class TaskTimeout(TaskError):
    """A background task exceeded its time budget."""

    def __init__(self, task_name: str, budget: float) -> None:
        super().__init__(
            f"Background task '{task_name}' timed out after {budget:g}s",
            task_name=task_name,
        )
        self.budget = budget


# ---------------------------------------------------------------------------
# Client-facing HTTP exceptions
# ---------------------------------------------------------------------------


class HTTPException(Exception):
    """Error carrying an HTTP status code and optional headers."""

    def __init__(
        self,
        status_code: int,
        detail: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail
        self.headers = dict(headers or {})


class BadRequestException(HTTPException):
    def __init__(
        self, detail: Any = "Bad Request", headers: Mapping[str, str] | None = None
    ) -> None:
        super().__init__(400, detail, headers)


class UnauthorizedException(HTTPException):
    def __init__(
        self, detail: Any = "Unauthorized", headers: Mapping[str, str] | None = None
    ) -> None:
        super().__init__(401, detail, headers)


class ForbiddenException(HTTPException):
    def __init__(
        self, detail: Any = "Forbidden", headers: Mapping[str, str] | None = None
    ) -> None:
        super().__init__(403, detail, headers)


class NotFoundException(HTTPException):
    def __init__(
        self, detail: Any = "Not Found", headers: Mapping[str, str] | None = None
    ) -> None:
        super().__init__(404, detail, headers)


class ConflictException(HTTPException):
    def __init__(
        self, detail: Any = "Conflict", headers: Mapping[str, str] | None = None
    ) -> None:
        super().__init__(409, detail, headers)


class InternalServerException(HTTPException):
    def __init__(
        self,
        detail: Any = "Internal Server Error",
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(500, detail, headers)


class ServiceUnavailableException(HTTPException):
    def __init__(
        self,
        detail: Any = "Service Unavailable",
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(503, detail, headers)


__all__ = [
    "AmbiguousRouteError",
    "BadRequestException",
    "ConfigurationError",
    "ConflictException",
    "DependencyCycleError",
    "DependencyResolutionError",
    "DuplicateRouteError",
    "FieldError",
    "ForbiddenException",
    "HTTPException",
    "HandlerError",
    "InternalServerException",
    "InvalidSchemaError",
    "NotFoundException",
    "RegistryFrozenError",
    "ResponseContractViolation",
    "RouteConflictError",
    "RouteDefinitionError",
    "RouteNotFound",
    "RoutekitError",
    "ServiceUnavailableException",
    "TaskError",
    "TaskFailure",
    "TaskTimeout",
    "UnauthorizedException",
    "ValidationError",
]
