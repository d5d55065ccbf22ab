"""Declarative API routes: one declaration drives validation, injection, docs and tests."""

from .app import RouteApp, Transport
from .background import BackgroundTask, BackgroundTasks, TaskState, TaskSupervisor
from .config import Settings, load_settings
from .context import RequestContext
from .dependency import Dependency, DependencyInjector, Lifetime, RequestScope, inject
from .exceptions import (
    AmbiguousRouteError,
    BadRequestException,
    ConfigurationError,
    ConflictException,
    DependencyCycleError,
    DependencyResolutionError,
    DuplicateRouteError,
    FieldError,
    ForbiddenException,
    HandlerError,
    HTTPException,
    InternalServerException,
    InvalidSchemaError,
    NotFoundException,
    RegistryFrozenError,
    ResponseContractViolation,
    RouteConflictError,
    RouteDefinitionError,
    RouteNotFound,
    RoutekitError,
    ServiceUnavailableException,
    TaskError,
    TaskFailure,
    TaskTimeout,
    UnauthorizedException,
    ValidationError,
)
from .http import JSONResponse, Request, Response
from .middleware import MiddlewareRegistry
from .openapi import DocumentInfo, describe_route, generate
from .pipeline import FailureKind, PipelineOutcome, PipelineState, RequestPipeline
from .registry import RouteMatch, RouteRegistry
from .route import HTTPMethod, Route
from .schema import PydanticAdapter, SchemaAdapter

__version__ = "0.1.0"

__all__ = [
    "AmbiguousRouteError",
    "BackgroundTask",
    "BackgroundTasks",
    "BadRequestException",
    "ConfigurationError",
    "ConflictException",
    "Dependency",
    "DependencyCycleError",
    "DependencyInjector",
    "DependencyResolutionError",
    "DocumentInfo",
    "DuplicateRouteError",
    "FailureKind",
    "FieldError",
    "ForbiddenException",
    "HTTPException",
    "HTTPMethod",
    "HandlerError",
    "InternalServerException",
    "InvalidSchemaError",
    "JSONResponse",
    "Lifetime",
    "MiddlewareRegistry",
    "NotFoundException",
    "PipelineOutcome",
    "PipelineState",
    "PydanticAdapter",
    "RegistryFrozenError",
    "Request",
    "RequestContext",
    "RequestPipeline",
    "RequestScope",
    "Response",
    "ResponseContractViolation",
    "Route",
    "RouteApp",
    "RouteConflictError",
    "RouteDefinitionError",
    "RouteMatch",
    "RouteNotFound",
    "RouteRegistry",
    "RoutekitError",
    "SchemaAdapter",
    "ServiceUnavailableException",
    "Settings",
    "TaskError",
    "TaskFailure",
    "TaskState",
    "TaskSupervisor",
    "TaskTimeout",
    "Transport",
    "UnauthorizedException",
    "ValidationError",
    "__version__",
    "describe_route",
    "generate",
    "inject",
    "load_settings",
]
