"""The fixed per-request flow.

``Matching -> Validating -> Resolving -> Invoking -> Encoding ->
TaskSubmission -> Done``; any step may move the request to ``Failed``.
Invoking runs the matching middlewares first; one returning a response
stands in for the handler.
Request-scoped dependencies are released after the last step whatever the
outcome, and background tasks are only handed to the supervisor once the
response has been encoded.
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .background import BackgroundTask, TaskSupervisor
from .context import RequestContext
from .dependency import DependencyInjector, RequestScope
from .errors import ErrorHandler
from .exceptions import (
    FieldError,
    HTTPException,
    HandlerError,
    ResponseContractViolation,
    ValidationError,
)
from .http import JSONResponse, Request, Response, unwrap_single
from .middleware import MiddlewareRegistry
from .registry import RouteRegistry
from .route import Route
from .schema import SchemaAdapter, default_adapter

_LOGGER = logging.getLogger("routekit.pipeline")

_EMPTY_STATUSES = {204, 304}


class PipelineState(str, Enum):
    MATCHING = "matching"
    VALIDATING = "validating"
    RESOLVING = "resolving"
    INVOKING = "invoking"
    ENCODING = "encoding"
    TASK_SUBMISSION = "task_submission"
    DONE = "done"
    FAILED = "failed"


class FailureKind(str, Enum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    DEPENDENCY_RESOLUTION = "dependency_resolution"
    HANDLER_ERROR = "handler_error"
    RESPONSE_CONTRACT_VIOLATION = "response_contract_violation"
    INTERNAL = "internal"


_FAILURE_BY_STATE = {
    PipelineState.MATCHING: FailureKind.NOT_FOUND,
    PipelineState.VALIDATING: FailureKind.VALIDATION,
    PipelineState.RESOLVING: FailureKind.DEPENDENCY_RESOLUTION,
    PipelineState.INVOKING: FailureKind.HANDLER_ERROR,
    PipelineState.ENCODING: FailureKind.RESPONSE_CONTRACT_VIOLATION,
}


@dataclass
class PipelineOutcome:
    response: Response
    state: PipelineState
    route: Route | None = None
    failure: FailureKind | None = None
    failed_at: PipelineState | None = None
    error: Exception | None = None
    tasks: list[BackgroundTask] = field(default_factory=list)


class RequestPipeline:
    """Run one request through matching, validation, injection and encoding."""

    def __init__(
        self,
        registry: RouteRegistry,
        injector: DependencyInjector,
        errors: ErrorHandler,
        *,
        supervisor: TaskSupervisor | None = None,
        adapter: SchemaAdapter | None = None,
        middleware: MiddlewareRegistry | None = None,
    ) -> None:
        self.registry = registry
        self.injector = injector
        self.errors = errors
        self.supervisor = supervisor
        self.middleware = middleware
        self.adapter = adapter or default_adapter()

    async def execute(self, request: Request) -> PipelineOutcome:
        state = PipelineState.MATCHING
        route: Route | None = None
        context: RequestContext | None = None
        scope: RequestScope | None = None
        try:
            route, raw_params = self.registry.find(request.method, request.path)
            request.path_params = dict(raw_params)
            context = RequestContext(
                request=request,
                route=route,
                request_id=getattr(request.state, "request_id", ""),
            )

            state = PipelineState.VALIDATING
            context.params = self._validate(route.params, raw_params, "path")
            context.query = self._validate(
                route.query, self._query_input(route, request), "query"
            )
            context.body = await self._read_body(route, request)

            state = PipelineState.RESOLVING
            scope = await self.injector.resolve(route.dependencies, context)
            context.dependencies = scope.values

            state = PipelineState.INVOKING
            try:
                result = None
                if self.middleware is not None:
                    result = await self.middleware.run(context)
                if result is None:
                    result = route.handler(context)
                    if inspect.isawaitable(result):
                        result = await result
            except HTTPException:
                raise
            except Exception as exc:
                raise HandlerError(route.id, exc) from exc

            state = PipelineState.ENCODING
            response = self._encode(route, result)

            state = PipelineState.TASK_SUBMISSION
            tasks = list(context.background.tasks)
            if tasks and self.supervisor is not None:
                self.supervisor.submit(tasks)
            return PipelineOutcome(response, PipelineState.DONE, route=route, tasks=tasks)
        except Exception as exc:
            if context is not None and context.background.tasks:
                _LOGGER.debug(
                    "Discarding %d background task(s) of failed request %s %s",
                    len(context.background.tasks),
                    request.method,
                    request.path,
                )
            response = await self.errors.handle(exc, request)
            return PipelineOutcome(
                response,
                PipelineState.FAILED,
                route=route,
                failure=_FAILURE_BY_STATE.get(state, FailureKind.INTERNAL),
                failed_at=state,
                error=exc,
            )
        finally:
            if scope is not None:
                await scope.close()

    def _validate(self, schema: Any, raw: Any, source: str) -> Any:
        if schema is None:
            return raw
        try:
            return self.adapter.validate(schema, raw)
        except ValidationError as exc:
            raise exc.with_prefix(source) from exc

    def _query_input(self, route: Route, request: Request) -> dict[str, Any]:
        if route.query is None:
            return request.query_params
        sequences = [
            name
            for name, schema in self.adapter.fields(route.query).items()
            if self.adapter.is_sequence(schema)
        ]
        return unwrap_single(request.query_lists, keep=sequences)

    async def _read_body(self, route: Route, request: Request) -> Any:
        data = await request.body()
        if route.body is None:
            if not data:
                return None
            try:
                return json.loads(data.decode())
            except ValueError:
                return data
        try:
            payload = json.loads(data.decode()) if data else {}
        except ValueError as exc:
            raise ValidationError(
                [FieldError(("body",), f"Invalid JSON: {exc}", "json_invalid")]
            ) from exc
        return self._validate(route.body, payload, "body")

    def _encode(self, route: Route, result: Any) -> Response:
        if isinstance(result, Response):
            return result
        if route.response is not None:
            try:
                result = self.adapter.validate(route.response, result)
            except ValidationError as exc:
                raise ResponseContractViolation(
                    route.id, exc.with_prefix("response")
                ) from exc
        if route.status_code in _EMPTY_STATUSES:
            return Response(b"", status_code=route.status_code)
        return JSONResponse(result, status_code=route.status_code)


__all__ = ["FailureKind", "PipelineOutcome", "PipelineState", "RequestPipeline"]
