"""Application facade tying the registry, injector, supervisor and pipeline together."""

from __future__ import annotations

import inspect
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence

from .background import TaskSupervisor
from .config import Settings, load_settings, validate_settings
from .context import RequestContext
from .dependency import Dependency, DependencyInjector, Override
from .errors import ErrorHandler, ExceptionHandler
from .exceptions import (
    ConfigurationError,
    NotFoundException,
    RouteConflictError,
    RouteDefinitionError,
)
from .http import Request, Response
from .middleware import DEFAULT_PRIORITY, Middleware, MiddlewareRegistry
from .openapi import DocumentInfo, describe_route, generate
from .pipeline import PipelineOutcome, RequestPipeline
from .registry import RouteRegistry
from .route import Route
from .schema import SchemaAdapter, default_adapter

_LOGGER = logging.getLogger("routekit")
_REQUEST_LOGGER = logging.getLogger("routekit.request")

Handler = Callable[[RequestContext], Any]
DocumentCustomizer = Callable[[dict[str, Any]], dict[str, Any]]
RouteMap = Mapping[str, Mapping[str, Mapping[str, Any] | None]]


class Transport(Protocol):
    """Minimal server surface ``RouteApp.bind`` needs."""

    def add_route(
        self,
        method: str,
        path: str,
        callback: Callable[[Request], Awaitable[Response]],
    ) -> None: ...

    async def listen(self, port: int) -> str: ...


class RouteApp:
    """Declare routes once; serve, document and test them from the same source.

    Routes are registered with the method decorators::

        app = RouteApp(title="Users", version="1.0.0")

        @app.get("/users/{id}", params=UserPath, response=User)
        async def read_user(ctx):
            return await ctx.dependencies["repo"].load(ctx.params.id)

    ``GET /openapi.json`` and ``GET /openapi/routes/{operation_id}`` are
    registered at construction; declaring a route that clashes with one of
    them replaces it.
    """

    def __init__(
        self,
        *,
        title: str = "routekit application",
        version: str = "0.1.0",
        description: str | None = None,
        servers: Sequence[Mapping[str, str]] = (),
        settings: Settings | None = None,
        adapter: SchemaAdapter | None = None,
        docs_url: str | None = "/openapi.json",
        routes_url: str | None = "/openapi/routes",
        routes: RouteMap | None = None,
    ) -> None:
        if settings is None:
            settings = load_settings()
        else:
            validate_settings(settings)
        self.settings = settings
        _LOGGER.setLevel(settings.log_level.upper())
        self.info = DocumentInfo.coerce(
            DocumentInfo(title, version, description, tuple(servers))
        )
        self.adapter = adapter or default_adapter()
        self.registry = RouteRegistry()
        self.dependency_overrides: dict[Dependency, Override] = {}
        self.injector = DependencyInjector(overrides=self.dependency_overrides)
        self.supervisor = TaskSupervisor(
            warning_threshold=settings.task_warning_threshold,
            default_timeout=settings.task_timeout,
        )
        self.errors = ErrorHandler(debug=settings.debug)
        self.middleware = MiddlewareRegistry()
        self.pipeline = RequestPipeline(
            self.registry,
            self.injector,
            self.errors,
            supervisor=self.supervisor,
            adapter=self.adapter,
            middleware=self.middleware,
        )
        self.docs_url = docs_url
        self.routes_url = routes_url
        self._openapi_customizer: DocumentCustomizer | None = None
        self._startup_hooks: list[Callable[[], Any]] = []
        self._shutdown_hooks: list[Callable[[], Any]] = []
        self._reserved_routes: list[Route] = []
        self._transport: Transport | None = None
        self._register_reserved_routes()
        if routes is not None:
            self.add_routes(routes)

    @property
    def debug(self) -> bool:
        return self.errors.debug

    # -- declaration --------------------------------------------------

    def add_route(
        self,
        method: str,
        path: str,
        handler: Handler,
        *,
        params: Any = None,
        query: Any = None,
        body: Any = None,
        response: Any = None,
        status_code: int = 200,
        dependencies: Mapping[str, Dependency] | None = None,
        tags: Sequence[str] | None = None,
        summary: str | None = None,
        description: str | None = None,
        operation_id: str | None = None,
        deprecated: bool = False,
        include_in_schema: bool = True,
    ) -> Route:
        """Build a :class:`Route` and register it."""

        route = Route(
            method,  # type: ignore[arg-type]
            path,
            handler,
            params=params,
            query=query,
            body=body,
            response=response,
            status_code=status_code,
            dependencies=dict(dependencies or {}),
            tags=tuple(tags or ()),
            summary=summary,
            description=description if description is not None else inspect.getdoc(handler),
            operation_id=operation_id,
            deprecated=deprecated,
            include_in_schema=include_in_schema,
            adapter=self.adapter,
        )
        released = self._release_reserved_routes(route)
        try:
            return self.registry.register(route)
        except RouteConflictError:
            for reserved in released:
                self._reserved_routes.append(self.registry.register(reserved))
            raise

    def add_routes(self, routes: RouteMap) -> list[Route]:
        """Register a ``{path: {method: options}}`` map of route declarations.

        Each options mapping takes the keyword arguments of :meth:`add_route`
        (``status`` is accepted for ``status_code``) and must name a
        ``handler``. Methods mapped to ``None`` are skipped.
        """

        if not isinstance(routes, Mapping):
            raise RouteDefinitionError("Route map must be a mapping of paths")
        declared: list[Route] = []
        for path, methods in routes.items():
            if not path:
                raise RouteDefinitionError("Route path cannot be empty")
            if not isinstance(methods, Mapping):
                raise RouteDefinitionError(
                    f"Route methods for path '{path}' must be a mapping"
                )
            for method, options in methods.items():
                if options is None:
                    continue
                options = dict(options)
                if "status" in options:
                    options.setdefault("status_code", options.pop("status"))
                handler = options.pop("handler", None)
                if handler is None:
                    raise RouteDefinitionError(
                        f"Route {str(method).upper()} {path} requires a handler"
                    )
                declared.append(self.add_route(method, path, handler, **options))
        return declared

    def use(
        self,
        middleware: Middleware,
        *,
        path: str | None = None,
        method: str | None = None,
        priority: int = DEFAULT_PRIORITY,
    ) -> str:
        """Run *middleware* before matching handlers; returns its id."""

        return self.middleware.add(
            middleware, path=path, method=method, priority=priority
        )

    def route(
        self, path: str, method: str, **options: Any
    ) -> Callable[[Handler], Handler]:
        """Register the decorated function for *method* and *path*."""

        def decorator(func: Handler) -> Handler:
            self.add_route(method, path, func, **options)
            return func

        return decorator

    def get(self, path: str, **options: Any) -> Callable[[Handler], Handler]:
        return self.route(path, "GET", **options)

    def post(self, path: str, **options: Any) -> Callable[[Handler], Handler]:
        return self.route(path, "POST", **options)

    def put(self, path: str, **options: Any) -> Callable[[Handler], Handler]:
        return self.route(path, "PUT", **options)

    def patch(self, path: str, **options: Any) -> Callable[[Handler], Handler]:
        return self.route(path, "PATCH", **options)

    def delete(self, path: str, **options: Any) -> Callable[[Handler], Handler]:
        return self.route(path, "DELETE", **options)

    # -- errors and document ------------------------------------------

    def add_exception_handler(
        self, exc_type: type[Exception], handler: ExceptionHandler
    ) -> None:
        """Register a custom *handler* for exceptions of type *exc_type*."""

        self.errors.register(exc_type, handler)

    def exception_handler(
        self, exc_type: type[Exception]
    ) -> Callable[[ExceptionHandler], ExceptionHandler]:
        def decorator(func: ExceptionHandler) -> ExceptionHandler:
            self.add_exception_handler(exc_type, func)
            return func

        return decorator

    def customize_openapi(self, func: DocumentCustomizer) -> None:
        """Apply *func* to modify generated OpenAPI documents."""

        self._openapi_customizer = func

    def openapi_schema(self) -> dict[str, Any]:
        """Generate an OpenAPI document for the registered routes."""

        doc = generate(self.registry.list(), self.info, adapter=self.adapter)
        if self._openapi_customizer:
            doc = self._openapi_customizer(doc)
        return doc

    def _serve_document(self, ctx: RequestContext) -> dict[str, Any]:
        return self.openapi_schema()

    def _serve_route_description(self, ctx: RequestContext) -> dict[str, Any]:
        operation_id = ctx.params["operation_id"]
        route = self.registry.get_by_operation_id(operation_id)
        if route is None or not route.include_in_schema:
            raise NotFoundException(f"Unknown operation '{operation_id}'")
        return describe_route(route, self.adapter)

    def _register_reserved_routes(self) -> None:
        candidates: list[Route] = []
        if self.docs_url:
            candidates.append(
                Route(
                    "GET",  # type: ignore[arg-type]
                    self.docs_url,
                    self._serve_document,
                    operation_id="routekit_openapi_document",
                    include_in_schema=False,
                    adapter=self.adapter,
                )
            )
        if self.routes_url:
            candidates.append(
                Route(
                    "GET",  # type: ignore[arg-type]
                    self.routes_url.rstrip("/") + "/{operation_id}",
                    self._serve_route_description,
                    operation_id="routekit_openapi_route",
                    include_in_schema=False,
                    adapter=self.adapter,
                )
            )
        for route in candidates:
            conflict = self.registry.conflicts(route)
            if conflict is not None:
                _LOGGER.debug("Not registering %s: %s", route.id, conflict)
                continue
            self._reserved_routes.append(self.registry.register(route))

    def _release_reserved_routes(self, route: Route) -> list[Route]:
        released: list[Route] = []
        for reserved in list(self._reserved_routes):
            clash = reserved.operation_id == route.operation_id or (
                reserved.method is route.method
                and reserved.template.overlaps(route.template)
            )
            if clash:
                self.registry.delete(reserved.method, reserved.path)
                self._reserved_routes.remove(reserved)
                released.append(reserved)
                _LOGGER.debug("%s replaces built-in route %s", route.id, reserved.id)
        return released

    # -- lifecycle ----------------------------------------------------

    def on_event(self, event: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        if event not in ("startup", "shutdown"):
            raise ConfigurationError(f"Unknown lifecycle event: {event}")

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            if event == "startup":
                self._startup_hooks.append(func)
            else:
                self._shutdown_hooks.append(func)
            return func

        return decorator

    async def startup(self) -> None:
        for hook in self._startup_hooks:
            result = hook()
            if inspect.iscoroutine(result):
                await result

    async def shutdown(self) -> None:
        """Wait for background tasks, run shutdown hooks and release singletons."""

        await self.supervisor.join()
        for hook in self._shutdown_hooks:
            result = hook()
            if inspect.iscoroutine(result):
                await result
        await self.injector.close()

    # -- serving ------------------------------------------------------

    def bind(self, transport: Transport) -> None:
        """Freeze the registry and attach every route to *transport*."""

        self.registry.freeze()
        for route in self.registry.list():
            transport.add_route(route.method.value, route.path, self.handle)
        self._transport = transport
        _LOGGER.info("Bound %d routes to %s", len(self.registry), type(transport).__name__)

    async def listen(self, port: int, transport: Transport | None = None) -> str:
        if not isinstance(port, int) or not 0 <= port <= 65535:
            raise ConfigurationError(f"Invalid port: {port!r}")
        if transport is not None:
            self.bind(transport)
        if self._transport is None:
            raise ConfigurationError("No transport bound; call bind() first")
        await self.startup()
        address = await self._transport.listen(port)
        _LOGGER.info("Listening on %s", address)
        return address

    async def process(self, request: Request) -> PipelineOutcome:
        """Run *request* through the pipeline and return the full outcome."""

        start = time.perf_counter()
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id
        outcome = await self.pipeline.execute(request)
        outcome.response.set_header("x-request-id", request_id)
        _REQUEST_LOGGER.info(
            "%s %s -> %d in %.2fms request_id=%s",
            request.method,
            request.path,
            outcome.response.status_code,
            (time.perf_counter() - start) * 1000,
            request_id,
        )
        return outcome

    async def handle(self, request: Request) -> Response:
        """Transport callback: answer *request*."""

        return (await self.process(request)).response


__all__ = ["RouteApp", "Transport"]
