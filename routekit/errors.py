"""Translate pipeline failures into HTTP responses."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable

from .exceptions import (
    DependencyResolutionError,
    HandlerError,
    HTTPException,
    ResponseContractViolation,
    RouteNotFound,
    ValidationError,
)
from .http import JSONResponse, Request, Response

_LOGGER = logging.getLogger("routekit.pipeline")

ExceptionHandler = Callable[[Request, Exception], Any]


def _coerce(custom: Any) -> Response | None:
    """Turn a handler result into a response; ``TypeError`` for unusable shapes."""

    if custom is None or isinstance(custom, Response):
        return custom
    if not isinstance(custom, tuple) or len(custom) not in (2, 3):
        raise TypeError(
            "Exception handlers must return a Response, a (status, body[, headers]) "
            f"tuple or None, got {custom!r}"
        )
    status, body, *rest = custom
    headers = rest[0] if rest else None
    if not isinstance(status, int) or not 100 <= status <= 599:
        raise TypeError(f"Invalid status code from exception handler: {status!r}")
    if isinstance(body, (dict, list)):
        return JSONResponse(body, status_code=status, headers=headers)
    return Response(str(body), status_code=status, headers=headers)


class ErrorHandler:
    """Map exceptions to responses, consulting registered handlers first.

    Handlers are looked up along the exception's MRO. For wrapped failures
    (:class:`HandlerError`, :class:`DependencyResolutionError`) the original
    cause is tried before the wrapper. A handler returns a :class:`Response`
    or a ``(status, body[, headers])`` tuple; returning ``None`` falls back to
    the default rendering, as does a handler that raises or returns anything
    else.
    """

    def __init__(self, *, debug: bool = False) -> None:
        self.debug = debug
        self.handlers: dict[type[BaseException], ExceptionHandler] = {}

    def register(self, exc_type: type[Exception], handler: ExceptionHandler) -> None:
        self.handlers[exc_type] = handler

    def lookup(self, exc: BaseException) -> ExceptionHandler | None:
        for cls in type(exc).__mro__:
            if cls in self.handlers:
                return self.handlers[cls]
        return None

    async def handle(self, exc: Exception, request: Request) -> Response:
        candidates: list[BaseException] = []
        cause = getattr(exc, "cause", None)
        if isinstance(exc, (HandlerError, DependencyResolutionError)) and cause is not None:
            candidates.append(cause)
        candidates.append(exc)
        for candidate in candidates:
            handler = self.lookup(candidate)
            if handler is None:
                continue
            try:
                custom = handler(request, candidate)  # type: ignore[arg-type]
                if inspect.isawaitable(custom):
                    custom = await custom
                response = _coerce(custom)
            except Exception:
                _LOGGER.error(
                    "Exception handler for %s failed",
                    type(candidate).__name__,
                    exc_info=True,
                )
                break
            if response is not None:
                return response
        return self.default_response(exc, request)

    def default_response(self, exc: Exception, request: Request) -> JSONResponse:
        """Render *exc* as ``{"status", "detail", "path"}`` JSON."""

        headers: dict[str, str] = {}
        extra: dict[str, Any] = {}
        if isinstance(exc, HTTPException):
            status = exc.status_code
            detail = exc.detail
            headers = dict(exc.headers)
        elif isinstance(exc, RouteNotFound):
            status, detail = 404, "Not Found"
        elif isinstance(exc, ValidationError):
            status, detail = 422, "Validation Error"
            extra["errors"] = exc.errors()
        elif isinstance(exc, ResponseContractViolation):
            status, detail = 500, "Internal Server Error"
            if self.debug:
                detail = str(exc)
                extra["errors"] = exc.error.errors()
        else:
            status, detail = 500, "Internal Server Error"
            if self.debug:
                detail = str(exc)

        if status >= 500:
            _LOGGER.error(
                "%s %s failed with %d", request.method, request.path, status, exc_info=exc
            )
        else:
            _LOGGER.info(
                "%s %s rejected with %d: %s", request.method, request.path, status, exc
            )
        body = {"status": status, "detail": detail, "path": request.path, **extra}
        try:
            return JSONResponse(body, status_code=status, headers=headers)
        except Exception:
            _LOGGER.error(
                "Could not encode the %d error body for %s %s",
                status,
                request.method,
                request.path,
                exc_info=True,
            )
        return JSONResponse(
            {"status": 500, "detail": "Internal Server Error", "path": request.path},
            status_code=500,
        )


__all__ = ["ErrorHandler", "ExceptionHandler"]
