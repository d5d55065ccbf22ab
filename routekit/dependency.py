"""Dependency descriptors and their request/singleton lifetimes.

A :class:`Dependency` is a recipe: a factory, a lifetime and an optional
cleanup hook. Factories may be plain callables, coroutines, generators,
async generators or return (async) context managers. Parameters are filled
in as follows:

* a parameter whose default is another :class:`Dependency` receives that
  dependency's value;
* a parameter named ``context`` or annotated with
  :class:`~routekit.context.RequestContext` receives the current request
  context;
* any other parameter must have a default.
"""

from __future__ import annotations

import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Union, cast

from .context import RequestContext
from .exceptions import (
    DependencyCycleError,
    DependencyResolutionError,
    HTTPException,
    RouteDefinitionError,
)

_LOGGER = logging.getLogger("routekit.dependency")

Teardown = Callable[[], Any]
Override = Union["Dependency", Callable[..., Any]]


class Lifetime(str, Enum):
    SINGLETON = "singleton"
    REQUEST = "request"


class Dependency:
    """Describe how to produce a value a handler needs."""

    def __init__(
        self,
        factory: Callable[..., Any],
        *,
        lifetime: Lifetime | str = Lifetime.REQUEST,
        cleanup: Callable[[Any], Any] | None = None,
        name: str | None = None,
    ) -> None:
        if not callable(factory):
            raise RouteDefinitionError("Dependency factory must be callable")
        if cleanup is not None and not callable(cleanup):
            raise RouteDefinitionError("Dependency cleanup must be callable")
        try:
            self.lifetime = Lifetime(lifetime)
        except ValueError as exc:
            raise RouteDefinitionError(f"Unknown dependency lifetime: {lifetime!r}") from exc
        self.factory = factory
        self.cleanup = cleanup
        self.name = name or getattr(factory, "__qualname__", None) or repr(factory)

    def requires(self) -> list[Dependency]:
        """Return the dependencies declared as parameter defaults of the factory."""

        return [dep for _, kind, dep in _plan(self.factory, self.name) if kind == "dependency"]

    def __repr__(self) -> str:
        return f"Dependency({self.name}, lifetime={self.lifetime.value})"


def inject(
    factory: Callable[..., Any],
    *,
    lifetime: Lifetime | str = Lifetime.REQUEST,
    cleanup: Callable[[Any], Any] | None = None,
    name: str | None = None,
) -> Dependency:
    """Declare a dependency descriptor.

    ``lifetime`` defaults to ``"request"``: one instance per request, shared
    by every consumer within that request.
    """

    return Dependency(factory, lifetime=lifetime, cleanup=cleanup, name=name)


def _is_context_param(param: inspect.Parameter) -> bool:
    if param.name == "context":
        return True
    annotation = param.annotation
    return annotation is RequestContext or annotation == "RequestContext"


def _plan(
    factory: Callable[..., Any], name: str
) -> list[tuple[str, str, Dependency | None]]:
    """Return ``(parameter, kind, dependency)`` triples for *factory*."""

    try:
        signature = inspect.signature(factory)
    except (TypeError, ValueError):
        return []
    plan: list[tuple[str, str, Dependency | None]] = []
    for param in signature.parameters.values():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        if isinstance(param.default, Dependency):
            plan.append((param.name, "dependency", param.default))
        elif _is_context_param(param):
            plan.append((param.name, "context", None))
        elif param.default is inspect.Parameter.empty:
            raise RouteDefinitionError(
                f"Cannot inject parameter '{param.name}' of dependency {name}"
            )
    return plan


def check_dependency_graph(dependencies: Mapping[str, Dependency]) -> None:
    """Reject cycles and singletons that consume request-scoped values."""

    done: set[int] = set()

    def visit(dep: Dependency, chain: list[Dependency]) -> None:
        if any(dep is seen for seen in chain):
            start = next(i for i, seen in enumerate(chain) if seen is dep)
            raise DependencyCycleError([d.name for d in chain[start:]] + [dep.name])
        if id(dep) in done:
            return
        for child in dep.requires():
            if dep.lifetime is Lifetime.SINGLETON and child.lifetime is Lifetime.REQUEST:
                raise RouteDefinitionError(
                    f"Singleton dependency {dep.name} cannot depend on "
                    f"request-scoped dependency {child.name}"
                )
            visit(child, chain + [dep])
        done.add(id(dep))

    for dep in dependencies.values():
        visit(dep, [])


async def _produce(
    factory: Callable[..., Any], kwargs: dict[str, Any]
) -> tuple[Any, list[Teardown]]:
    teardowns: list[Teardown] = []
    result = factory(**kwargs)
    if inspect.isawaitable(result):
        result = await cast(Awaitable[Any], result)
    elif inspect.isasyncgen(result):
        agen = cast(Any, result)
        value = await agen.__anext__()

        async def _finish_async(gen: Any = agen) -> None:
            try:
                await gen.__anext__()
            except StopAsyncIteration:
                return
            await gen.aclose()

        teardowns.append(_finish_async)
        result = value
    elif inspect.isgenerator(result):
        gen = cast(Any, result)
        value = next(gen)

        def _finish(gen: Any = gen) -> None:
            try:
                next(gen)
            except StopIteration:
                return
            gen.close()

        teardowns.append(_finish)
        result = value
    elif hasattr(result, "__aenter__") and hasattr(result, "__aexit__"):
        cm = result
        value = await cm.__aenter__()

        async def _async_exit(cm: Any = cm) -> Any:
            return await cm.__aexit__(None, None, None)

        teardowns.append(_async_exit)
        result = value
    elif hasattr(result, "__enter__") and hasattr(result, "__exit__"):
        cm = result
        value = cm.__enter__()

        def _sync_exit(cm: Any = cm) -> None:
            cm.__exit__(None, None, None)

        teardowns.append(_sync_exit)
        result = value
    return result, teardowns


async def _run_teardowns(teardowns: list[tuple[str, Teardown]]) -> list[BaseException]:
    failures: list[BaseException] = []
    for name, teardown in reversed(teardowns):
        try:
            result = teardown()
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            _LOGGER.error("Cleanup of dependency %s failed", name, exc_info=True)
            failures.append(exc)
    teardowns.clear()
    return failures


class RequestScope:
    """Values resolved for one request and the cleanups they registered."""

    def __init__(self, injector: DependencyInjector, context: RequestContext) -> None:
        self.injector = injector
        self.context = context
        self.values: dict[str, Any] = {}
        self._cache: dict[Dependency, Any] = {}
        self._teardowns: list[tuple[str, Teardown]] = []
        self._closed = False

    async def get(self, dep: Dependency, name: str | None = None) -> Any:
        """Return the value of *dep*, producing it on first use."""

        try:
            if dep.lifetime is Lifetime.SINGLETON:
                return await self.injector._singleton(dep, self)
            if dep in self._cache:
                return self._cache[dep]
            value, teardowns = await self.injector._build(dep, self)
            self._cache[dep] = value
            self._teardowns.extend((dep.name, t) for t in teardowns)
            return value
        except (HTTPException, DependencyResolutionError):
            raise
        except Exception as exc:
            raise DependencyResolutionError(name or dep.name, exc) from exc

    async def close(self) -> list[BaseException]:
        """Run request-scoped cleanups in reverse order of resolution.

        Every cleanup runs even if an earlier one fails; failures are logged
        and returned.
        """

        if self._closed:
            return []
        self._closed = True
        return await _run_teardowns(self._teardowns)


class DependencyInjector:
    """Resolve dependency descriptors and own the singleton cache."""

    def __init__(self, overrides: dict[Dependency, Override] | None = None) -> None:
        self.overrides: dict[Dependency, Override] = (
            overrides if overrides is not None else {}
        )
        self._singletons: dict[Dependency, Any] = {}
        self._singleton_teardowns: list[tuple[str, Teardown]] = []

    @property
    def singleton_count(self) -> int:
        return len(self._singletons)

    async def resolve(
        self, dependencies: Mapping[str, Dependency], context: RequestContext
    ) -> RequestScope:
        """Resolve *dependencies* for one request.

        The returned scope must be closed once the handler has finished. If
        resolution fails the partially built scope is closed before the error
        propagates.
        """

        scope = RequestScope(self, context)
        try:
            for name, dep in dependencies.items():
                scope.values[name] = await scope.get(dep, name)
        except BaseException:
            await scope.close()
            raise
        return scope

    async def close(self) -> list[BaseException]:
        """Tear down singletons and empty the cache."""

        failures = await _run_teardowns(self._singleton_teardowns)
        self._singletons.clear()
        return failures

    def clear_singletons(self) -> None:
        """Forget cached singletons without running their cleanups."""

        self._singletons.clear()
        self._singleton_teardowns.clear()

    def _factory_for(self, dep: Dependency) -> Callable[..., Any]:
        override = self.overrides.get(dep)
        if override is None:
            return dep.factory
        if isinstance(override, Dependency):
            return override.factory
        return override

    async def _build(
        self, dep: Dependency, scope: RequestScope
    ) -> tuple[Any, list[Teardown]]:
        factory = self._factory_for(dep)
        kwargs: dict[str, Any] = {}
        for param, kind, child in _plan(factory, dep.name):
            if kind == "context":
                kwargs[param] = scope.context
            else:
                kwargs[param] = await scope.get(cast(Dependency, child))
        value, teardowns = await _produce(factory, kwargs)
        if dep.cleanup is not None:
            cleanup = dep.cleanup
            teardowns.append(lambda: cleanup(value))
        return value, teardowns

    async def _singleton(self, dep: Dependency, scope: RequestScope) -> Any:
        if dep in self._singletons:
            return self._singletons[dep]
        value, teardowns = await self._build(dep, scope)
        self._singleton_teardowns.extend((dep.name, t) for t in teardowns)
        # concurrent first requests may both build; the first stored wins
        return self._singletons.setdefault(dep, value)


__all__ = [
    "Dependency",
    "DependencyInjector",
    "Lifetime",
    "RequestScope",
    "check_dependency_graph",
    "inject",
]
