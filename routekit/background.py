"""Detached work submitted during a request and run after the response.

Tasks are in-process and meant for light I/O (sending an email, updating a
cache, emitting an audit event). CPU-heavy work belongs on an external job
queue; the supervisor warns when a task runs past its warning threshold.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from enum import Enum
from typing import Any, Callable, Iterable, Iterator

from .exceptions import TaskError, TaskFailure, TaskTimeout

_LOGGER = logging.getLogger("routekit.tasks")

DEFAULT_WARNING_THRESHOLD = 0.1
DEFAULT_TIMEOUT = 30.0

TaskObserver = Callable[..., Any]


class TaskState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class BackgroundTask:
    """Run *action* after the response is sent."""

    def __init__(
        self,
        action: Callable[..., Any],
        *args: Any,
        name: str | None = None,
        timeout: float | None = None,
        on_complete: TaskObserver | None = None,
        on_error: TaskObserver | None = None,
        **kwargs: Any,
    ) -> None:
        if not callable(action):
            raise TypeError("Background task action must be callable")
        if timeout is not None and timeout <= 0:
            raise ValueError("Background task timeout must be positive")
        self.action = action
        self.args = args
        self.kwargs = kwargs
        self.name = name
        self.timeout = timeout
        self.on_complete = on_complete
        self.on_error = on_error
        self.is_async = inspect.iscoroutinefunction(action)
        self.state = TaskState.PENDING
        self.error: TaskError | None = None
        self.duration: float | None = None
        self.slow = False

    async def run(self) -> Any:
        """Invoke the action; sync callables run in a worker thread."""

        if self.is_async:
            return await self.action(*self.args, **self.kwargs)
        result = await asyncio.to_thread(self.action, *self.args, **self.kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    def __repr__(self) -> str:
        label = self.name or getattr(self.action, "__qualname__", repr(self.action))
        return f"<BackgroundTask {label} {self.state.value}>"


class BackgroundTasks:
    """Request-scoped collection exposed to handlers as ``context.background``.

    Tasks added here stay pending until the pipeline has encoded the
    response; they are discarded if the request fails.
    """

    def __init__(self, tasks: Iterable[BackgroundTask] | None = None) -> None:
        self.tasks: list[BackgroundTask] = list(tasks) if tasks else []

    def add_task(
        self,
        action: Callable[..., Any],
        *args: Any,
        name: str | None = None,
        timeout: float | None = None,
        on_complete: TaskObserver | None = None,
        on_error: TaskObserver | None = None,
        **kwargs: Any,
    ) -> BackgroundTask:
        task = BackgroundTask(
            action,
            *args,
            name=name,
            timeout=timeout,
            on_complete=on_complete,
            on_error=on_error,
            **kwargs,
        )
        self.tasks.append(task)
        return task

    def __iter__(self) -> Iterator[BackgroundTask]:
        return iter(self.tasks)

    def __len__(self) -> int:
        return len(self.tasks)


class TaskSupervisor:
    """Execute submitted tasks in isolation and report their outcome."""

    def __init__(
        self,
        *,
        warning_threshold: float = DEFAULT_WARNING_THRESHOLD,
        default_timeout: float | None = DEFAULT_TIMEOUT,
    ) -> None:
        if warning_threshold <= 0:
            raise ValueError("warning_threshold must be positive")
        self.warning_threshold = warning_threshold
        self.default_timeout = default_timeout
        self._names = itertools.count(1)
        self._running: set[asyncio.Task[None]] = set()
        self._completed = 0

    @property
    def completed(self) -> int:
        """Tasks finished (successfully or not) since the last reset."""

        return self._completed

    @property
    def pending(self) -> int:
        """Tasks submitted but not finished yet."""

        return len(self._running)

    def reset_counter(self) -> None:
        self._completed = 0

    def add_task(
        self,
        action: Callable[..., Any],
        *args: Any,
        name: str | None = None,
        timeout: float | None = None,
        on_complete: TaskObserver | None = None,
        on_error: TaskObserver | None = None,
        **kwargs: Any,
    ) -> BackgroundTask:
        """Submit a task outside of a request; it starts on the next loop turn."""

        task = BackgroundTask(
            action,
            *args,
            name=name,
            timeout=timeout,
            on_complete=on_complete,
            on_error=on_error,
            **kwargs,
        )
        self.submit([task])
        return task

    def submit(self, tasks: Iterable[BackgroundTask]) -> None:
        """Schedule *tasks* on the running loop without awaiting them."""

        loop = asyncio.get_running_loop()
        for task in tasks:
            if task.name is None:
                task.name = f"task-{next(self._names)}"
            runner = loop.create_task(self._run(task), name=f"routekit:{task.name}")
            self._running.add(runner)
            runner.add_done_callback(self._running.discard)

    async def join(self) -> None:
        """Wait until every submitted task has finished."""

        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    async def _run(self, task: BackgroundTask) -> None:
        # let the caller finish sending the response first
        await asyncio.sleep(0)
        loop = asyncio.get_running_loop()
        task.state = TaskState.RUNNING
        start = loop.time()
        warning = loop.call_later(self.warning_threshold, self._warn_slow, task)
        budget = task.timeout if task.timeout is not None else self.default_timeout
        try:
            if budget is None:
                await task.run()
            else:
                await asyncio.wait_for(task.run(), budget)
        except asyncio.TimeoutError as exc:
            if budget is not None and loop.time() - start >= budget:
                await self._fail(task, TaskTimeout(task.name or "", budget), None)
            else:
                await self._fail(task, TaskFailure(task.name or "", exc), exc)
        except asyncio.CancelledError:
            task.state = TaskState.FAILED
            _LOGGER.warning("Background task '%s' was cancelled", task.name)
            raise
        except Exception as exc:
            await self._fail(task, TaskFailure(task.name or "", exc), exc)
        else:
            task.state = TaskState.COMPLETED
            await self._notify(task, task.on_complete)
        finally:
            warning.cancel()
            task.duration = loop.time() - start
            self._completed += 1

    def _warn_slow(self, task: BackgroundTask) -> None:
        task.slow = True
        _LOGGER.warning(
            "Background task '%s' exceeded the %dms warning threshold; "
            "move heavy work to an external job queue",
            task.name,
            round(self.warning_threshold * 1000),
        )

    async def _fail(
        self, task: BackgroundTask, error: TaskError, cause: BaseException | None
    ) -> None:
        task.state = TaskState.FAILED
        task.error = error
        exc_info = (type(cause), cause, cause.__traceback__) if cause else None
        _LOGGER.error("%s", error, exc_info=exc_info)
        await self._notify(task, task.on_error, error)

    async def _notify(
        self, task: BackgroundTask, observer: TaskObserver | None, *args: Any
    ) -> None:
        if observer is None:
            return
        try:
            result = observer(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            _LOGGER.error(
                "Observer of background task '%s' raised an exception",
                task.name,
                exc_info=True,
            )


__all__ = [
    "DEFAULT_TIMEOUT",
    "DEFAULT_WARNING_THRESHOLD",
    "BackgroundTask",
    "BackgroundTasks",
    "TaskState",
    "TaskSupervisor",
]
