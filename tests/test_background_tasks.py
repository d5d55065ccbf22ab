"""Tests for background task execution."""

from __future__ import annotations

import asyncio
import logging
import time

import pytest

from routekit import BackgroundTasks, TaskState, TaskSupervisor
from routekit.exceptions import TaskFailure, TaskTimeout


def test_slow_task_does_not_delay_response(app, client, caplog) -> None:
    done: list[str] = []

    async def send_welcome_email() -> None:
        await asyncio.sleep(0.15)
        done.append("sent")

    @app.post("/signup", status_code=201)
    def signup(ctx):
        ctx.background.add_task(send_welcome_email, name="welcome-email")
        return {"ok": True}

    with caplog.at_level(logging.WARNING, logger="routekit.tasks"):
        response = client.post("/signup", json_body={})
        assert response.status_code == 201
        assert response.elapsed < 0.1
        assert done == []
        assert app.supervisor.completed == 0
        client.wait_for_tasks()

    assert done == ["sent"]
    assert app.supervisor.completed == 1
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert any("welcome-email" in r.getMessage() for r in warnings)


def test_failing_task_does_not_affect_siblings(caplog) -> None:
    hits: list[int] = []
    errors: list[Exception] = []
    supervisor = TaskSupervisor()

    def boom() -> None:
        raise ValueError("fail")

    async def run() -> list:
        tasks = BackgroundTasks()
        tasks.add_task(hits.append, 1)
        failing = tasks.add_task(boom, on_error=errors.append)
        tasks.add_task(hits.append, 2)
        supervisor.submit(tasks)
        await supervisor.join()
        return [failing]

    with caplog.at_level(logging.ERROR, logger="routekit.tasks"):
        (failing,) = asyncio.run(run())

    assert sorted(hits) == [1, 2]
    assert supervisor.completed == 3
    assert failing.state is TaskState.FAILED
    assert isinstance(errors[0], TaskFailure)
    assert isinstance(errors[0].cause, ValueError)
    error_logs = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert error_logs, "Background task failure should be logged"
    assert all(record.exc_info for record in error_logs)


def test_task_timeout_reported() -> None:
    errors: list[Exception] = []
    supervisor = TaskSupervisor(default_timeout=0.05)

    async def hang() -> None:
        await asyncio.sleep(1)

    async def run() -> None:
        supervisor.add_task(hang, name="hang", on_error=errors.append)
        await supervisor.join()

    asyncio.run(run())
    assert isinstance(errors[0], TaskTimeout)
    assert errors[0].task_name == "hang"
    assert supervisor.completed == 1


def test_on_complete_and_auto_names() -> None:
    completed: list[str] = []
    supervisor = TaskSupervisor()

    async def run() -> list:
        first = supervisor.add_task(lambda: None, on_complete=lambda: completed.append("a"))
        second = supervisor.add_task(lambda: None)
        await supervisor.join()
        return [first, second]

    first, second = asyncio.run(run())
    assert completed == ["a"]
    assert first.name == "task-1"
    assert second.name == "task-2"
    assert first.state is TaskState.COMPLETED
    assert supervisor.pending == 0


def test_reset_counter() -> None:
    supervisor = TaskSupervisor()

    async def run() -> None:
        supervisor.add_task(time.sleep, 0)
        await supervisor.join()

    asyncio.run(run())
    assert supervisor.completed == 1
    supervisor.reset_counter()
    assert supervisor.completed == 0


def test_observer_errors_are_contained(caplog) -> None:
    supervisor = TaskSupervisor()

    def bad_observer() -> None:
        raise RuntimeError("observer broke")

    async def run() -> None:
        supervisor.add_task(lambda: None, on_complete=bad_observer)
        await supervisor.join()

    with caplog.at_level(logging.ERROR, logger="routekit.tasks"):
        asyncio.run(run())
    assert supervisor.completed == 1
    assert any("Observer" in r.getMessage() for r in caplog.records)


def test_tasks_of_failed_request_are_discarded(app, client) -> None:
    hits: list[int] = []

    @app.post("/orders")
    def create_order(ctx):
        ctx.background.add_task(hits.append, 1)
        raise RuntimeError("database unavailable")

    response = client.post("/orders", json_body={})
    assert response.status_code == 500
    client.wait_for_tasks()
    assert hits == []
    assert app.supervisor.completed == 0


def test_add_task_requires_callable() -> None:
    with pytest.raises(TypeError):
        BackgroundTasks().add_task("not callable")  # type: ignore[arg-type]
