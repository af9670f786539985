from __future__ import annotations

import asyncio
import sys

import pytest

from bench_client.interception import intercept_run


def test_console_lines_are_routed_and_stdout_restored() -> None:
    lines: list[str] = []
    stdout_before = sys.stdout

    async def body() -> str:
        print("first")
        print("second", end="")
        return "done"

    result = asyncio.run(intercept_run(body, lines.append, lambda error, trace: None))

    assert result == "done"
    assert lines == ["first", "second"]
    assert sys.stdout is stdout_before


def test_async_print_handlers_finish_before_scope_ends() -> None:
    forwarded: list[str] = []

    async def forward(line: str) -> None:
        await asyncio.sleep(0)
        forwarded.append(line)

    async def body() -> None:
        for index in range(3):
            print(f"line {index}")

    asyncio.run(intercept_run(body, forward, lambda error, trace: None))
    assert forwarded == ["line 0", "line 1", "line 2"]


def test_output_from_tasks_spawned_during_the_run_is_captured() -> None:
    lines: list[str] = []

    async def body() -> None:
        async def background() -> None:
            print("from task")

        await asyncio.gather(background())

    asyncio.run(intercept_run(body, lines.append, lambda error, trace: None))
    assert lines == ["from task"]


def test_errors_are_reported_and_reraised() -> None:
    errors: list[tuple[BaseException, str]] = []
    stdout_before = sys.stdout

    async def body() -> None:
        raise ValueError("boom")

    async def on_error(error: BaseException, trace: str) -> None:
        errors.append((error, trace))

    with pytest.raises(ValueError, match="boom"):
        asyncio.run(intercept_run(body, lambda line: None, on_error, reraise=True))

    assert len(errors) == 1
    assert isinstance(errors[0][0], ValueError)
    assert "ValueError: boom" in errors[0][1]
    assert sys.stdout is stdout_before


def test_errors_are_swallowed_without_reraise() -> None:
    errors: list[BaseException] = []

    async def body() -> None:
        raise KeyError("missing")

    result = asyncio.run(
        intercept_run(body, lambda line: None, lambda error, trace: errors.append(error))
    )
    assert result is None
    assert isinstance(errors[0], KeyError)


def test_errors_raised_by_scheduled_callbacks_are_intercepted() -> None:
    errors: list[BaseException] = []

    def explode() -> None:
        raise RuntimeError("callback failed")

    async def scenario() -> None:
        loop = asyncio.get_running_loop()
        handler_before = loop.get_exception_handler()

        async def body() -> None:
            loop.call_soon(explode)
            await asyncio.sleep(0)

        await intercept_run(body, lambda line: None, lambda error, trace: errors.append(error))
        assert loop.get_exception_handler() is handler_before

    asyncio.run(scenario())
    assert len(errors) == 1
    assert str(errors[0]) == "callback failed"


def test_failing_handler_does_not_break_the_scope() -> None:
    async def broken(line: str) -> None:
        raise ConnectionError("server gone")

    async def body() -> int:
        print("lost line")
        return 7

    assert asyncio.run(intercept_run(body, broken, lambda error, trace: None)) == 7


def test_tasks_still_running_when_the_body_returns_are_awaited() -> None:
    lines: list[str] = []
    errors: list[BaseException] = []

    async def background() -> None:
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        print("late line")
        raise RuntimeError("late failure")

    async def scenario() -> None:
        loop = asyncio.get_running_loop()
        factory_before = loop.get_task_factory()

        async def body() -> None:
            asyncio.create_task(background())

        await intercept_run(body, lines.append, lambda error, trace: errors.append(error))
        assert loop.get_task_factory() is factory_before

    asyncio.run(scenario())
    assert lines == ["late line"]
    assert [str(error) for error in errors] == ["late failure"]


def test_task_failures_handled_by_the_body_are_not_reported() -> None:
    errors: list[BaseException] = []

    async def failing() -> None:
        raise ValueError("handled")

    async def body() -> str:
        task = asyncio.create_task(failing())
        with pytest.raises(ValueError):
            await task
        return "ok"

    result = asyncio.run(
        intercept_run(body, lambda line: None, lambda error, trace: errors.append(error))
    )
    assert result == "ok"
    assert errors == []
