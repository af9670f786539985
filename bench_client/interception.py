from __future__ import annotations

import asyncio
import inspect
import io
import logging
import sys
import traceback
from typing import Any, Awaitable, Callable, TypeVar

LOGGER = logging.getLogger("bench_client.interception")

T = TypeVar("T")

PrintHandler = Callable[[str], "Awaitable[None] | None"]
ErrorHandler = Callable[[BaseException, str], "Awaitable[None] | None"]


class _LineWriter(io.TextIOBase):
    """Text stream that hands every complete line to a callback."""

    def __init__(self, on_line: Callable[[str], None]) -> None:
        super().__init__()
        self._on_line = on_line
        self._partial = ""

    def writable(self) -> bool:
        return True

    def write(self, text: str) -> int:
        data = self._partial + text
        *lines, self._partial = data.split("\n")
        for line in lines:
            self._on_line(line)
        return len(text)

    def flush_partial(self) -> None:
        if self._partial:
            line, self._partial = self._partial, ""
            self._on_line(line)


class RunInterceptor:
    """Routes console output and uncaught errors of one run to handlers.

    Handlers may be plain functions or coroutine functions. Coroutines are
    scheduled as tasks and all of them are awaited before the scope ends.
    """

    def __init__(
        self,
        on_print: PrintHandler,
        on_error: ErrorHandler,
        reraise: bool = False,
    ) -> None:
        self._on_print = on_print
        self._on_error = on_error
        self._reraise = reraise
        self._pending: set[asyncio.Task[Any]] = set()
        self._spawned: set[asyncio.Task[Any]] = set()
        self._previous_factory: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._previous_handler: Any = None

    async def run(self, body: Callable[[], Awaitable[T]]) -> T | None:
        loop = asyncio.get_running_loop()
        self._loop = loop
        writer = _LineWriter(self._handle_line)
        previous_stdout = sys.stdout
        self._previous_handler = loop.get_exception_handler()
        self._previous_factory = loop.get_task_factory()

        sys.stdout = writer
        loop.set_exception_handler(self._handle_loop_error)
        loop.set_task_factory(self._create_task)
        try:
            try:
                return await body()
            except Exception as exc:
                await self._dispatch_error(exc, traceback.format_exc())
                if self._reraise:
                    raise
                return None
            finally:
                while True:
                    await self._join_spawned()
                    writer.flush_partial()
                    # Let callbacks scheduled by the run fire inside the scope.
                    await asyncio.sleep(0)
                    await self._drain()
                    if not self._spawned:
                        break
        finally:
            sys.stdout = previous_stdout
            loop.set_exception_handler(self._previous_handler)
            loop.set_task_factory(self._previous_factory)
            self._loop = None

    def _create_task(
        self, loop: asyncio.AbstractEventLoop, coro: Any, **kwargs: Any
    ) -> asyncio.Future[Any]:
        # Every task started while the scope is active belongs to the run.
        if self._previous_factory is not None:
            task = self._previous_factory(loop, coro, **kwargs)
        else:
            task = asyncio.Task(coro, loop=loop, **kwargs)
        self._spawned.add(task)
        return task

    async def _join_spawned(self) -> None:
        # Finished tasks were already awaited by the run or will report an
        # unretrieved exception through the loop handler once released.
        while self._spawned:
            batch = [task for task in self._spawned if not task.done()]
            self._spawned.clear()
            results = await asyncio.gather(*batch, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    stack_trace = "".join(
                        traceback.format_exception(type(result), result, result.__traceback__)
                    )
                    await self._dispatch_error(result, stack_trace)

    def _handle_line(self, line: str) -> None:
        self._schedule(self._on_print(line))

    def _handle_loop_error(
        self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]
    ) -> None:
        exc = context.get("exception")
        if exc is None:
            self._signal_previous(loop, context)
            return
        stack_trace = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        )
        self._schedule(self._on_error(exc, stack_trace))
        if self._reraise:
            self._signal_previous(loop, context)

    def _signal_previous(
        self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]
    ) -> None:
        if self._previous_handler is not None:
            self._previous_handler(loop, context)
        else:
            loop.default_exception_handler(context)

    async def _dispatch_error(self, exc: BaseException, stack_trace: str) -> None:
        result = self._on_error(exc, stack_trace)
        if inspect.isawaitable(result):
            await result

    def _schedule(self, result: Awaitable[None] | None) -> None:
        if not inspect.isawaitable(result):
            return
        assert self._loop is not None
        task = self._loop.create_task(_as_coroutine(result))
        self._spawned.discard(task)
        self._pending.add(task)

    async def _drain(self) -> None:
        while self._pending:
            batch = list(self._pending)
            self._pending.clear()
            results = await asyncio.gather(*batch, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    LOGGER.error(
                        "Interception handler failed: %s",
                        result,
                        exc_info=(type(result), result, result.__traceback__),
                    )


async def intercept_run(
    body: Callable[[], Awaitable[T]],
    on_print: PrintHandler,
    on_error: ErrorHandler,
    reraise: bool = False,
) -> T | None:
    """Run ``body`` with its console output and uncaught errors redirected.

    ``sys.stdout`` and the loop exception handler are replaced for the
    duration of the call and restored afterwards, whatever the outcome.
    Tasks started by ``body`` are awaited before that happens, and their
    failures go to ``on_error`` like any other uncaught error. An
    exception escaping ``body`` goes to ``on_error`` and is re-raised only
    when ``reraise`` is set; otherwise the call returns ``None``.
    """
    return await RunInterceptor(on_print, on_error, reraise=reraise).run(body)


async def _as_coroutine(awaitable: Awaitable[None]) -> None:
    await awaitable
