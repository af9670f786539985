from __future__ import annotations

import asyncio

import httpx
import pytest

from bench_client.client import (
    END_OF_BENCHMARKS,
    MANUAL_FALLBACK,
    BenchmarkServerError,
    LocalBenchmarkServerClient,
    ManualModeError,
    SessionMode,
)
from bench_client.recorder import Profile, Timeseries

from .conftest import SERVER_URL, FakeBenchmarkServer, json_body


def _profile() -> Profile:
    return Profile(name="A", score_data={"frame": Timeseries("frame", samples=[1.0, 2.0])})


def _request_next(server: FakeBenchmarkServer, names=("A", "B")):
    async def scenario():
        async with LocalBenchmarkServerClient(SERVER_URL, transport=server.transport) as client:
            name = await client.request_next_benchmark(names)
            return name, client.mode

    return asyncio.run(scenario())


def test_end_of_benchmarks_switches_to_manual_mode() -> None:
    server = FakeBenchmarkServer([END_OF_BENCHMARKS])
    assert _request_next(server) == (MANUAL_FALLBACK, SessionMode.MANUAL)


def test_not_found_switches_to_manual_mode() -> None:
    server = FakeBenchmarkServer([404])
    assert _request_next(server) == (MANUAL_FALLBACK, SessionMode.MANUAL)


def test_unreachable_server_switches_to_manual_mode() -> None:
    server = FakeBenchmarkServer(failing_paths=("/next-benchmark",))
    assert _request_next(server) == (MANUAL_FALLBACK, SessionMode.MANUAL)


def test_benchmark_name_switches_to_automatic_mode() -> None:
    server = FakeBenchmarkServer(["B"])
    assert _request_next(server) == ("B", SessionMode.AUTOMATIC)
    request = server.requests[0]
    assert request.method == "POST"
    assert json_body(request) == ["A", "B"]


def test_server_error_on_next_benchmark_raises() -> None:
    server = FakeBenchmarkServer([500])
    with pytest.raises(BenchmarkServerError):
        _request_next(server)


@pytest.mark.parametrize(
    "operation",
    [
        lambda client: client.start_performance_tracing("A"),
        lambda client: client.stop_performance_tracing(),
        lambda client: client.send_profile_data(_profile()),
        lambda client: client.report_error(ValueError("boom"), "trace"),
        lambda client: client.print_to_console("line"),
    ],
)
def test_server_operations_are_forbidden_in_manual_mode(operation) -> None:
    server = FakeBenchmarkServer([404])

    async def scenario():
        async with LocalBenchmarkServerClient(SERVER_URL, transport=server.transport) as client:
            await client.request_next_benchmark(["A"])
            await operation(client)

    with pytest.raises(ManualModeError):
        asyncio.run(scenario())
    assert server.paths == ["/next-benchmark"]


def test_server_operations_are_forbidden_before_mode_is_known(server) -> None:
    async def scenario():
        async with LocalBenchmarkServerClient(SERVER_URL, transport=server.transport) as client:
            await client.print_to_console("too early")

    with pytest.raises(ManualModeError):
        asyncio.run(scenario())
    assert server.requests == []


def _in_automatic_mode(server: FakeBenchmarkServer, operation):
    async def scenario():
        async with LocalBenchmarkServerClient(SERVER_URL, transport=server.transport) as client:
            await client.request_next_benchmark(["A"])
            await operation(client)

    asyncio.run(scenario())


def test_tracing_requests() -> None:
    server = FakeBenchmarkServer(["A"])

    async def operation(client):
        await client.start_performance_tracing("A")
        await client.stop_performance_tracing()

    _in_automatic_mode(server, operation)
    start, stop = server.requests[1:]
    assert start.url.path == "/start-performance-tracing"
    assert start.url.params["label"] == "A"
    assert stop.url.path == "/stop-performance-tracing"
    assert all(request.method == "POST" for request in server.requests)


def test_send_profile_data_posts_json() -> None:
    server = FakeBenchmarkServer(["A"])
    _in_automatic_mode(server, lambda client: client.send_profile_data(_profile()))
    payload = json_body(server.requests[1])
    assert payload["name"] == "A"
    assert payload["scoreData"]["frame"]["samples"] == [1.0, 2.0]


def test_send_profile_data_rejected_by_server() -> None:
    server = FakeBenchmarkServer(["A"], profile_status=500)
    with pytest.raises(BenchmarkServerError, match="status code 500"):
        _in_automatic_mode(server, lambda client: client.send_profile_data(_profile()))


def test_report_error_and_print_to_console() -> None:
    server = FakeBenchmarkServer(["A"])

    async def operation(client):
        await client.report_error(ValueError("boom"), "stack")
        await client.print_to_console("hello")

    _in_automatic_mode(server, operation)
    assert json_body(server.requests[1]) == {"error": "boom", "stackTrace": "stack"}
    assert server.bodies("/print-to-console") == ["hello"]
    assert server.requests[2].headers["Content-Type"] == "text/plain"


def test_connection_failures_are_not_retried() -> None:
    server = FakeBenchmarkServer(["A"], failing_paths=("/print-to-console",))
    with pytest.raises(httpx.ConnectError):
        _in_automatic_mode(server, lambda client: client.print_to_console("hello"))
    assert server.paths.count("/print-to-console") == 1
