from __future__ import annotations

import json
from typing import Callable

import httpx
import pytest

from bench_client.client import END_OF_BENCHMARKS
from bench_client.recorder import Profile, Recorder, Timeseries

SERVER_URL = "http://localhost:9999"


class FakeBenchmarkServer:
    """In-memory stand-in for the local benchmark server."""

    def __init__(
        self,
        next_benchmarks: list[str | int] | None = None,
        profile_status: int = 200,
        failing_paths: tuple[str, ...] = (),
    ) -> None:
        # Strings are returned as the body, ints as a bare status code.
        self.next_benchmarks = list(next_benchmarks or [END_OF_BENCHMARKS])
        self.profile_status = profile_status
        self.failing_paths = failing_paths
        self.requests: list[httpx.Request] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    @property
    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]

    def bodies(self, path: str) -> list[str]:
        return [
            request.content.decode("utf-8")
            for request in self.requests
            if request.url.path == path
        ]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in self.failing_paths:
            raise httpx.ConnectError("connection refused", request=request)
        if path == "/next-benchmark":
            answer = self.next_benchmarks.pop(0) if self.next_benchmarks else END_OF_BENCHMARKS
            if isinstance(answer, int):
                return httpx.Response(answer, text="")
            return httpx.Response(200, text=answer)
        if path == "/profile-data":
            return httpx.Response(self.profile_status)
        return httpx.Response(200)


class StaticRecorder(Recorder):
    """Recorder that replays fixed samples, optionally printing or failing."""

    def __init__(
        self,
        name: str,
        samples: tuple[float, ...] = (5.0, 5.0, 1.0, 2.0, 3.0, 2.0),
        warm_up_count: int = 2,
        is_tracing_enabled: bool = False,
        output: tuple[str, ...] = (),
        error: Exception | None = None,
    ) -> None:
        super().__init__(name, is_tracing_enabled=is_tracing_enabled)
        self.samples = samples
        self.warm_up_count = warm_up_count
        self.output = output
        self.error = error

    async def run(self) -> Profile:
        for line in self.output:
            print(line)
        if self.error is not None:
            raise self.error
        timeseries = Timeseries(
            "frame",
            samples=self.samples,
            warm_up_count=self.warm_up_count,
            source=self.name,
        )
        return Profile(name=self.name, score_data={"frame": timeseries})


def recorder_factory(name: str, **kwargs) -> Callable[[], Recorder]:
    return lambda: StaticRecorder(name, **kwargs)


def json_body(request: httpx.Request):
    return json.loads(request.content.decode("utf-8"))


@pytest.fixture
def server() -> FakeBenchmarkServer:
    return FakeBenchmarkServer()
