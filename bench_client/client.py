from __future__ import annotations

import enum
import json
import logging
from typing import Any, Iterable

import httpx

from .recorder import Profile

LOGGER = logging.getLogger("bench_client.client")

MANUAL_FALLBACK = "__manual_fallback__"
END_OF_BENCHMARKS = "__end_of_benchmarks__"
HTTP_TIMEOUT_S_DEFAULT = 30.0


class SessionMode(enum.Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class BenchmarkServerError(Exception):
    """Raised when the benchmark server rejects a report."""


class ManualModeError(RuntimeError):
    """Raised when a server-only operation is used without a server."""


class LocalBenchmarkServerClient:
    """Client side of the REST API exposed by the local benchmark server.

    The server is optional. When it is missing (404 on ``/next-benchmark``,
    or nothing listening at all) the session falls back to manual mode and
    every server-only operation becomes a contract violation.
    """

    def __init__(
        self,
        base_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_s: float = HTTP_TIMEOUT_S_DEFAULT,
    ) -> None:
        self._http = httpx.AsyncClient(
            base_url=base_url,
            transport=transport,
            timeout=httpx.Timeout(timeout_s),
        )
        self._mode: SessionMode | None = None

    async def __aenter__(self) -> LocalBenchmarkServerClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def mode(self) -> SessionMode | None:
        return self._mode

    @property
    def is_in_manual_mode(self) -> bool:
        return self._mode is SessionMode.MANUAL

    def enter_manual_mode(self) -> None:
        self._mode = SessionMode.MANUAL

    async def request_next_benchmark(self, known_names: Iterable[str]) -> str:
        """Ask the server which benchmark to run next.

        Returns :data:`MANUAL_FALLBACK` when there is no server or it has no
        more benchmarks for us.
        """
        try:
            response = await self._http.post(
                "/next-benchmark",
                content=json.dumps(list(known_names)),
                headers={"Content-Type": "application/json"},
            )
        except httpx.TransportError as exc:
            LOGGER.warning("Benchmark server unreachable: %s", exc)
            self._mode = SessionMode.MANUAL
            return MANUAL_FALLBACK

        if response.text == END_OF_BENCHMARKS or response.status_code == 404:
            self._mode = SessionMode.MANUAL
            return MANUAL_FALLBACK

        if not response.is_success:
            raise BenchmarkServerError(
                "Failed to request the next benchmark. "
                f"The server responded with status code {response.status_code}."
            )

        self._mode = SessionMode.AUTOMATIC
        return response.text

    def _check_not_manual_mode(self) -> None:
        if self._mode is not SessionMode.AUTOMATIC:
            raise ManualModeError("Operation not supported in manual fallback mode.")

    async def start_performance_tracing(self, label: str) -> None:
        """Ask the server to start a tracing session labelled ``label``.

        Tracing is recorded outside the client, so only the server can do it.
        """
        self._check_not_manual_mode()
        await self._http.post(
            "/start-performance-tracing",
            params={"label": label},
            headers={"Content-Type": "application/json"},
        )

    async def stop_performance_tracing(self) -> None:
        self._check_not_manual_mode()
        await self._http.post(
            "/stop-performance-tracing",
            headers={"Content-Type": "application/json"},
        )

    async def send_profile_data(self, profile: Profile) -> None:
        self._check_not_manual_mode()
        response = await self._http.post(
            "/profile-data",
            content=json.dumps(profile.to_json()),
            headers={"Content-Type": "application/json"},
        )
        if response.status_code != 200:
            raise BenchmarkServerError(
                "Failed to report profile data to benchmark server. "
                f"The server responded with status code {response.status_code}."
            )

    async def report_error(self, error: Any, stack_trace: str) -> None:
        """Report an uncaught error; the server halts the task and logs it."""
        self._check_not_manual_mode()
        await self._http.post(
            "/on-error",
            content=json.dumps({"error": f"{error}", "stackTrace": f"{stack_trace}"}),
            headers={"Content-Type": "application/json"},
        )

    async def print_to_console(self, line: str) -> None:
        self._check_not_manual_mode()
        await self._http.post(
            "/print-to-console",
            content=line,
            headers={"Content-Type": "text/plain"},
        )


__all__ = [
    "END_OF_BENCHMARKS",
    "MANUAL_FALLBACK",
    "BenchmarkServerError",
    "LocalBenchmarkServerClient",
    "ManualModeError",
    "SessionMode",
]
