from __future__ import annotations

import enum
import functools
import logging
import sys
from types import MappingProxyType
from typing import Mapping, TextIO
from urllib.parse import urlsplit, urlunsplit

from .charts import CHART_WIDTH_DEFAULT, build_chart
from .client import MANUAL_FALLBACK, LocalBenchmarkServerClient
from .fallback import ManualFallbackPresenter
from .interception import intercept_run
from .page import ReportPage
from .recorder import Profile, RecorderFactory, Runner

LOGGER = logging.getLogger("bench_client.session")

DEFAULT_INITIAL_PAGE = "index.html"

NO_ASSIGNMENT_MESSAGE = "The server did not tell us which benchmark to run next."


class SessionState(enum.Enum):
    INIT = "init"
    AWAITING_ASSIGNMENT = "awaiting-assignment"
    MANUAL_FALLBACK = "manual-fallback"
    RUNNING = "running"
    REPORTING = "reporting"
    RELOADING = "reloading"


class SessionOrchestrator:
    """Drives a single benchmark run from assignment to report.

    One instance handles one page load. In automatic mode a successful run
    ends by replacing the page location, and the next benchmark is run by a
    fresh orchestrator.
    """

    def __init__(
        self,
        registry: Mapping[str, RecorderFactory],
        client: LocalBenchmarkServerClient,
        page: ReportPage,
        initial_page: str = DEFAULT_INITIAL_PAGE,
        chart_width: float = CHART_WIDTH_DEFAULT,
        console: TextIO | None = None,
    ) -> None:
        self._registry = MappingProxyType(dict(registry))
        self._client = client
        self._page = page
        self._initial_page = initial_page
        self._chart_width = chart_width
        self._console = console
        self._presenter = ManualFallbackPresenter(self._registry, page, self.run_benchmark)
        self.state = SessionState.INIT
        self.diagnostic: str | None = None
        self.last_profile: Profile | None = None

    @property
    def registry(self) -> Mapping[str, RecorderFactory]:
        return self._registry

    async def run(self) -> SessionState:
        self.state = SessionState.AWAITING_ASSIGNMENT
        try:
            next_benchmark = await self._client.request_next_benchmark(self._registry.keys())
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Requesting the next benchmark failed", exc_info=True)
            self._client.enter_manual_mode()
            self._fall_back_to_manual(f"Failed to request the next benchmark: {exc}")
            return self.state

        if next_benchmark == MANUAL_FALLBACK:
            self._fall_back_to_manual(NO_ASSIGNMENT_MESSAGE)
            return self.state

        await self.run_benchmark(next_benchmark)

        if self.state is SessionState.REPORTING and not self._client.is_in_manual_mode:
            self._reload()
        return self.state

    async def run_benchmark(self, name: str) -> None:
        """Run ``name`` and report its profile to the server or the page."""
        factory = self._registry.get(name)
        if factory is None:
            self._client.enter_manual_mode()
            self._fall_back_to_manual(f"Benchmark {name} not found.")
            return

        self.state = SessionState.RUNNING
        manual = self._client.is_in_manual_mode
        console = self._console or sys.stdout
        LOGGER.info("Running benchmark %s (%s mode)", name, "manual" if manual else "automatic")

        async def body() -> None:
            recorder = factory()
            if recorder.is_tracing_enabled and not manual:
                runner = Runner(
                    recorder=recorder,
                    set_up_all_did_run=functools.partial(
                        self._client.start_performance_tracing, name
                    ),
                    tear_down_all_will_run=self._client.stop_performance_tracing,
                )
            else:
                runner = Runner(recorder=recorder)

            profile = await runner.run()
            self.state = SessionState.REPORTING
            self.last_profile = profile
            if manual:
                self._print_results_to_page(profile)
                print(profile)
            else:
                await self._client.send_profile_data(profile)

        def on_print(line: str):
            if manual:
                print(f"[{name}] {line}", file=console)
                return None
            return self._client.print_to_console(line)

        async def on_error(error: BaseException, stack_trace: str) -> None:
            if manual:
                print(f"[{name}] {error}, {stack_trace}", file=console)
                return
            try:
                await self._client.report_error(error, stack_trace)
            except Exception as report_exc:  # noqa: BLE001
                print(f"[{name}] failed to report error: {report_exc!r}", file=console)
                print(f"[{name}] {error}, {stack_trace}", file=console)

        await intercept_run(body, on_print, on_error, reraise=not manual)

    def _fall_back_to_manual(self, message: str) -> None:
        self.state = SessionState.MANUAL_FALLBACK
        self.diagnostic = message
        self._presenter.present(message)

    def _print_results_to_page(self, profile: Profile) -> None:
        self._page.reset(profile.name)
        for score_key, timeseries in profile.score_data.items():
            stats = timeseries.compute_stats()
            self._page.add_heading(score_key)
            self._page.add_preformatted(str(stats))
            self._page.add_chart(build_chart(timeseries, stats, width=self._chart_width))

    def _reload(self) -> None:
        self.state = SessionState.RELOADING
        current = urlsplit(self._page.location)
        path = "/" + self._initial_page.lstrip("/")
        self._page.replace_location(urlunsplit((current.scheme, current.netloc, path, "", "")))
