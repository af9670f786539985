from __future__ import annotations

import logging
from typing import Awaitable, Callable, Mapping

from .page import ReportPage, SelectionPanel
from .recorder import RecorderFactory

LOGGER = logging.getLogger("bench_client.fallback")


class ManualFallbackPresenter:
    """Lets the user pick the benchmark when no server picks it for us."""

    def __init__(
        self,
        registry: Mapping[str, RecorderFactory],
        page: ReportPage,
        run_benchmark: Callable[[str], Awaitable[None]],
    ) -> None:
        self._registry = registry
        self._page = page
        self._run_benchmark = run_benchmark

    def present(self, message: str) -> SelectionPanel:
        LOGGER.warning("%s", message)
        panel = SelectionPanel(
            message=message,
            entries=tuple(self._registry),
            on_select=self._on_select,
        )
        # Each call replaces whatever panel was shown before.
        self._page.show_panel(panel)
        return panel

    async def _on_select(self, name: str) -> None:
        self._page.remove_panel()
        await self._run_benchmark(name)
