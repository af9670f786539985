from __future__ import annotations

import base64
import html
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable

from .charts import TimeseriesChart, chart_to_png

LOGGER = logging.getLogger("bench_client.page")


@dataclass(frozen=True)
class SelectionPanel:
    """Benchmark picker shown when no server tells us what to run."""

    message: str
    entries: tuple[str, ...]
    on_select: Callable[[str], Awaitable[None]]

    async def select(self, name: str) -> None:
        if name not in self.entries:
            raise KeyError(name)
        await self.on_select(name)

    def render_text(self) -> str:
        lines = [self.message, "", "Choose one of the following benchmarks:"]
        lines.extend(f"  {index}. {name}" for index, name in enumerate(self.entries, start=1))
        return "\n".join(lines)


@dataclass(frozen=True)
class _Section:
    kind: str
    content: str | TimeseriesChart


class ReportPage:
    """Document the client draws into, plus the location it was loaded from.

    Replacing the location requests a reload; the caller is expected to start
    a fresh session at the new location.
    """

    def __init__(self, location: str) -> None:
        self.location = location
        self.reload_requested = False
        self.panel: SelectionPanel | None = None
        self.title: str | None = None
        self._sections: list[_Section] = []

    def replace_location(self, url: str) -> None:
        LOGGER.info("Reloading at %s", url)
        self.location = url
        self.reload_requested = True

    def show_panel(self, panel: SelectionPanel) -> None:
        self.panel = panel

    def remove_panel(self) -> None:
        self.panel = None

    def reset(self, title: str) -> None:
        self.title = title
        self._sections.clear()

    def add_heading(self, text: str) -> None:
        self._sections.append(_Section("heading", text))

    def add_preformatted(self, text: str) -> None:
        self._sections.append(_Section("pre", text))

    def add_chart(self, chart: TimeseriesChart) -> None:
        self._sections.append(_Section("chart", chart))

    @property
    def charts(self) -> list[TimeseriesChart]:
        return [section.content for section in self._sections if section.kind == "chart"]

    def to_html(self) -> str:
        parts = ["<!DOCTYPE html>", "<html>", "<body>"]
        if self.panel is not None:
            parts.append('<div id="manual-panel">')
            parts.append(f"<h3>{html.escape(self.panel.message)}</h3>")
            parts.append("<p>Choose one of the following benchmarks:</p>")
            parts.append("<ul>")
            parts.extend(
                f'<li><button id="{html.escape(name)}">{html.escape(name)}</button></li>'
                for name in self.panel.entries
            )
            parts.append("</ul>")
            parts.append("</div>")
        if self.title is not None:
            parts.append(f"<h2>{html.escape(self.title)}</h2>")
        for section in self._sections:
            if section.kind == "heading":
                parts.append(f"<h2>{html.escape(section.content)}</h2>")
            elif section.kind == "pre":
                parts.append(f"<pre>{html.escape(section.content)}</pre>")
            else:
                encoded = base64.b64encode(chart_to_png(section.content)).decode("ascii")
                parts.append(
                    f'<img alt="{html.escape(section.content.title)}" '
                    f'style="width: 100%; outline: 1px solid green" '
                    f'src="data:image/png;base64,{encoded}">'
                )
        parts.extend(["</body>", "</html>"])
        return "\n".join(parts)

    def save(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_html(), encoding="utf-8")
        LOGGER.info("Results page written to %s", path)
        return path
