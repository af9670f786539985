from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import seaborn as sns  # noqa: E402
from matplotlib.patches import Rectangle  # noqa: E402

from .recorder import Timeseries, TimeseriesStats  # noqa: E402

LOGGER = logging.getLogger("bench_client.charts")

sns.set_style("white")

CHART_HEIGHT = 200.0
CHART_WIDTH_DEFAULT = 1200.0

# RGBA colors, channels in 0-255 and alpha in 0-1.
WARM_UP_COLOR = (200, 200, 200, 1.0)
OVERFLOW_COLOR = (100, 50, 100, 0.8)
OUTLIER_COLOR = (255, 50, 50, 0.6)
DEFAULT_COLOR = (50, 50, 255, 0.6)
NOISE_BAND_COLOR = (255, 50, 50, 0.3)
LINE_COLOR = (0, 0, 0, 1.0)

Color = tuple[int, int, int, float]


@dataclass(frozen=True)
class ChartRect:
    x: float
    y: float
    width: float
    height: float
    color: Color


@dataclass(frozen=True)
class ChartLine:
    y: float
    dashed: bool
    color: Color = LINE_COLOR


@dataclass(frozen=True)
class TimeseriesChart:
    """Drawable primitives for one timeseries, y axis pointing up."""

    title: str
    width: float
    height: float
    max_value_chart_range: float
    backgrounds: tuple[ChartRect, ...]
    bars: tuple[ChartRect, ...]
    average_line: ChartLine
    cut_off_line: ChartLine
    noise_band: ChartRect


def build_chart(
    timeseries: Timeseries,
    stats: TimeseriesStats,
    width: float = CHART_WIDTH_DEFAULT,
    height: float = CHART_HEIGHT,
) -> TimeseriesChart:
    """Map a timeseries and its stats to chart primitives.

    The vertical range is 1.5x the biggest non-outlier so that a few huge
    outliers cannot flatten every other bar.
    """
    if len(stats.samples) != len(timeseries):
        raise ValueError(
            f"{timeseries.name}: stats cover {len(stats.samples)} samples, "
            f"timeseries has {len(timeseries)}"
        )

    magnitudes = np.array([sample.magnitude for sample in stats.samples], dtype=float)
    outlier_mask = np.array([sample.is_outlier for sample in stats.samples], dtype=bool)
    max_value_chart_range = 1.5 * float(
        np.max(magnitudes[~outlier_mask], initial=0.0)
    )

    def normalized(value: float) -> float:
        if max_value_chart_range == 0:
            return 0.0
        return height * value / max_value_chart_range

    backgrounds: list[ChartRect] = []
    bars: list[ChartRect] = []
    bar_width = width / len(stats.samples) if stats.samples else 0.0
    x_offset = 0.0
    for sample in stats.samples:
        if sample.is_warm_up_value:
            backgrounds.append(
                ChartRect(x_offset, 0.0, bar_width, normalized(max_value_chart_range), WARM_UP_COLOR)
            )

        if sample.magnitude > max_value_chart_range:
            color = OVERFLOW_COLOR
        elif sample.is_outlier:
            color = OUTLIER_COLOR
        else:
            color = DEFAULT_COLOR

        bars.append(
            ChartRect(x_offset, 0.0, bar_width - 1, normalized(sample.magnitude), color)
        )
        x_offset += bar_width

    return TimeseriesChart(
        title=timeseries.name,
        width=width,
        height=height,
        max_value_chart_range=max_value_chart_range,
        backgrounds=tuple(backgrounds),
        bars=tuple(bars),
        average_line=ChartLine(normalized(stats.average), dashed=False),
        cut_off_line=ChartLine(normalized(stats.outlier_cut_off), dashed=True),
        noise_band=ChartRect(
            0.0,
            normalized(stats.average * (1 - stats.noise)),
            width,
            normalized(2 * stats.average * stats.noise),
            NOISE_BAND_COLOR,
        ),
    )


def render_chart(chart: TimeseriesChart, target: Path | BinaryIO) -> None:
    """Paint ``chart`` as a PNG into a file path or binary stream."""
    dpi = 100
    fig, ax = plt.subplots(figsize=(chart.width / dpi, chart.height / dpi), dpi=dpi)
    try:
        ax.set_xlim(0, chart.width)
        ax.set_ylim(0, chart.height)
        ax.set_axis_off()
        fig.subplots_adjust(left=0, right=1, top=1, bottom=0)

        for rect in chart.backgrounds + chart.bars:
            ax.add_patch(_to_patch(rect))

        for line in (chart.average_line, chart.cut_off_line):
            ax.axhline(
                line.y,
                color=_to_mpl_color(line.color),
                linewidth=1,
                linestyle=(0, (5, 5)) if line.dashed else "solid",
            )

        ax.add_patch(_to_patch(chart.noise_band))
        fig.savefig(target, format="png", facecolor="white", edgecolor="green")
    finally:
        plt.close(fig)

    if isinstance(target, Path):
        LOGGER.info("Rendering chart %s", target)


def chart_to_png(chart: TimeseriesChart) -> bytes:
    buffer = io.BytesIO()
    render_chart(chart, buffer)
    return buffer.getvalue()


def _to_patch(rect: ChartRect) -> Rectangle:
    return Rectangle(
        (rect.x, rect.y),
        rect.width,
        rect.height,
        facecolor=_to_mpl_color(rect.color),
        edgecolor="none",
        linewidth=0,
    )


def _to_mpl_color(color: Color) -> tuple[float, float, float, float]:
    red, green, blue, alpha = color
    return (red / 255, green / 255, blue / 255, alpha)
