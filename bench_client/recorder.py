from __future__ import annotations

import abc
import logging
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, Mapping

import numpy as np
import pandas as pd

LOGGER = logging.getLogger("bench_client.recorder")

# Derived keys written next to the raw score data in the profile JSON.
_DERIVED_SUFFIXES = (".average", ".outlierAverage", ".outlierRatio", ".noise")


@dataclass(frozen=True)
class AnnotatedSample:
    """A single timeseries value annotated by the stats computation."""

    magnitude: float
    is_warm_up_value: bool
    is_outlier: bool


@dataclass(frozen=True)
class TimeseriesStats:
    """Statistics computed once from a :class:`Timeseries`."""

    name: str
    average: float
    outlier_cut_off: float
    outlier_average: float
    standard_deviation: float
    noise: float
    clean_sample_count: int
    outlier_sample_count: int
    samples: tuple[AnnotatedSample, ...]

    @property
    def outlier_ratio(self) -> float:
        """How much bigger the outliers are compared to the clean average.

        1.0 means there were no outliers.
        """
        if self.average == 0:
            return 1.0
        return self.outlier_average / self.average

    def __str__(self) -> str:
        measured = self.clean_sample_count + self.outlier_sample_count
        lines = [
            f"{self.name}: (samples: {self.clean_sample_count} clean/"
            f"{self.outlier_sample_count} outliers/{measured} measured/"
            f"{len(self.samples)} total)",
            f" | average: {self.average} μs",
            f" | outlier average: {self.outlier_average} μs",
            f" | outlier/clean ratio: {self.outlier_ratio}x",
            f" | noise: {_ratio_to_percent(self.noise)}",
        ]
        return "\n".join(lines)


class Timeseries:
    """Ordered raw samples for one score metric.

    Warm-up samples are always recorded before measured ones.
    """

    def __init__(
        self,
        name: str,
        is_reported: bool = True,
        samples: Iterable[float] = (),
        warm_up_count: int = 0,
        source: str | None = None,
    ) -> None:
        self.name = name
        self.is_reported = is_reported
        self.source = source
        self._values: list[float] = [float(value) for value in samples]
        if warm_up_count < 0 or warm_up_count > len(self._values):
            raise ValueError(
                f"warm_up_count {warm_up_count} out of range for {len(self._values)} samples"
            )
        self._warm_up_count = warm_up_count
        self._sealed = False

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return (
            f"Timeseries(name={self.name!r}, samples={len(self._values)}, "
            f"warm_up_count={self._warm_up_count})"
        )

    @property
    def samples(self) -> tuple[float, ...]:
        return tuple(self._values)

    @property
    def warm_up_count(self) -> int:
        return self._warm_up_count

    @property
    def measured_count(self) -> int:
        return len(self._values) - self._warm_up_count

    @property
    def is_sealed(self) -> bool:
        return self._sealed

    def sealed(self) -> Timeseries:
        """Return a read-only copy of this timeseries."""
        if self._sealed:
            return self
        copy = Timeseries(
            self.name,
            is_reported=self.is_reported,
            samples=self._values,
            warm_up_count=self._warm_up_count,
            source=self.source,
        )
        copy._sealed = True
        return copy

    def add(self, value: float, is_warm_up: bool = False) -> None:
        if self._sealed:
            raise ValueError(f"{self.name}: timeseries is sealed")
        if is_warm_up:
            if self._warm_up_count != len(self._values):
                raise ValueError(
                    f"{self.name}: warm-up value recorded after measured values"
                )
            self._warm_up_count += 1
        self._values.append(float(value))

    def compute_stats(self) -> TimeseriesStats:
        values = np.asarray(self._values, dtype=float)
        warm_up_values = values[: self._warm_up_count]
        candidates = values[self._warm_up_count :]
        if candidates.size == 0:
            raise ValueError(f"{self.name}: no measured samples to compute stats from")

        dirty_average = float(candidates.mean())
        dirty_deviation = float(candidates.std())
        outlier_cut_off = dirty_average + dirty_deviation

        clean = candidates[candidates <= outlier_cut_off]
        outliers = candidates[candidates > outlier_cut_off]

        average = float(clean.mean())
        standard_deviation = float(clean.std())
        noise = standard_deviation / average if average > 0.0 else 0.0
        outlier_average = float(outliers.mean()) if outliers.size else average

        annotated = tuple(
            AnnotatedSample(
                magnitude=float(value),
                is_warm_up_value=index < warm_up_values.size,
                is_outlier=bool(value > outlier_cut_off),
            )
            for index, value in enumerate(values)
        )
        return TimeseriesStats(
            name=self.name,
            average=average,
            outlier_cut_off=outlier_cut_off,
            outlier_average=outlier_average,
            standard_deviation=standard_deviation,
            noise=noise,
            clean_sample_count=int(clean.size),
            outlier_sample_count=int(outliers.size),
            samples=annotated,
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "isReported": self.is_reported,
            "warmUpCount": self._warm_up_count,
            "source": self.source,
            "samples": list(self._values),
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> Timeseries:
        return cls(
            name=payload["name"],
            is_reported=bool(payload.get("isReported", True)),
            samples=payload.get("samples", ()),
            warm_up_count=int(payload.get("warmUpCount", 0)),
            source=payload.get("source"),
        )


@dataclass(frozen=True)
class Profile:
    """Named result of one benchmark run, keyed by score metric.

    The profile takes sealed copies of its timeseries, so it cannot change
    once produced. Every series needs at least one measured sample.
    """

    name: str
    score_data: Mapping[str, Timeseries] = field(default_factory=dict)
    extra_data: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for key, timeseries in self.score_data.items():
            if timeseries.measured_count == 0:
                raise ValueError(f"{self.name}: score {key!r} has no measured samples")
        score_data = {key: timeseries.sealed() for key, timeseries in self.score_data.items()}
        object.__setattr__(self, "score_data", MappingProxyType(score_data))
        object.__setattr__(self, "extra_data", MappingProxyType(dict(self.extra_data)))

    def to_json(self) -> dict[str, Any]:
        score_keys: list[str] = []
        payload: dict[str, Any] = {"name": self.name, "scoreKeys": score_keys}
        for key, timeseries in self.score_data.items():
            if timeseries.is_reported:
                score_keys.append(f"{key}.average")
                # The ratio is reported rather than the outlier average because
                # it stays comparable when the clean average moves.
                score_keys.append(f"{key}.outlierRatio")
            stats = timeseries.compute_stats()
            payload[f"{key}.average"] = stats.average
            payload[f"{key}.outlierAverage"] = stats.outlier_average
            payload[f"{key}.outlierRatio"] = stats.outlier_ratio
            payload[f"{key}.noise"] = stats.noise
        payload["scoreData"] = {
            key: timeseries.to_json() for key, timeseries in self.score_data.items()
        }
        payload.update(self.extra_data)
        return payload

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> Profile:
        score_data = {
            key: Timeseries.from_json(value)
            for key, value in (payload.get("scoreData") or {}).items()
        }
        derived = {
            f"{key}{suffix}" for key in score_data for suffix in _DERIVED_SUFFIXES
        }
        extra_data = {
            key: value
            for key, value in payload.items()
            if key not in {"name", "scoreKeys", "scoreData"} and key not in derived
        }
        return cls(name=payload["name"], score_data=score_data, extra_data=extra_data)

    def to_dataframe(self) -> pd.DataFrame:
        rows = []
        for key, timeseries in self.score_data.items():
            stats = timeseries.compute_stats()
            for index, sample in enumerate(stats.samples):
                rows.append(
                    {
                        "score_key": key,
                        "index": index,
                        "magnitude": sample.magnitude,
                        "is_warm_up": sample.is_warm_up_value,
                        "is_outlier": sample.is_outlier,
                    }
                )
        if not rows:
            return pd.DataFrame(
                columns=["score_key", "index", "magnitude", "is_warm_up", "is_outlier"]
            )
        return pd.DataFrame(rows)

    def __str__(self) -> str:
        lines = [f"benchmark: {self.name}"]
        for key, timeseries in self.score_data.items():
            lines.append(f"  {key}: {timeseries.compute_stats().average}")
        for key, value in self.extra_data.items():
            lines.append(f"  {key}: {value}")
        return "\n".join(lines)


class Recorder(abc.ABC):
    """Capability that runs one benchmark and produces its :class:`Profile`."""

    def __init__(self, name: str, is_tracing_enabled: bool = False) -> None:
        self.name = name
        self.is_tracing_enabled = is_tracing_enabled

    async def set_up_all(self) -> None:
        """Called once before the benchmark starts."""

    async def tear_down_all(self) -> None:
        """Called once after the benchmark finished, even if it failed."""

    @abc.abstractmethod
    async def run(self) -> Profile:
        raise NotImplementedError


RecorderFactory = Callable[[], Recorder]
Hook = Callable[[], Awaitable[None]]


class FunctionRecorder(Recorder):
    """Times a plain callable, recording each call in microseconds."""

    def __init__(
        self,
        name: str,
        body: Callable[[], Any],
        warm_up_samples: int = 20,
        measured_samples: int = 80,
        is_tracing_enabled: bool = False,
    ) -> None:
        super().__init__(name, is_tracing_enabled=is_tracing_enabled)
        if measured_samples <= 0:
            raise ValueError("measured_samples must be > 0")
        self._body = body
        self._warm_up_samples = warm_up_samples
        self._measured_samples = measured_samples

    async def run(self) -> Profile:
        timeseries = Timeseries("call", is_reported=True, source=self.name)
        total = self._warm_up_samples + self._measured_samples
        for index in range(total):
            started = time.perf_counter()
            self._body()
            elapsed_us = (time.perf_counter() - started) * 1e6
            timeseries.add(elapsed_us, is_warm_up=index < self._warm_up_samples)
        LOGGER.debug("%s recorded %d samples", self.name, total)
        return Profile(name=self.name, score_data={"call": timeseries})


class Runner:
    """Runs a recorder and calls the tracing hooks around it.

    ``tear_down_all_will_run`` is awaited even when the recorder fails, as
    long as ``set_up_all_did_run`` completed.
    """

    def __init__(
        self,
        recorder: Recorder,
        set_up_all_did_run: Hook | None = None,
        tear_down_all_will_run: Hook | None = None,
    ) -> None:
        self.recorder = recorder
        self._set_up_all_did_run = set_up_all_did_run
        self._tear_down_all_will_run = tear_down_all_will_run

    async def run(self) -> Profile:
        await self.recorder.set_up_all()
        try:
            if self._set_up_all_did_run is not None:
                await self._set_up_all_did_run()
            try:
                return await self.recorder.run()
            finally:
                if self._tear_down_all_will_run is not None:
                    await self._tear_down_all_will_run()
        finally:
            await self.recorder.tear_down_all()


def _ratio_to_percent(value: float) -> str:
    return f"{value * 100:.2f}%"
