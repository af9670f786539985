from __future__ import annotations

import importlib
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping
from urllib.parse import urljoin

from .recorder import RecorderFactory


@dataclass(frozen=True)
class ClientConfig:
    """Settings for one invocation of the benchmark client."""

    server_url: str
    initial_page: str
    output_dir: Path
    timeout_s: float
    registry_spec: str | None = None
    benchmark: str | None = None
    max_cycles: int | None = None

    def initial_location(self) -> str:
        base = self.server_url if self.server_url.endswith("/") else f"{self.server_url}/"
        return urljoin(base, self.initial_page.lstrip("/"))


def load_registry(spec: str | None) -> dict[str, RecorderFactory]:
    """Resolve ``module:attribute`` to a benchmark registry.

    The attribute may be a mapping of names to recorder factories or a
    zero-argument callable returning one. Without a spec the bundled sample
    benchmarks are used.
    """
    if not spec:
        from .sample_benchmarks import default_registry

        return default_registry()

    module_name, sep, attribute = spec.partition(":")
    if not sep or not module_name or not attribute:
        raise ValueError(f"Registry must look like 'module:attribute', got {spec!r}")

    target = getattr(importlib.import_module(module_name), attribute)
    if callable(target) and not isinstance(target, Mapping):
        target = target()
    if not isinstance(target, Mapping):
        raise TypeError(f"{spec} is not a mapping of benchmark names to factories")

    registry = dict(target)
    for name, factory in registry.items():
        if not callable(factory):
            raise TypeError(f"Benchmark {name!r} in {spec} has a non-callable factory")
    return registry
