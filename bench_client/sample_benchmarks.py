"""Small benchmarks bundled so the client has something to run."""

from __future__ import annotations

import json
import random

from .recorder import FunctionRecorder, RecorderFactory

_RANDOM = random.Random(1234)
_NUMBERS = [_RANDOM.random() for _ in range(5_000)]
_DOCUMENT = {
    "items": [{"id": index, "value": value} for index, value in enumerate(_NUMBERS[:500])],
}


def _sort_numbers() -> None:
    sorted(_NUMBERS)


def _json_round_trip() -> None:
    json.loads(json.dumps(_DOCUMENT))


def _string_building() -> None:
    "".join(str(number) for number in _NUMBERS[:1_000])


def default_registry() -> dict[str, RecorderFactory]:
    return {
        "bench_sort": lambda: FunctionRecorder("bench_sort", _sort_numbers),
        "bench_json_round_trip": lambda: FunctionRecorder(
            "bench_json_round_trip", _json_round_trip, is_tracing_enabled=True
        ),
        "bench_string_building": lambda: FunctionRecorder(
            "bench_string_building", _string_building
        ),
    }
