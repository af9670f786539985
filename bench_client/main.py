from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Mapping
from urllib.parse import urlsplit, urlunsplit

import httpx

from .client import HTTP_TIMEOUT_S_DEFAULT, LocalBenchmarkServerClient
from .config import ClientConfig, load_registry
from .page import ReportPage, SelectionPanel
from .recorder import Profile, RecorderFactory
from .session import DEFAULT_INITIAL_PAGE, SessionOrchestrator

LOGGER = logging.getLogger("bench_client")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Benchmark client for the local benchmark server")
    parser.add_argument(
        "--server-url",
        default=os.environ.get("BENCH_SERVER_URL", "http://localhost:9999"),
        help="Origin of the benchmark server",
    )
    parser.add_argument(
        "--initial-page",
        default=os.environ.get("BENCH_INITIAL_PAGE", DEFAULT_INITIAL_PAGE),
        help="Route the client reloads at after each automatic run",
    )
    parser.add_argument(
        "--registry",
        default=os.environ.get("BENCH_REGISTRY"),
        help="module:attribute of the benchmark registry (defaults to the sample benchmarks)",
    )
    parser.add_argument(
        "--benchmark",
        help="Benchmark to run when falling back to manual mode",
    )
    parser.add_argument(
        "--output-dir",
        default=os.environ.get("BENCH_OUTPUT_DIR", "bench-results"),
        help="Directory for the manual-mode results page and CSV files",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=float(os.environ.get("BENCH_HTTP_TIMEOUT", HTTP_TIMEOUT_S_DEFAULT)),
        help="Seconds to wait for each request to the benchmark server",
    )
    parser.add_argument(
        "--max-cycles",
        type=int,
        help="Stop after this many automatic runs (<=0 for no limit)",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("BENCH_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ClientConfig:
    max_cycles = args.max_cycles if args.max_cycles and args.max_cycles > 0 else None
    return ClientConfig(
        server_url=args.server_url,
        initial_page=args.initial_page,
        output_dir=Path(args.output_dir),
        timeout_s=args.timeout,
        registry_spec=args.registry,
        benchmark=args.benchmark,
        max_cycles=max_cycles,
    )


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


async def run_client(
    config: ClientConfig,
    registry: Mapping[str, RecorderFactory],
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    """Run sessions until the server stops handing out benchmarks.

    Every automatic run ends with a reload, which starts a fresh session at
    the replaced location.
    """
    location = config.initial_location()
    cycles = 0
    while True:
        cycles += 1
        page = ReportPage(location)
        async with LocalBenchmarkServerClient(
            _origin(location), transport=transport, timeout_s=config.timeout_s
        ) as client:
            orchestrator = SessionOrchestrator(
                registry, client, page, initial_page=config.initial_page
            )
            state = await orchestrator.run()
            LOGGER.debug("Session %d finished in state %s", cycles, state.value)

            if page.reload_requested:
                if config.max_cycles is not None and cycles >= config.max_cycles:
                    LOGGER.info("Stopping after %d run(s)", cycles)
                    return 0
                location = page.location
                continue

            if page.panel is not None:
                choice = config.benchmark or await _prompt_for_benchmark(page.panel)
                if choice is None:
                    print(page.panel.render_text())
                    page.save(config.output_dir / "index.html")
                    return 0
                try:
                    await page.panel.select(choice)
                except KeyError:
                    LOGGER.error("Unknown benchmark %r", choice)
                    return 1

            _write_results(config.output_dir, page, orchestrator.last_profile)
            return 0


async def _prompt_for_benchmark(panel: SelectionPanel) -> str | None:
    if not panel.entries or not sys.stdin.isatty():
        return None
    print(panel.render_text())
    answer = (await asyncio.to_thread(input, "benchmark> ")).strip()
    if answer.isdigit() and 1 <= int(answer) <= len(panel.entries):
        return panel.entries[int(answer) - 1]
    return answer or None


def _write_results(output_dir: Path, page: ReportPage, profile: Profile | None) -> None:
    output_dir.mkdir(parents=True, exist_ok=True)
    page.save(output_dir / "index.html")
    if profile is None:
        return
    csv_path = output_dir / f"{profile.name}.csv"
    profile.to_dataframe().to_csv(csv_path, index=False)
    LOGGER.info("Saved samples to %s", csv_path)


def _origin(location: str) -> str:
    parts = urlsplit(location)
    return urlunsplit((parts.scheme, parts.netloc, "", "", ""))


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)
    config = build_config(args)

    try:
        registry = load_registry(config.registry_spec)
    except (ImportError, AttributeError, TypeError, ValueError):
        LOGGER.exception("Failed to load benchmark registry %s", config.registry_spec)
        return 1

    LOGGER.info("Benchmark server: %s", config.server_url)
    LOGGER.info("Benchmarks: %s", ", ".join(registry) or "<none>")

    try:
        return asyncio.run(run_client(config, registry))
    except KeyboardInterrupt:
        print("stopping benchmark client", file=sys.stderr)
        return 130
    except Exception:  # noqa: BLE001
        LOGGER.exception("Benchmark client failed")
        return 1


if __name__ == "__main__":
    sys.exit(main())
