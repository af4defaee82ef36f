"""
Command Line Interface

Reads one shell command per line from standard input and hands them to the
admission controller:

    ls jobs/*.sh | sed 's/^/bash /' | loadgate --load-max 8 --jobs-max 4
"""

from __future__ import annotations

from typing import IO, Iterator, List, Optional
import argparse
import logging
import sys

import psutil

from loadgate import __version__
from loadgate.controller import AdmissionController, ControllerConfig, ThresholdConfig
from loadgate.errors import ConfigurationError


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"
DEFAULT_MAX_CPU_PERCENT = 90.0


def default_parallelism() -> int:
    """Logical CPU count, used as the default load and job limits."""
    return psutil.cpu_count(logical=True) or 1


def build_parser() -> argparse.ArgumentParser:
    cores = default_parallelism()
    parser = argparse.ArgumentParser(
        prog="loadgate",
        description="Run commands from stdin when enough resources are available.",
    )
    parser.add_argument(
        "-l", "--load-max",
        type=float,
        default=float(cores),
        help=(
            "Maximum 1-minute load average. If the load is above this threshold "
            f"no new processes are started (default: {cores})."
        ),
    )
    parser.add_argument(
        "-c", "--cpu-max",
        type=float,
        default=DEFAULT_MAX_CPU_PERCENT,
        help=(
            "Maximum CPU usage in percent, 1-100. Measured over "
            f"a short sampling window (default: {DEFAULT_MAX_CPU_PERCENT:g})."
        ),
    )
    parser.add_argument(
        "-j", "--jobs-max",
        type=int,
        default=cores,
        help=f"Maximum number of started commands running at once (default: {cores}).",
    )
    parser.add_argument(
        "-d", "--delay",
        type=float,
        default=0.0,
        help="Seconds to wait after starting a command, 0-30 (default: 0).",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Also log per-core CPU usage and command exit statuses.",
    )
    verbosity.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Only log warnings.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def configure_logging(verbose: bool = False, quiet: bool = False, stream: Optional[IO[str]] = None) -> None:
    """Send loadgate's log records to stdout at the requested level."""
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger("loadgate")
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False


def read_commands(stream: IO[str]) -> Iterator[str]:
    """
    Yield one command per input line.

    Lines are read lazily so the controller only ever holds the command it is
    about to admit. Whitespace-only lines are skipped.
    """
    for line in stream:
        command = line.rstrip("\r\n")
        if command.strip():
            yield command


def format_parameters(thresholds: ThresholdConfig, config: ControllerConfig) -> str:
    return "\n".join([
        "Parameters:",
        f"max. load: {thresholds.max_load:g}",
        f"max. cpu: {thresholds.max_cpu_percent:g}%",
        f"max. jobs: {thresholds.max_concurrent_jobs}",
        f"delay after start: {config.launch_delay_sec:g}s",
    ])


def main(argv: Optional[List[str]] = None, stdin: Optional[IO[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(verbose=args.verbose, quiet=args.quiet)

    try:
        thresholds = ThresholdConfig(
            max_load=args.load_max,
            max_cpu_percent=args.cpu_max,
            max_concurrent_jobs=args.jobs_max,
        )
        config = ControllerConfig(launch_delay_sec=args.delay)
    except ConfigurationError as exc:
        print(f"loadgate: configuration error: {exc}", file=sys.stderr)
        return 2

    print(format_parameters(thresholds, config), flush=True)

    controller = AdmissionController(thresholds, config)
    launched = controller.run(read_commands(stdin or sys.stdin))
    logger.debug(f"All {launched} command(s) finished")
    return 0


if __name__ == "__main__":
    sys.exit(main())
