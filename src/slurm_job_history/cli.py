from __future__ import annotations

import argparse
import getpass
import logging
import shlex
import sys
from typing import Sequence

from .models import TERMINAL_STATES, JobState, QueryOptions
from .sacct import (
    SacctError,
    build_sacct_command,
    parse_sacct_output,
    run_sacct,
)

LOGGER = logging.getLogger(__name__)
DEFAULT_WINDOW_HOURS = 24


class CliError(RuntimeError):
    """Raised when CLI validation fails."""


def _split_arg(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="List recently finished Slurm jobs from sacct.",
    )
    parser.add_argument("--user", help="User whose jobs to list (default: current user).")
    parser.add_argument(
        "--all-users",
        action="store_true",
        help="Do not restrict the query to a single user.",
    )
    parser.add_argument("--partition", help="Comma-separated list of partitions to include.")
    parser.add_argument("--qos", help="Comma-separated list of QoS values to include.")
    parser.add_argument(
        "--state",
        help="Comma-separated list of job states to include, e.g. COMPLETED,FAILED.",
    )
    parser.add_argument(
        "--hours",
        type=int,
        default=DEFAULT_WINDOW_HOURS,
        help="Look-back window in hours.",
    )
    parser.add_argument(
        "--format",
        help="Comma-separated sacct fields to request, in output order.",
    )
    parser.add_argument("--sacct", default="sacct", help="sacct executable to run.")
    parser.add_argument(
        "--timeout",
        type=float,
        help="Kill sacct if it has not finished after this many seconds.",
    )
    parser.add_argument("--dry-run", action="store_true", help="Print the sacct command and exit.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")

    return parser.parse_args(argv)


def _parse_states(value: str | None) -> list[JobState]:
    states = []
    for name in _split_arg(value):
        state = JobState.from_sacct(name)
        if state is JobState.OTHER:
            raise CliError(f"Unknown job state '{name}'")
        if state not in TERMINAL_STATES:
            raise CliError(f"Job state '{name}' is not a terminal state")
        states.append(state)
    return states


def _validate_timeout(value: float | None) -> float | None:
    if value is None:
        return None
    if value <= 0:
        raise CliError("--timeout must be greater than zero")
    return value


def build_options(args: argparse.Namespace) -> QueryOptions:
    if args.all_users:
        user = None
    else:
        user = args.user or getpass.getuser()

    return QueryOptions(
        user=user,
        states=tuple(_parse_states(args.state)),
        partitions=tuple(_split_arg(args.partition)),
        qos=tuple(_split_arg(args.qos)),
        recent_hours=args.hours,
        format_fields=tuple(_split_arg(args.format)),
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_arguments(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    try:
        options = build_options(args)
        timeout = _validate_timeout(args.timeout)
    except CliError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    command = build_sacct_command(options, executable=args.sacct)

    if args.dry_run:
        print(shlex.join(command))
        return 0

    try:
        output = run_sacct(command, timeout=timeout)
    except SacctError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    jobs = parse_sacct_output(output, options.format_fields)
    print(f"Jobs: {len(jobs)} | Window: last {max(options.recent_hours, 1)} hour(s)")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
