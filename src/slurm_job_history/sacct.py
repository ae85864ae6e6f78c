from __future__ import annotations

import logging
import re
import shlex
import subprocess
from typing import Callable, Iterable, List, Sequence

from .models import Job, JobState, QueryOptions

LOGGER = logging.getLogger(__name__)


SACCT_DELIMITER = "|"
FIELD_VOCABULARY = (
    "JobIDRaw",
    "JobName",
    "User",
    "State",
    "Elapsed",
    "NNodes",
    "NodeList",
    "AllocCPUS",
    "ReqMem",
    "Partition",
    "QOS",
    "Account",
    "Priority",
    "WorkDir",
    "Submit",
    "Start",
    "End",
    "Reason",
)
DEFAULT_FORMAT_FIELDS = (
    "JobIDRaw",
    "JobName",
    "User",
    "State",
    "Elapsed",
    "NodeList",
    "AllocCPUS",
)
# Case-sensitive; "None" is a real value for some fields (e.g. Reason).
EMPTY_FIELD_VALUES = frozenset({"", "Unknown", "N/A"})
# Unicode White_Space only; str.strip() would also eat \x1c-\x1f.
_WHITESPACE = (
    " \t\n\x0b\x0c\r\x85\xa0\u1680"
    "\u2000\u2001\u2002\u2003\u2004\u2005\u2006\u2007\u2008\u2009\u200a"
    "\u2028\u2029\u202f\u205f\u3000"
)

_UINT_PATTERN = re.compile(r"^\+?[0-9]+$")
_UINT_MAX = 2**32 - 1


class SacctError(RuntimeError):
    """Raised when sacct execution fails."""


class SacctLaunchError(SacctError):
    """Raised when the sacct process cannot be started."""


class SacctCommandError(SacctError):
    """Raised when sacct exits with a non-zero status."""

    def __init__(self, returncode: int, stderr: str) -> None:
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"sacct returned non-zero exit code {returncode}: {stderr}")


class SacctTimeoutError(SacctError):
    """Raised when sacct does not finish within the caller's timeout."""


def dedupe_fields(fields: Iterable[str]) -> List[str]:
    """Return ``fields`` without repeats, keeping first occurrences in order.

    An empty result is replaced by :data:`DEFAULT_FORMAT_FIELDS`. Both the
    argument builder and the output parser call this on the caller's original
    list, so column positions always agree.
    """

    seen: set[str] = set()
    unique: List[str] = []
    for field in fields:
        if field not in seen:
            seen.add(field)
            unique.append(field)
    if not unique:
        return list(DEFAULT_FORMAT_FIELDS)
    return unique


def sacct_arguments(options: QueryOptions) -> List[str]:
    args = [
        "-n",  # no header
        "-P",  # parsable2, '|' delimited
        "-X",  # allocations only
        "-S",
        f"now-{max(options.recent_hours, 1)}hours",
        "-E",
        "now",
    ]

    if options.user:
        args.extend(["--user", options.user])

    if options.partitions:
        args.extend(["--partition", ",".join(options.partitions)])

    if options.qos:
        args.extend(["--qos", ",".join(options.qos)])

    if options.states:
        args.extend(["--state", ",".join(str(state) for state in options.states)])

    # Must stay last.
    args.extend(["--format", ",".join(dedupe_fields(options.format_fields))])
    return args


def build_sacct_command(options: QueryOptions, *, executable: str = "sacct") -> List[str]:
    return [executable, *sacct_arguments(options)]


def _parse_uint(value: str) -> int | None:
    if not _UINT_PATTERN.match(value):
        return None
    number = int(value)
    if number > _UINT_MAX:
        return None
    return number


def _as_count(value: str) -> int:
    number = _parse_uint(value)
    if number is None:
        LOGGER.debug("Unable to parse count '%s', using 0", value)
        return 0
    return number


def _as_optional_count(value: str) -> int | None:
    number = _parse_uint(value)
    if number is None:
        LOGGER.debug("Unable to parse number '%s'", value)
    return number


def _as_state(value: str) -> JobState:
    state = JobState.from_sacct(value)
    if state is JobState.OTHER:
        LOGGER.debug("Unrecognised job state '%s'", value)
    return state


def _as_text(value: str) -> str:
    return value


_FIELD_SETTERS: dict[str, tuple[str, Callable[[str], object]]] = {
    "JobIDRaw": ("id", _as_text),
    "JobID": ("id", _as_text),
    "JobName": ("name", _as_text),
    "User": ("user", _as_text),
    "State": ("state", _as_state),
    "Elapsed": ("time", _as_text),
    "NNodes": ("nodes", _as_count),
    "NodeList": ("node", _as_text),
    "AllocCPUS": ("cpus", _as_count),
    "NCPUS": ("cpus", _as_count),
    "ReqMem": ("memory", _as_text),
    "Partition": ("partition", _as_text),
    "QOS": ("qos", _as_text),
    "Account": ("account", _as_text),
    "Priority": ("priority", _as_optional_count),
    "WorkDir": ("work_dir", _as_text),
    "Submit": ("submit_time", _as_text),
    "Start": ("start_time", _as_text),
    "End": ("end_time", _as_text),
    "Reason": ("pending_reason", _as_text),
}


def _parse_line(line: str, fields: Sequence[str]) -> Job:
    job = Job()
    # zip() drops columns beyond the requested fields.
    for field, raw_value in zip(fields, line.split(SACCT_DELIMITER)):
        value = raw_value.strip(_WHITESPACE)
        if value in EMPTY_FIELD_VALUES:
            continue

        setter = _FIELD_SETTERS.get(field)
        if setter is None:
            continue

        attribute, convert = setter
        setattr(job, attribute, convert(value))
    return job


def parse_sacct_output(output: str | bytes, format_fields: Sequence[str]) -> List[Job]:
    """Parse ``sacct -n -P`` output requested with ``format_fields``.

    ``format_fields`` is the list the query was built from, before any
    de-duplication or defaulting. Lines that never yield a job id are
    dropped; everything else is kept in input order.
    """

    if isinstance(output, bytes):
        output = output.decode("utf-8", errors="replace")

    fields = dedupe_fields(format_fields)
    jobs: List[Job] = []

    for raw_line in output.split("\n"):
        line = raw_line.strip(_WHITESPACE)
        if not line:
            continue

        job = _parse_line(line, fields)
        if not job.id:
            LOGGER.debug("Dropping sacct row without a job id: %s", line)
            continue

        jobs.append(job)

    return jobs


def run_sacct(command: Sequence[str], *, timeout: float | None = None) -> str:
    # subprocess.run kills the child if the wait is interrupted or times out.
    try:
        result = subprocess.run(
            list(command),
            check=True,
            capture_output=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
        )
    except OSError as exc:
        raise SacctLaunchError(f"unable to start {command[0]}: {exc}") from exc
    except subprocess.TimeoutExpired as exc:
        raise SacctTimeoutError(f"sacct did not finish within {timeout:g} seconds") from exc
    except subprocess.CalledProcessError as exc:
        raise SacctCommandError(exc.returncode, (exc.stderr or "").strip()) from exc

    return result.stdout


def query_jobs(
    options: QueryOptions,
    *,
    executable: str = "sacct",
    timeout: float | None = None,
) -> List[Job]:
    """Run sacct for ``options`` and return the parsed jobs."""

    command = build_sacct_command(options, executable=executable)
    LOGGER.debug("Running %s", shlex.join(command))

    output = run_sacct(command, timeout=timeout)
    jobs = parse_sacct_output(output, options.format_fields)

    LOGGER.debug("sacct reported %d job(s)", len(jobs))
    return jobs
