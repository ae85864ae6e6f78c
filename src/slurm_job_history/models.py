from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence


class JobState(Enum):
    """State of a job as reported by Slurm accounting."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUSPENDED = "SUSPENDED"
    COMPLETING = "COMPLETING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"
    NODE_FAIL = "NODE_FAIL"
    PREEMPTED = "PREEMPTED"
    BOOT_FAIL = "BOOT_FAIL"
    DEADLINE = "DEADLINE"
    OUT_OF_MEMORY = "OUT_OF_MEMORY"
    REQUEUED = "REQUEUED"
    OTHER = "OTHER"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def _short_codes(cls) -> dict[str, str]:
        return {
            "PD": "PENDING",
            "R": "RUNNING",
            "S": "SUSPENDED",
            "CG": "COMPLETING",
            "CD": "COMPLETED",
            "CA": "CANCELLED",
            "F": "FAILED",
            "TO": "TIMEOUT",
            "NF": "NODE_FAIL",
            "PR": "PREEMPTED",
            "BF": "BOOT_FAIL",
            "DL": "DEADLINE",
            "OOM": "OUT_OF_MEMORY",
            "RQ": "REQUEUED",
        }

    @classmethod
    def from_sacct(cls, value: str) -> JobState:
        """Convert a sacct state cell to the matching variant.

        sacct decorates some states, e.g. ``CANCELLED by 1234`` or
        ``CANCELLED+``; only the leading word is significant. Anything that
        cannot be mapped becomes :attr:`OTHER`.
        """

        words = value.strip().split()
        if not words:
            return cls.OTHER

        name = words[0].rstrip("+").upper()
        name = cls._short_codes().get(name, name)
        try:
            return cls(name)
        except ValueError:
            return cls.OTHER

    @property
    def is_terminal(self) -> bool:
        return self not in _NON_TERMINAL_STATES


_NON_TERMINAL_STATES = frozenset(
    {
        JobState.PENDING,
        JobState.RUNNING,
        JobState.SUSPENDED,
        JobState.COMPLETING,
        JobState.REQUEUED,
        JobState.OTHER,
    }
)

TERMINAL_STATES: tuple[JobState, ...] = tuple(state for state in JobState if state.is_terminal)


@dataclass(slots=True)
class Job:
    """A single job allocation read from ``sacct``.

    Every attribute defaults to an empty value; the parser only fills in the
    attributes whose fields were requested and reported.
    """

    id: str = ""
    name: str = ""
    user: str = ""
    state: JobState = JobState.OTHER
    time: str = ""
    nodes: int = 0
    node: str | None = None
    cpus: int = 0
    memory: str = ""
    partition: str = ""
    qos: str = ""
    account: str | None = None
    priority: int | None = None
    work_dir: str | None = None
    submit_time: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    pending_reason: str | None = None


@dataclass(frozen=True)
class QueryOptions:
    """Filters and output fields for one ``sacct`` query."""

    user: str | None = None
    states: Sequence[JobState] = ()
    partitions: Sequence[str] = ()
    qos: Sequence[str] = ()
    recent_hours: int = 24
    # Order matters: it is the column order of the output.
    format_fields: Sequence[str] = ()
