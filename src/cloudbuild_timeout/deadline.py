from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from .errors import PastDeadlineError


def _require_aware(value: datetime, what: str) -> None:
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ValueError(f"{what} must be timezone-aware, got {value!r}")


def termination_instant(start: datetime, allowed: timedelta) -> datetime:
    _require_aware(start, "start")
    return start + allowed


def _signal_time(termination: datetime, lead_time: timedelta) -> str:
    try:
        return (termination - lead_time).isoformat()
    except OverflowError:
        return f"{termination.isoformat()} - {lead_time}"


def resolve(termination: datetime, lead_time: timedelta, now: datetime) -> timedelta:
    """Return how long to wait before signalling the child.

    The signal is due ``lead_time`` before ``termination``. Raises
    PastDeadlineError when that instant is not strictly after ``now``.
    """
    _require_aware(termination, "termination")
    _require_aware(now, "now")

    # Compare durations; termination - lead_time can fall outside datetime's range.
    remaining = termination - now
    if lead_time >= remaining:
        raise PastDeadlineError(
            f"invalid signal time '{_signal_time(termination, lead_time)}': occurs in the past "
            f"(termination at '{termination.isoformat()}', lead time {lead_time})"
        )
    return remaining - lead_time


@dataclass(frozen=True, slots=True)
class DeadlineSpec:
    termination: datetime
    lead_time: timedelta

    @property
    def signal_at(self) -> datetime:
        return self.termination - self.lead_time

    def resolve(self, now: datetime) -> timedelta:
        return resolve(self.termination, self.lead_time, now)
