"""Occupancy period extraction from raw sensor histories."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List

logger = logging.getLogger(__name__)

TRUE_TOKENS = {"true"}


@dataclass(frozen=True)
class Observation:
    """A single sensor sample for one parking spot."""

    timestamp: datetime
    occupied: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "occupied": self.occupied}


@dataclass(frozen=True)
class OccupancyPeriod:
    """A contiguous run of occupied samples."""

    start: datetime
    end: datetime
    duration_minutes: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "duration_minutes": self.duration_minutes,
        }


def parse_occupied(value: Any, extra_true: Iterable[str] = ()) -> bool:
    """Normalise the loosely typed ``ocupada`` flag to a strict boolean.

    Booleans pass through. Strings are matched case-insensitively against
    ``"true"`` plus any ``extra_true`` tokens. Anything else is free.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        token = value.strip().lower()
        return token in TRUE_TOKENS or token in {t.lower() for t in extra_true}
    return False


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from ``start`` to ``end``, never negative."""
    seconds = (end - start).total_seconds()
    return max(0, int(seconds // 60))


def now_like(reference: datetime) -> datetime:
    """Current instant with the same timezone awareness as ``reference``."""
    return datetime.now(tz=reference.tzinfo)


def extract_periods(
    observations: Iterable[Observation] | None,
    *,
    now: datetime | None = None,
) -> List[OccupancyPeriod]:
    """Convert an ordered history into non-overlapping occupancy periods.

    Only free->occupied and occupied->free transitions matter. A history
    that ends occupied yields a final period closed at ``now``.
    """
    periods: List[OccupancyPeriod] = []
    if not observations:
        return periods

    start: datetime | None = None
    for obs in observations:
        occupied = parse_occupied(obs.occupied)
        if occupied:
            if start is None:
                start = obs.timestamp
        elif start is not None:
            periods.append(
                OccupancyPeriod(start, obs.timestamp, minutes_between(start, obs.timestamp))
            )
            start = None

    if start is not None:
        end = now if now is not None else now_like(start)
        # Sensor clocks can run ahead of ours
        end = max(end, start)
        periods.append(OccupancyPeriod(start, end, minutes_between(start, end)))

    logger.debug("Extracted %d occupancy periods", len(periods))
    return periods
