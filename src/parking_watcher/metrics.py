"""Per-spot and network-wide occupancy metrics."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from .periods import (
    Observation,
    OccupancyPeriod,
    extract_periods,
    minutes_between,
    now_like,
    parse_occupied,
)

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(hours=24)
RANKING_SIZE = 5
HOURS_PER_DAY = 24


def _round_half_up(value: float, digits: int = 0) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def default_spot_name(spot_id: str) -> str:
    return f"Vaga {spot_id}"


@dataclass(frozen=True)
class SpotMetrics:
    """Usage summary for a single parking spot."""

    spot_id: str
    spot_name: str
    average_occupancy_minutes: int
    total_occupancy_time: int
    occupancy_count: int
    utilization_rate: float
    last_occupancy: datetime | None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "spot_id": self.spot_id,
            "spot_name": self.spot_name,
            "average_occupancy_minutes": self.average_occupancy_minutes,
            "total_occupancy_time": self.total_occupancy_time,
            "occupancy_count": self.occupancy_count,
            "utilization_rate": self.utilization_rate,
            "last_occupancy": self.last_occupancy.isoformat()
            if self.last_occupancy
            else None,
        }


@dataclass(frozen=True)
class HourBucket:
    hour: int
    occupancy_rate: int

    def to_dict(self) -> Dict[str, Any]:
        return {"hour": self.hour, "occupancy_rate": self.occupancy_rate}


@dataclass(frozen=True)
class GlobalMetrics:
    """Aggregate metrics across every monitored spot."""

    average_occupancy_minutes: int
    most_used_spots: List[SpotMetrics] = field(default_factory=list)
    least_used_spots: List[SpotMetrics] = field(default_factory=list)
    peak_hours: List[HourBucket] = field(default_factory=list)
    total_occupancy_events: int = 0
    average_utilization: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "average_occupancy_minutes": self.average_occupancy_minutes,
            "most_used_spots": [m.to_dict() for m in self.most_used_spots],
            "least_used_spots": [m.to_dict() for m in self.least_used_spots],
            "peak_hours": [b.to_dict() for b in self.peak_hours],
            "total_occupancy_events": self.total_occupancy_events,
            "average_utilization": self.average_utilization,
        }


def window_minutes(
    periods: Iterable[OccupancyPeriod],
    *,
    now: datetime,
    window: timedelta = DEFAULT_WINDOW,
) -> int:
    """Occupied minutes inside the trailing ``window`` ending at ``now``.

    Periods partially outside the window are clipped to it.
    """
    since = now - window
    total = 0
    for period in periods:
        if period.end <= since or period.start >= now:
            continue
        seg_start = max(period.start, since)
        seg_end = min(period.end, now)
        total += minutes_between(seg_start, seg_end)
    return total


def utilization_rate(
    periods: Sequence[OccupancyPeriod],
    *,
    now: datetime,
    window: timedelta = DEFAULT_WINDOW,
) -> float:
    span = window.total_seconds() / 60
    if span <= 0:
        return 0.0
    occupied = window_minutes(periods, now=now, window=window)
    rate = occupied / span * 100
    return _round_half_up(min(100.0, max(0.0, rate)), 1)


def spot_metrics(
    spot_id: str,
    spot_name: str,
    observations: Sequence[Observation] | None,
    *,
    now: datetime | None = None,
    window: timedelta = DEFAULT_WINDOW,
) -> SpotMetrics:
    """Compute usage metrics of one spot from its raw history."""
    if now is None and observations:
        now = now_like(observations[0].timestamp)
    periods = extract_periods(observations, now=now)

    total = sum(p.duration_minutes for p in periods)
    count = len(periods)
    average = int(_round_half_up(total / count)) if count else 0
    rate = utilization_rate(periods, now=now, window=window) if periods else 0.0

    return SpotMetrics(
        spot_id=spot_id,
        spot_name=spot_name,
        average_occupancy_minutes=average,
        total_occupancy_time=total,
        occupancy_count=count,
        utilization_rate=rate,
        last_occupancy=periods[-1].start if periods else None,
    )


def _resolve_now(
    histories: Mapping[str, Sequence[Observation] | None], now: datetime | None
) -> datetime | None:
    if now is not None:
        return now
    for observations in histories.values():
        if observations:
            return now_like(observations[0].timestamp)
    return None


def all_spot_metrics(
    histories: Mapping[str, Sequence[Observation] | None],
    *,
    now: datetime | None = None,
    spot_names: Mapping[str, str] | None = None,
    window: timedelta = DEFAULT_WINDOW,
) -> List[SpotMetrics]:
    """Metrics for every spot with a non-empty history, in mapping order."""
    # One clock reading for every spot, so all share the same window
    now = _resolve_now(histories, now)
    names = spot_names or {}
    results: List[SpotMetrics] = []
    for spot_id, observations in histories.items():
        if not observations:
            logger.debug("Skipping spot %s without history", spot_id)
            continue
        name = names.get(spot_id) or default_spot_name(spot_id)
        results.append(spot_metrics(spot_id, name, observations, now=now, window=window))
    return results


def hourly_occupancy(
    histories: Mapping[str, Iterable[Observation] | None],
) -> List[HourBucket]:
    """Share of occupied samples per hour of day, pooled over all spots.

    Samples are counted, not time: an hour with many free readings and a
    single occupied one reports a low rate.
    """
    occupied = [0] * HOURS_PER_DAY
    total = [0] * HOURS_PER_DAY
    for observations in histories.values():
        for obs in observations or ():
            hour = obs.timestamp.hour
            total[hour] += 1
            if parse_occupied(obs.occupied):
                occupied[hour] += 1
    return [
        HourBucket(
            hour=hour,
            occupancy_rate=int(_round_half_up(occupied[hour] / total[hour] * 100))
            if total[hour]
            else 0,
        )
        for hour in range(HOURS_PER_DAY)
    ]


def global_metrics(
    histories: Mapping[str, Sequence[Observation] | None],
    *,
    now: datetime | None = None,
    spot_names: Mapping[str, str] | None = None,
    ranking_size: int = RANKING_SIZE,
    window: timedelta = DEFAULT_WINDOW,
) -> GlobalMetrics:
    """Aggregate per-spot metrics, rankings and the hourly histogram."""
    per_spot = all_spot_metrics(histories, now=now, spot_names=spot_names, window=window)
    logger.debug("Aggregating metrics for %d spots", len(per_spot))

    # sorted() is stable, so ties keep mapping order
    by_usage = sorted(per_spot, key=lambda m: m.utilization_rate, reverse=True)
    most_used = by_usage[:ranking_size] if ranking_size > 0 else []
    used = [m for m in by_usage if m.occupancy_count > 0]
    least_used = list(reversed(used[-ranking_size:])) if ranking_size > 0 else []

    if per_spot:
        avg_minutes = sum(m.average_occupancy_minutes for m in per_spot) / len(per_spot)
        avg_util = sum(m.utilization_rate for m in per_spot) / len(per_spot)
    else:
        avg_minutes = 0.0
        avg_util = 0.0

    return GlobalMetrics(
        average_occupancy_minutes=int(_round_half_up(avg_minutes)),
        most_used_spots=most_used,
        least_used_spots=least_used,
        peak_hours=hourly_occupancy(histories),
        total_occupancy_events=sum(m.occupancy_count for m in per_spot),
        average_utilization=_round_half_up(avg_util, 1),
    )


def top_peak_hours(buckets: Sequence[HourBucket], count: int = 3) -> List[HourBucket]:
    ordered = sorted(buckets, key=lambda b: b.occupancy_rate, reverse=True)
    return ordered[:count]


def format_peak_hours(buckets: Sequence[HourBucket], count: int = 3) -> List[str]:
    """Labels such as ``"08:00 (75%)"`` for the busiest hours."""
    return [f"{b.hour:02d}:00 ({b.occupancy_rate}%)" for b in top_peak_hours(buckets, count)]


def format_duration(minutes: int) -> str:
    """Human readable duration: ``45min``, ``2h`` or ``2h 5min``."""
    if minutes < 60:
        return f"{minutes}min"
    hours, mins = divmod(minutes, 60)
    return f"{hours}h {mins}min" if mins else f"{hours}h"
