import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from .metrics import default_spot_name
from .periods import Observation, parse_occupied


class SpotStatus(str, Enum):
    FREE = "free"
    OCCUPIED = "occupied"
    INACTIVE = "inactive"


@dataclass(frozen=True)
class SpotState:
    """Latest known state of a parking spot."""

    id: str
    name: str
    status: SpotStatus
    last_update: datetime | None

    @property
    def is_online(self) -> bool:
        return self.status != SpotStatus.INACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "last_update": self.last_update.isoformat() if self.last_update else None,
            "is_online": self.is_online,
        }


@dataclass(frozen=True)
class StatusSummary:
    total_spots: int
    free_spots: int
    occupied_spots: int
    inactive_spots: int
    average_occupancy: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_spots": self.total_spots,
            "free_spots": self.free_spots,
            "occupied_spots": self.occupied_spots,
            "inactive_spots": self.inactive_spots,
            "average_occupancy": self.average_occupancy,
        }


def current_status(
    observations: Sequence[Observation] | None,
) -> Tuple[SpotStatus, datetime | None]:
    """Status and timestamp of the most recent sample."""
    if not observations:
        return SpotStatus.INACTIVE, None
    last = observations[-1]
    status = SpotStatus.OCCUPIED if parse_occupied(last.occupied) else SpotStatus.FREE
    return status, last.timestamp


def spot_state(
    spot_id: str,
    observations: Sequence[Observation] | None,
    name: str | None = None,
) -> SpotState:
    status, last_update = current_status(observations)
    return SpotState(
        id=spot_id,
        name=name or default_spot_name(spot_id),
        status=status,
        last_update=last_update,
    )


def natural_key(spot_id: str) -> List[Any]:
    """Sort key ordering ``A2`` before ``A10``."""
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r"(\d+)", spot_id)]


def spot_states(
    histories: Mapping[str, Sequence[Observation] | None],
    spot_names: Mapping[str, str] | None = None,
) -> List[SpotState]:
    names = spot_names or {}
    states = [spot_state(sid, obs, names.get(sid)) for sid, obs in histories.items()]
    states.sort(key=lambda s: natural_key(s.id))
    return states


def status_summary(states: Iterable[SpotState]) -> StatusSummary:
    """Count spots per status and the share of active spots that are occupied."""
    total = 0
    free = 0
    occupied = 0
    inactive = 0
    for s in states:
        total += 1
        if s.status == SpotStatus.FREE:
            free += 1
        elif s.status == SpotStatus.OCCUPIED:
            occupied += 1
        else:
            inactive += 1
    active = total - inactive
    average = int(occupied / active * 100 + 0.5) if active else 0
    return StatusSummary(
        total_spots=total,
        free_spots=free,
        occupied_spots=occupied,
        inactive_spots=inactive,
        average_occupancy=average,
    )
