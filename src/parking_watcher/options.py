from dataclasses import dataclass
from datetime import timedelta


@dataclass
class Options:
    """Tunables for the occupancy metrics."""

    # Trailing window used for the utilization rate
    window_hours: int = 24
    # Size of the most/least used rankings
    ranking_size: int = 5
    # Number of hours listed as formatted peak hours
    peak_hour_count: int = 3

    @property
    def window(self) -> timedelta:
        return timedelta(hours=self.window_hours)
