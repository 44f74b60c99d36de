from datetime import datetime
from typing import Any, Dict, Mapping, Sequence
import json
import logging

from .metrics import (
    all_spot_metrics,
    default_spot_name,
    format_peak_hours,
    global_metrics,
    spot_metrics,
)
from .options import Options
from .periods import Observation, extract_periods
from .stats import spot_state, spot_states, status_summary

logger = logging.getLogger(__name__)


def build_report(
    histories: Mapping[str, Sequence[Observation] | None],
    *,
    now: datetime | None = None,
    options: Options | None = None,
    spot_names: Mapping[str, str] | None = None,
) -> Dict[str, Any]:
    """Assemble the dashboard payload from raw spot histories."""
    if now is None:
        now = datetime.now().astimezone()
    if options is None:
        options = Options()

    states = spot_states(histories, spot_names)
    summary = status_summary(states)
    per_spot = all_spot_metrics(
        histories, now=now, spot_names=spot_names, window=options.window
    )
    overall = global_metrics(
        histories,
        now=now,
        spot_names=spot_names,
        ranking_size=options.ranking_size,
        window=options.window,
    )
    logger.debug(
        "Built report for %d spots (%d with metrics)", len(states), len(per_spot)
    )
    return {
        "spots": [s.to_dict() for s in states],
        "stats": summary.to_dict(),
        "metrics": overall.to_dict(),
        "spot_metrics": [m.to_dict() for m in per_spot],
        "peak_hours": format_peak_hours(overall.peak_hours, options.peak_hour_count),
        "updated": now.isoformat(timespec="seconds"),
    }


def render_json(report: Dict[str, Any]) -> str:
    return json.dumps(report, indent=2, ensure_ascii=False)


def spot_details(
    spot_id: str,
    observations: Sequence[Observation] | None,
    *,
    now: datetime | None = None,
    options: Options | None = None,
    name: str | None = None,
) -> Dict[str, Any]:
    """State, metrics and occupancy periods of one spot."""
    if now is None:
        now = datetime.now().astimezone()
    if options is None:
        options = Options()
    name = name or default_spot_name(spot_id)
    periods = extract_periods(observations, now=now)
    return {
        "spot": spot_state(spot_id, observations, name).to_dict(),
        "metrics": spot_metrics(
            spot_id, name, observations, now=now, window=options.window
        ).to_dict(),
        "periods": [p.to_dict() for p in periods],
    }
