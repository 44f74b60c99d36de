import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, MutableMapping, Sequence, Tuple
import requests

from .periods import Observation, parse_occupied

logger = logging.getLogger(__name__)

# Live sensor updates are published under this prefix, one topic per spot
TOPIC_PREFIX = "pi5/estacionamento/vaga/"

REQUEST_HEADERS = {
    "Accept": "application/json",
    "ngrok-skip-browser-warning": "true",
    "User-Agent": "parking-watcher/1.0",
}

_TIMESTAMP_KEYS = ("data_hora", "timestamp", "ts")
_OCCUPIED_KEYS = ("ocupada", "occupied")


def default_spot_ids(count: int = 40, prefix: str = "A") -> List[str]:
    """Spot identifiers ``A01`` .. ``A40`` used by the sensor deployment."""
    return [f"{prefix}{i:02d}" for i in range(1, count + 1)]


def _first(item: Dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if key in item:
            return item[key]
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO timestamp and convert it to local time.

    Naive values are taken as local time already. Values with an offset are
    shifted so that hour-of-day statistics use the local wall clock.
    """
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            ts = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    return ts.astimezone()


def parse_history(data: Any) -> List[Observation]:
    """Convert a raw backend payload into observations.

    The backend returns either a bare list or a ``{"dados": [...]}``
    envelope. Items without a usable timestamp are dropped.
    """
    if isinstance(data, dict):
        items = data.get("dados") or []
    elif isinstance(data, list):
        items = data
    else:
        items = []
    observations: List[Observation] = []
    for item in items:
        if not isinstance(item, dict):
            logger.debug("Skipping non-object history item: %r", item)
            continue
        ts = parse_timestamp(_first(item, _TIMESTAMP_KEYS))
        if ts is None:
            logger.debug("Skipping history item without timestamp: %s", item)
            continue
        observations.append(Observation(ts, parse_occupied(_first(item, _OCCUPIED_KEYS))))
    return observations


def fetch_spot(
    spot_id: str,
    base_url: str,
    session: requests.Session | None = None,
) -> List[Observation]:
    """Fetch the history of a single spot from the sensor backend."""
    url = f"{base_url.rstrip('/')}/vaga{spot_id}.json"
    logger.debug("Fetching history from %s", url)
    client = session or requests
    resp = client.get(url, headers=REQUEST_HEADERS, timeout=30)
    resp.raise_for_status()
    history = parse_history(resp.json())
    logger.debug("Fetched %d samples for spot %s", len(history), spot_id)
    return history


def fetch_all(
    spot_ids: Sequence[str],
    base_url: str,
    session: requests.Session | None = None,
) -> Dict[str, List[Observation]]:
    """Fetch every spot; a spot that fails to load gets an empty history."""
    histories: Dict[str, List[Observation]] = {}
    client = session or requests.Session()
    try:
        for spot_id in spot_ids:
            try:
                histories[spot_id] = fetch_spot(spot_id, base_url, client)
            except (requests.RequestException, ValueError) as exc:
                logger.warning("Failed to fetch spot %s: %s", spot_id, exc)
                histories[spot_id] = []
    finally:
        if session is None:
            client.close()
    logger.info(
        "Fetched %d spots (%d with data)",
        len(histories),
        sum(1 for h in histories.values() if h),
    )
    return histories


def load_file(path: Path) -> Dict[str, List[Observation]]:
    """Load histories from a JSON file mapping spot id to raw items."""
    logger.debug("Loading histories from %s", path)
    with path.open(encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected an object of spot histories in {path}")
    histories = {str(spot_id): parse_history(items) for spot_id, items in data.items()}
    logger.debug("Loaded %d spot histories", len(histories))
    return histories


def load_histories(
    path: Path | None = None,
    base_url: str | None = None,
    spot_ids: Sequence[str] | None = None,
) -> Dict[str, List[Observation]]:
    """Load histories either from a local file or from the backend."""
    if path:
        return load_file(path)
    if not base_url:
        raise ValueError("Either a data file or a backend URL is required")
    return fetch_all(spot_ids or default_spot_ids(), base_url)


def parse_sensor_message(
    topic: str,
    payload: bytes | str,
    *,
    received: datetime | None = None,
) -> Tuple[str, Observation]:
    """Decode a live sensor message into ``(spot_id, observation)``.

    The spot id is the last topic segment. The payload is either JSON with an
    ``ocupada`` field or plain text ``true``/``1``.
    """
    spot_id = topic.rstrip("/").split("/")[-1]
    text = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload
    try:
        body = json.loads(text)
    except ValueError:
        body = None
    if isinstance(body, dict):
        occupied = parse_occupied(body.get("ocupada"))
    else:
        occupied = parse_occupied(text, extra_true=("1",))
    if received is None:
        received = datetime.now().astimezone()
    return spot_id, Observation(received, occupied)


def apply_message(
    histories: MutableMapping[str, List[Observation]],
    spot_id: str,
    observation: Observation,
) -> None:
    """Append a live sample to the history of its spot."""
    histories.setdefault(spot_id, []).append(observation)
    logger.debug(
        "Spot %s reported %s", spot_id, "occupied" if observation.occupied else "free"
    )
