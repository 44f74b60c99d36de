"""Metrics cache invalidated when the underlying histories change."""
from __future__ import annotations

import hashlib
import logging
import threading
import time
from typing import Any, Callable, Dict, Hashable, List, Mapping, Sequence, Tuple

from .periods import Observation, parse_occupied

logger = logging.getLogger(__name__)


def content_version(histories: Mapping[str, Sequence[Observation] | None]) -> str:
    """Digest of every sample, independent of mapping order."""
    digest = hashlib.sha256()
    for spot_id in sorted(histories):
        digest.update(spot_id.encode("utf-8"))
        digest.update(b"\x00")
        for obs in histories[spot_id] or ():
            digest.update(obs.timestamp.isoformat().encode("utf-8"))
            digest.update(b"1" if parse_occupied(obs.occupied) else b"0")
        digest.update(b"\x01")
    return digest.hexdigest()


class MetricsCache:
    """Keep computed results until the data version moves on.

    ``update()`` bumps the version only when the content digest of the new
    histories differs from the previous one. Entries also expire after
    ``ttl`` seconds, since ongoing periods and the trailing utilization
    window move with the clock even when no sample arrives.
    """

    def __init__(self, ttl: float | None = None) -> None:
        self.ttl = ttl
        self._lock = threading.Lock()
        self._entries: Dict[Hashable, Tuple[int, float, Any]] = {}
        self._digest: str | None = None
        self.version = 0

    def update(self, histories: Mapping[str, Sequence[Observation] | None]) -> bool:
        """Record new histories; return True when they changed."""
        digest = content_version(histories)
        with self._lock:
            if digest == self._digest:
                return False
            self._digest = digest
            self.version += 1
            self._entries.clear()
        logger.debug("Data version advanced to %d", self.version)
        return True

    def _fresh(self, entry: Tuple[int, float, Any], version: int) -> bool:
        entry_version, stored, _ = entry
        if entry_version != version:
            return False
        if self.ttl is not None and time.monotonic() - stored >= self.ttl:
            return False
        return True

    def get(self, key: Hashable, compute: Callable[[], Any]) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            version = self.version
        if entry is not None and self._fresh(entry, version):
            return entry[2]
        value = compute()
        with self._lock:
            # Drop results computed against data that was replaced meanwhile
            if self.version == version:
                self._entries[key] = (version, time.monotonic(), value)
        return value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> List[Hashable]:
        with self._lock:
            return list(self._entries)
