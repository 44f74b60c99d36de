import sys
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from parking_watcher.periods import Observation

NOW = datetime(2026, 2, 5, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def local_tz(monkeypatch):
    """Run the test with the local timezone fixed at UTC-3."""
    monkeypatch.setenv("TZ", "<-03>3")
    time.tzset()
    yield timezone(timedelta(hours=-3))
    monkeypatch.undo()
    time.tzset()


@pytest.fixture
def history():
    """Build observations from ``(minutes before now, occupied)`` pairs."""

    def _build(*samples, now=NOW):
        return [Observation(now - timedelta(minutes=m), occ) for m, occ in samples]

    return _build
