import json
from datetime import datetime, timezone

import pytest
import requests

import parking_watcher.data as data
from parking_watcher.periods import Observation


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self.responses = responses
        self.urls = []

    def get(self, url, headers=None, timeout=None):
        self.urls.append(url)
        return self.responses[url]

    def close(self):  # pragma: no cover - callers own the session
        raise AssertionError("session should not be closed")


def test_parse_history_list():
    items = [
        {"data_hora": "2026-02-05T10:15:00", "ocupada": "True"},
        {"data_hora": "2026-02-05T10:20:00", "ocupada": "False"},
        {"data_hora": "2026-02-05T10:25:00", "ocupada": None},
    ]
    result = data.parse_history(items)
    assert [o.occupied for o in result] == [True, False, False]
    assert result[0].timestamp.hour == 10
    assert result[0].timestamp.minute == 15
    assert result[0].timestamp.tzinfo is not None


def test_parse_history_envelope_and_invalid_items():
    payload = {
        "dados": [
            {"data_hora": "2026-02-05T10:15:00Z", "ocupada": "true"},
            {"data_hora": "not a date", "ocupada": "True"},
            {"ocupada": "True"},
            "garbage",
            {"timestamp": "2026-02-05T11:00:00+00:00", "occupied": True},
        ]
    }
    result = data.parse_history(payload)
    assert result == [
        Observation(datetime(2026, 2, 5, 10, 15, tzinfo=timezone.utc), True),
        Observation(datetime(2026, 2, 5, 11, 0, tzinfo=timezone.utc), True),
    ]



def test_parse_history_converts_offsets_to_local_time(local_tz):
    result = data.parse_history(
        [
            {"data_hora": "2026-02-05T12:00:00Z", "ocupada": "True"},
            {"data_hora": "2026-02-05T12:30:00", "ocupada": "False"},
        ]
    )
    assert [o.timestamp.hour for o in result] == [9, 12]
    assert all(o.timestamp.utcoffset() == local_tz.utcoffset(None) for o in result)
    assert result[0].timestamp == datetime(2026, 2, 5, 12, 0, tzinfo=timezone.utc)

@pytest.mark.parametrize("payload", [None, 42, "text", {"other": []}])
def test_parse_history_unexpected_payload(payload):
    assert data.parse_history(payload) == []


def test_fetch_spot_uses_backend_layout():
    url = "http://sensors.local/vagaA01.json"
    session = FakeSession(
        {url: FakeResponse([{"data_hora": "2026-02-05T10:15:00", "ocupada": "True"}])}
    )
    result = data.fetch_spot("A01", "http://sensors.local/", session)
    assert session.urls == [url]
    assert len(result) == 1
    assert result[0].occupied is True


def test_fetch_all_degrades_failed_spots():
    base = "http://sensors.local"
    session = FakeSession(
        {
            f"{base}/vagaA01.json": FakeResponse(
                [{"data_hora": "2026-02-05T10:15:00", "ocupada": "False"}]
            ),
            f"{base}/vagaA02.json": FakeResponse({}, status_code=502),
        }
    )
    result = data.fetch_all(["A01", "A02"], base, session)
    assert len(result["A01"]) == 1
    assert result["A02"] == []


def test_load_file(tmp_path):
    path = tmp_path / "histories.json"
    path.write_text(
        json.dumps(
            {
                "A01": [{"data_hora": "2026-02-05T10:15:00", "ocupada": "True"}],
                "A02": {"dados": []},
            }
        ),
        encoding="utf-8",
    )
    result = data.load_file(path)
    assert list(result) == ["A01", "A02"]
    assert result["A02"] == []


def test_load_file_rejects_lists(tmp_path):
    path = tmp_path / "histories.json"
    path.write_text("[]", encoding="utf-8")
    with pytest.raises(ValueError):
        data.load_file(path)


def test_load_histories_requires_source():
    with pytest.raises(ValueError):
        data.load_histories()


def test_default_spot_ids():
    ids = data.default_spot_ids()
    assert len(ids) == 40
    assert ids[0] == "A01"
    assert ids[-1] == "A40"


@pytest.mark.parametrize(
    "payload, expected",
    [
        (b'{"ocupada": "True"}', True),
        (b'{"ocupada": true}', True),
        (b'{"ocupada": "False"}', False),
        (b"true", True),
        (b"TRUE", True),
        (b"1", True),
        (b"0", False),
        (b"", False),
        ("false", False),
    ],
)
def test_parse_sensor_message(payload, expected):
    received = datetime(2026, 2, 5, 12, 0, tzinfo=timezone.utc)
    spot_id, obs = data.parse_sensor_message(
        "pi5/estacionamento/vaga/B02", payload, received=received
    )
    assert spot_id == "B02"
    assert obs == Observation(received, expected)


def test_apply_message_appends():
    histories = {}
    obs = Observation(datetime(2026, 2, 5, 12, 0, tzinfo=timezone.utc), True)
    data.apply_message(histories, "A01", obs)
    data.apply_message(histories, "A01", obs)
    assert histories == {"A01": [obs, obs]}
