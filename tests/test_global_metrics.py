from datetime import timedelta

from parking_watcher.metrics import all_spot_metrics, global_metrics


def test_busy_spot_and_empty_spot(history, now):
    histories = {"A": history((24 * 60, True)), "B": []}
    result = global_metrics(histories, now=now)
    assert [m.spot_id for m in result.most_used_spots] == ["A"]
    assert result.least_used_spots[0].spot_id == "A"
    # B has no history and is left out of the averages
    assert result.average_utilization == 100.0
    assert result.total_occupancy_events == 1


def test_never_occupied_spot_is_averaged_but_not_least_used(history, now):
    histories = {"A": history((24 * 60, True)), "B": history((60, False))}
    result = global_metrics(histories, now=now)
    assert [m.spot_id for m in result.most_used_spots] == ["A", "B"]
    assert [m.spot_id for m in result.least_used_spots] == ["A"]
    assert result.average_utilization == 50.0


def test_rankings_are_limited_and_ordered(history, now):
    histories = {}
    for i in range(8):
        minutes = 60 * (i + 1)
        histories[f"A{i + 1:02d}"] = history((minutes, True), (0, False))
    result = global_metrics(histories, now=now)

    most = [m.spot_id for m in result.most_used_spots]
    least = [m.spot_id for m in result.least_used_spots]
    assert most == ["A08", "A07", "A06", "A05", "A04"]
    assert least == ["A01", "A02", "A03", "A04", "A05"]
    assert all(m.occupancy_count > 0 for m in result.least_used_spots)


def test_ties_keep_mapping_order(history, now):
    histories = {
        "X": history((30, True), (0, False)),
        "Y": history((30, True), (0, False)),
        "Z": history((30, True), (0, False)),
    }
    result = global_metrics(histories, now=now)
    assert [m.spot_id for m in result.most_used_spots] == ["X", "Y", "Z"]
    assert [m.spot_id for m in result.least_used_spots] == ["Z", "Y", "X"]


def test_no_spots(now):
    result = global_metrics({}, now=now)
    assert result.average_occupancy_minutes == 0
    assert result.average_utilization == 0
    assert result.total_occupancy_events == 0
    assert result.most_used_spots == []
    assert result.least_used_spots == []
    assert len(result.peak_hours) == 24


def test_average_minutes_across_spots(history, now):
    histories = {
        "A": history((100, True), (90, False)),  # 10 min
        "B": history((100, True), (75, False)),  # 25 min
    }
    result = global_metrics(histories, now=now)
    # (10 + 25) / 2 = 17.5
    assert result.average_occupancy_minutes == 18
    assert result.total_occupancy_events == 2


def test_spot_names_and_ranking_size(history, now):
    histories = {
        "A01": history((30, True), (0, False)),
        "A02": history((60, True), (0, False)),
    }
    result = global_metrics(
        histories, now=now, spot_names={"A02": "Entrance"}, ranking_size=1
    )
    assert [m.spot_name for m in result.most_used_spots] == ["Entrance"]
    assert [m.spot_name for m in result.least_used_spots] == ["Vaga A01"]


def test_all_spot_metrics_skips_missing_histories(history, now):
    histories = {"A01": history((10, True)), "A02": None, "A03": []}
    metrics = all_spot_metrics(histories, now=now)
    assert [m.spot_id for m in metrics] == ["A01"]


def test_to_dict(history, now):
    result = global_metrics({"A": history((30, True), (0, False))}, now=now)
    data = result.to_dict()
    assert data["most_used_spots"][0]["spot_id"] == "A"
    assert len(data["peak_hours"]) == 24
    assert data["peak_hours"][0] == {"hour": 0, "occupancy_rate": 0}


def test_default_now_is_read_once_for_all_spots(history, now, monkeypatch):
    calls = []

    def ticking_clock(reference):
        calls.append(reference)
        return now + timedelta(minutes=len(calls) - 1)

    monkeypatch.setattr("parking_watcher.metrics.now_like", ticking_clock)
    histories = {"A": history((60, True)), "B": history((60, True))}
    result = all_spot_metrics(histories)
    assert len(calls) == 1
    assert [m.total_occupancy_time for m in result] == [60, 60]
