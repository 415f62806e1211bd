import pytest

from bridge.normalize import FlipperEvent, TelemetryReading, epoch_seconds_to_iso
from bridge.state import RingBuffer, StateStore, is_online

NOW = 1700000000.0


def _event(i, presses=None):
  return FlipperEvent(device_id="f1", channel="misc", value=i, presses=presses or [])


def test_ring_buffer_keeps_newest_first():
  buf = RingBuffer(20)
  for i in range(25):
    buf.push(i)
  items = buf.to_list()
  assert len(items) == 20
  assert items[0] == 24
  assert items[-1] == 5


def test_ring_buffer_rejects_zero_capacity():
  with pytest.raises(ValueError):
    RingBuffer(0)


def test_recent_events_bounded_at_twenty():
  store = StateStore()
  for i in range(25):
    store.record_flipper_event(_event(i))
  values = [e.value for e in store.recent_events]
  assert len(values) == 20
  assert values == list(range(24, 4, -1))
  assert store.last_event.value == 24


def test_counters_increment_once_per_key():
  store = StateStore()
  store.record_flipper_event(_event(0, ["leftFlipper", "rightFlipper"]))
  store.record_flipper_event(_event(1, ["leftFlipper"]))
  store.record_flipper_event(_event(2, ["leftFlipper", "leftFlipper"]))
  assert store.counters == {"leftFlipper": 3, "rightFlipper": 1}


def test_upsert_overwrites_without_merging():
  store = StateStore(device_names={"esp32-01": "Front desk"})
  store.upsert_device("esp32-01", TelemetryReading("esp32-01", temperature=20.0, humidity=40))
  state = store.upsert_device("esp32-01", TelemetryReading("esp32-01", temperature=21.0))
  assert state.display_name == "Front desk"
  assert state.last_telemetry.temperature == 21.0
  assert state.last_telemetry.humidity is None
  assert list(store.devices) == ["esp32-01"]


def test_display_name_falls_back_to_id():
  store = StateStore()
  state = store.upsert_device("esp32-02", TelemetryReading("esp32-02"))
  assert state.display_name == "esp32-02"


def test_raw_log_only_while_capture_enabled():
  store = StateStore(raw_max=3)
  store.append_raw("a/b/c", "1")
  assert store.received_total == 1
  assert len(store.raw_log) == 0

  store.set_raw_capture(True)
  for i in range(5):
    store.append_raw("a/b/c", str(i))
  raw = store.raw_snapshot()
  assert raw["received_total"] == 6
  assert raw["capture"] is True
  assert [item["payload"] for item in raw["items"]] == ["4", "3", "2"]


@pytest.mark.parametrize("age, expected", [(59, True), (61, False)])
def test_liveness_window(age, expected):
  reading = TelemetryReading("d", timestamp=epoch_seconds_to_iso(NOW - age))
  assert is_online(reading, now=NOW) is expected


def test_liveness_without_usable_timestamp():
  assert is_online(TelemetryReading("d"), now=NOW) is False
  assert is_online(TelemetryReading("d", timestamp="soon"), now=NOW) is False
  assert is_online(None, now=NOW) is False


def test_snapshot_reports_online_flag():
  store = StateStore()
  store.upsert_device("d", TelemetryReading("d", timestamp=epoch_seconds_to_iso(NOW - 10)))
  snap = store.snapshot(now=NOW)
  assert snap["devices"]["d"]["online"] is True
  assert snap["devices"]["d"]["last_telemetry"]["timestamp"] == "2023-11-14T22:13:10.000Z"
  assert store.is_online("d", now=NOW + 120) is False
  assert store.is_online("missing", now=NOW) is False
