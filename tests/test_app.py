import json

import pytest
from fastapi.testclient import TestClient

from bridge import app as bridge_app
from bridge import config
from bridge.fanout import Fanout
from bridge.state import StateStore


@pytest.fixture
def client(monkeypatch):
  monkeypatch.setattr(config, "MQTT_ENABLED", False)
  monkeypatch.setattr(bridge_app, "store", StateStore())
  monkeypatch.setattr(bridge_app, "fanout", Fanout())
  monkeypatch.setattr(bridge_app, "result_counts", {})
  monkeypatch.setattr(bridge_app, "topic_counts", {})
  with TestClient(bridge_app.app) as c:
    yield c


def test_handshake_on_connect(client):
  with client.websocket_connect("/ws") as ws:
    assert ws.receive_json() == {"type": "info", "message": "connected to bridge"}


def test_telemetry_relay_and_state(client):
  body = b'{"temperature":22.3,"humPct":48,"ts":1700000000}'
  with client.websocket_connect("/ws") as ws:
    ws.receive_json()
    bridge_app.on_bus_message("classroom/esp32-01/telemetry", body)
    assert ws.receive_json() == {"topic": "classroom/esp32-01/telemetry", "payload": body.decode()}

  snap = client.get("/snapshot").json()
  device = snap["devices"]["esp32-01"]
  assert device["display_name"] == "esp32-01"
  assert device["online"] is False
  assert device["last_telemetry"]["temperature"] == 22.3
  assert device["last_telemetry"]["humidity"] == 48
  assert device["last_telemetry"]["timestamp"] == "2023-11-14T22:13:20.000Z"


def test_every_viewer_gets_unrecognized_and_noise_messages(client):
  with client.websocket_connect("/ws") as a, client.websocket_connect("/ws") as b:
    a.receive_json()
    b.receive_json()
    bridge_app.on_bus_message("flipper/f1/tilt", json.dumps({"tilt": False}).encode())
    bridge_app.on_bus_message("somewhere/else", b"hello")
    for ws in (a, b):
      assert ws.receive_json()["topic"] == "flipper/f1/tilt"
      assert ws.receive_json() == {"topic": "somewhere/else", "payload": "hello"}

  snap = client.get("/snapshot").json()
  assert snap["recent_events"] == []
  assert snap["counters"] == {}


def test_flipper_events_in_snapshot_and_stats(client):
  bridge_app.on_bus_message("flipper/f1/tilt", b'{"tilt":true}')
  bridge_app.on_bus_message("flipper/f1/tilt", b'{"tilt":false,"nudge":false}')
  bridge_app.on_bus_message("flipper/f1/buttons", b'{"buttons":{"leftFlipper":true,"rightFlipper":true}}')

  snap = client.get("/snapshot").json()
  assert [e["button"] for e in snap["recent_events"]] == ["leftFlipper+rightFlipper", "tilt"]
  assert snap["last_event"]["button"] == "leftFlipper+rightFlipper"
  assert snap["counters"] == {"tilt": 1, "leftFlipper": 1, "rightFlipper": 1}

  stats = client.get("/stats").json()
  assert stats["stats"]["received_total"] == 3
  assert stats["result_counts"] == {"flipper": 2, "no_event": 1}
  assert stats["top_topics"][0] == ["flipper/f1/tilt", 2]
  assert stats["mqtt_connected"] is False


def test_raw_capture_toggle(client):
  bridge_app.on_bus_message("flipper/f1/x", b'{"value":1}')
  assert client.get("/raw").json()["items"] == []

  assert client.post("/raw/capture", params={"enabled": "true"}).json() == {"capture": True}
  bridge_app.on_bus_message("flipper/f1/x", b'{"value":2}')
  raw = client.get("/raw").json()
  assert raw["received_total"] == 2
  assert raw["items"] == [{"topic": "flipper/f1/x", "payload": '{"value":2}'}]


def test_snapshot_survives_non_finite_payloads(client):
  bridge_app.on_bus_message("classroom/esp32-01/telemetry", b'{"temperature":"nan"}')
  bridge_app.on_bus_message("classroom/esp32-02/telemetry", b'{"temperature":NaN}')
  bridge_app.on_bus_message("flipper/f1/misc", b'{"value":Infinity}')

  resp = client.get("/snapshot")
  assert resp.status_code == 200
  snap = resp.json()
  assert snap["devices"]["esp32-01"]["last_telemetry"]["temperature"] is None
  assert "esp32-02" not in snap["devices"]
  assert snap["recent_events"] == []


def test_stats_copies_counts(client):
  bridge_app.on_bus_message("flipper/f1/x", b'{"value":1}')
  stats = client.get("/stats").json()
  bridge_app.on_bus_message("flipper/f1/y", b'{"value":2}')
  assert stats["result_counts"] == {"flipper": 1}
  assert client.get("/stats").json()["result_counts"] == {"flipper": 2}
