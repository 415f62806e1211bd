import pytest

from bridge.topics import (
  KIND_FLIPPER,
  KIND_TELEMETRY,
  KIND_UNRECOGNIZED,
  classify_topic,
)


def test_telemetry_topic():
  c = classify_topic("classroom/esp32-01/telemetry")
  assert c.kind == KIND_TELEMETRY
  assert c.device_id == "esp32-01"
  assert c.channel is None


def test_flipper_topic_carries_channel():
  c = classify_topic("flipper/f1/buttons")
  assert c.kind == KIND_FLIPPER
  assert c.device_id == "f1"
  assert c.channel == "buttons"


@pytest.mark.parametrize("topic", [
  "",
  "classroom",
  "classroom/esp32-01",
  "classroom/esp32-01/status",
  "classroom//telemetry",
  "flipper/f1",
  "flipper/f1/",
  "meshcore/x/y",
  "other/esp32-01/telemetry",
  "classroom/esp32-01/telemetry/extra",
])
def test_unrecognized_topics(topic):
  c = classify_topic(topic)
  assert c.kind == KIND_UNRECOGNIZED
  assert c.device_id is None
  assert not c.recognized


def test_non_string_topic_never_raises():
  assert classify_topic(None).kind == KIND_UNRECOGNIZED
