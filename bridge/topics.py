from dataclasses import dataclass
from typing import Optional

KIND_TELEMETRY = "telemetry"
KIND_FLIPPER = "flipper"
KIND_UNRECOGNIZED = "unrecognized"

TELEMETRY_ROOT = "classroom"
TELEMETRY_LEAF = "telemetry"
FLIPPER_ROOT = "flipper"


@dataclass(frozen=True)
class TopicClassification:
  kind: str
  device_id: Optional[str] = None
  channel: Optional[str] = None

  @property
  def recognized(self) -> bool:
    return self.kind != KIND_UNRECOGNIZED


UNRECOGNIZED = TopicClassification(KIND_UNRECOGNIZED)


def classify_topic(topic: str) -> TopicClassification:
  """Tag a topic as telemetry, flipper input or unrecognized.

  ``classroom/<id>/telemetry`` and ``flipper/<id>/<channel>`` are the only
  recognized shapes. Never raises.
  """
  if not isinstance(topic, str):
    return UNRECOGNIZED
  parts = topic.split("/")
  if len(parts) != 3 or not parts[1]:
    return UNRECOGNIZED

  root, device_id, leaf = parts
  if root == TELEMETRY_ROOT and leaf == TELEMETRY_LEAF:
    return TopicClassification(KIND_TELEMETRY, device_id=device_id)
  if root == FLIPPER_ROOT and leaf:
    return TopicClassification(KIND_FLIPPER, device_id=device_id, channel=leaf)
  return UNRECOGNIZED
