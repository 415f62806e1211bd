from typing import Any, Dict, Tuple

from bridge.normalize import (
  FlipperEvent,
  RESULT_PARSE_ERROR,
  TelemetryReading,
  normalize_message,
)
from bridge.state import StateStore
from bridge.topics import classify_topic


def safe_preview(data: bytes, limit: int = 400) -> str:
  text = data[:limit].decode("utf-8", errors="replace")
  if len(data) > limit:
    text += "..."
  return text


def process_message(
  store: StateStore,
  topic: str,
  payload_bytes: bytes,
  debug_payload: bool = False,
  preview_max: int = 400,
) -> Tuple[Dict[str, str], Dict[str, Any]]:
  """Run one bus message through classify -> normalize -> store.

  Returns the relay record to broadcast to viewers and the parse debug info.
  The relay record is produced for every message, parsed or not.
  """
  payload_text = payload_bytes.decode("utf-8", errors="replace")
  store.append_raw(topic, payload_text)

  classification = classify_topic(topic)
  record, debug = normalize_message(classification, payload_bytes)

  if isinstance(record, TelemetryReading):
    store.upsert_device(record.device_id, record)
  elif isinstance(record, FlipperEvent):
    store.record_flipper_event(record)

  if debug["result"] == RESULT_PARSE_ERROR:
    print(
      f"[bridge] parse error topic={topic} error={debug.get('parse_error')} "
      f"preview={safe_preview(payload_bytes, preview_max)!r}"
    )
  elif debug_payload:
    print(f"[bridge] result={debug['result']} topic={topic} keys={debug.get('json_keys')}")

  return ({"topic": topic, "payload": payload_text}, debug)
