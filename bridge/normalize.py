import json
import math
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from bridge.topics import KIND_FLIPPER, KIND_TELEMETRY, TopicClassification

# Parse outcomes, counted per message in the stats.
RESULT_TELEMETRY = "telemetry"
RESULT_FLIPPER = "flipper"
RESULT_PARSE_ERROR = "parse_error"
RESULT_NO_EVENT = "no_event"
RESULT_UNRECOGNIZED = "unrecognized"


@dataclass
class TelemetryReading:
  device_id: str
  temperature: Optional[float] = None
  humidity: Optional[float] = None
  battery: Optional[float] = None
  timestamp: Optional[str] = None

  def to_dict(self) -> Dict[str, Any]:
    return asdict(self)


@dataclass
class FlipperEvent:
  device_id: str
  channel: Optional[str] = None
  button: Optional[str] = None
  value: Optional[Union[str, float, int]] = None
  timestamp: Optional[str] = None
  raw: Dict[str, Any] = field(default_factory=dict)
  presses: List[str] = field(default_factory=list)

  def to_dict(self) -> Dict[str, Any]:
    return asdict(self)


Normalized = Union[TelemetryReading, FlipperEvent]

# =========================
# Helpers: field hunting
# =========================
# A candidate is (field, transform). The transform receives the whole payload
# and the field value and returns the canonical value, or None to skip.
Candidate = Tuple[str, Callable[[Dict[str, Any], Any], Any]]


def _is_number(value: Any) -> bool:
  return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_number(value: Any) -> Optional[float]:
  if isinstance(value, str) and value.strip():
    try:
      value = float(value)
    except ValueError:
      return None
  if not _is_number(value):
    return None
  # nan and inf cannot be rendered as JSON
  if isinstance(value, float) and not math.isfinite(value):
    return None
  return value


def _number(obj: Dict[str, Any], value: Any) -> Optional[float]:
  return _as_number(value)


def _celsius_value(obj: Dict[str, Any], value: Any) -> Optional[float]:
  if obj.get("tempUnit") != "C":
    return None
  return _as_number(value)


def _stringify(obj: Dict[str, Any], value: Any) -> Any:
  if isinstance(value, (dict, list)):
    return json.dumps(value, separators=(",", ":"))
  return value


def _button_name(obj: Dict[str, Any], value: Any) -> Optional[str]:
  if isinstance(value, (dict, list)):
    return None
  text = str(value).strip()
  return text or None


TEMPERATURE_FIELDS: Sequence[Candidate] = (
  ("temperature", _number),
  ("tempC", _number),
  ("tempValue", _celsius_value),
)
HUMIDITY_FIELDS: Sequence[Candidate] = (
  ("humidity", _number),
  ("humPct", _number),
)
BATTERY_FIELDS: Sequence[Candidate] = (
  ("battery", _number),
  ("batteryPct", _number),
)
BUTTON_FIELDS: Sequence[Candidate] = tuple(
  (key, _button_name) for key in ("button", "btn", "key", "event", "name")
)
VALUE_FIELDS: Sequence[Candidate] = tuple(
  (key, _stringify) for key in ("value", "state", "press", "payload", "count")
)
PLUNGER_VALUE_FIELDS: Sequence[Candidate] = tuple(
  (key, _stringify) for key in ("position", "value", "payload")
)
PLUNGER_ACTION_FIELDS: Sequence[Candidate] = (("action", _button_name),)


def first_present(obj: Dict[str, Any], candidates: Sequence[Candidate]) -> Any:
  """Return the first candidate that is present and survives its transform."""
  for key, transform in candidates:
    value = obj.get(key)
    if value is None:
      continue
    resolved = transform(obj, value)
    if resolved is not None:
      return resolved
  return None


def epoch_seconds_to_iso(seconds: float) -> str:
  dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
  return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def resolve_timestamp(obj: Dict[str, Any]) -> Optional[str]:
  ts = obj.get("ts")
  if _is_number(ts):
    try:
      return epoch_seconds_to_iso(float(ts))
    except (OverflowError, OSError, ValueError):
      return None
  if isinstance(ts, str) and ts:
    return ts
  return None


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
  """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
  if not isinstance(value, str) or not value.strip():
    return None
  text = value.strip()
  if text.endswith(("Z", "z")):
    text = text[:-1] + "+00:00"
  try:
    dt = datetime.fromisoformat(text)
  except ValueError:
    return None
  if dt.tzinfo is None:
    dt = dt.replace(tzinfo=timezone.utc)
  return dt


def _reject_constant(name: str) -> Any:
  raise ValueError(f"non-finite number {name}")


def _finite_float(text: str) -> float:
  value = float(text)
  if not math.isfinite(value):
    raise ValueError(f"non-finite number {text}")
  return value


def decode_payload(payload_bytes: bytes) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
  try:
    text = payload_bytes.decode("utf-8", errors="strict").strip()
  except UnicodeDecodeError as exc:
    return (None, f"not utf-8: {exc}")
  if not text:
    return (None, "empty payload")
  try:
    obj = json.loads(text, parse_constant=_reject_constant, parse_float=_finite_float)
  except ValueError as exc:
    return (None, str(exc))
  if not isinstance(obj, dict):
    return (None, f"expected object, got {type(obj).__name__}")
  return (obj, None)


# =========================
# Telemetry
# =========================
def normalize_telemetry(device_id: str, obj: Dict[str, Any]) -> TelemetryReading:
  return TelemetryReading(
    device_id=device_id,
    temperature=first_present(obj, TEMPERATURE_FIELDS),
    humidity=first_present(obj, HUMIDITY_FIELDS),
    battery=first_present(obj, BATTERY_FIELDS),
    timestamp=resolve_timestamp(obj),
  )


# =========================
# Flipper channels
# =========================
# Each extractor returns an event, or None when the payload carries no new fact.
def _generic_button_event(device_id: str, channel: Optional[str], obj: Dict[str, Any]) -> Optional[FlipperEvent]:
  button = first_present(obj, BUTTON_FIELDS)
  if button is None:
    return None
  return FlipperEvent(
    device_id=device_id,
    channel=channel,
    button=button,
    value=first_present(obj, VALUE_FIELDS),
    presses=[button],
  )


def extract_buttons(device_id: str, channel: Optional[str], obj: Dict[str, Any]) -> Optional[FlipperEvent]:
  buttons = obj.get("buttons")
  pressed = [str(k) for k, v in buttons.items() if v is True]
  if not pressed:
    return None
  return FlipperEvent(
    device_id=device_id,
    channel=channel,
    button="+".join(pressed),
    value="pressed",
    presses=pressed,
  )


def extract_tilt(device_id: str, channel: Optional[str], obj: Dict[str, Any]) -> Optional[FlipperEvent]:
  for flag in ("tilt", "nudge"):
    if obj.get(flag) is True:
      return FlipperEvent(
        device_id=device_id,
        channel=channel,
        button=flag,
        value=flag,
        presses=[flag],
      )
  return None


def extract_plunger(device_id: str, channel: Optional[str], obj: Dict[str, Any]) -> Optional[FlipperEvent]:
  action = first_present(obj, PLUNGER_ACTION_FIELDS)
  if action is None:
    return None
  return FlipperEvent(
    device_id=device_id,
    channel=channel,
    button=action,
    value=first_present(obj, PLUNGER_VALUE_FIELDS),
    presses=[action],
  )


def extract_generic(device_id: str, channel: Optional[str], obj: Dict[str, Any]) -> Optional[FlipperEvent]:
  value = first_present(obj, VALUE_FIELDS)
  if value is None:
    return None
  return FlipperEvent(device_id=device_id, channel=channel, value=value)


Extractor = Callable[[str, Optional[str], Dict[str, Any]], Optional[FlipperEvent]]


def select_extractor(channel: Optional[str], obj: Dict[str, Any]) -> Extractor:
  """Pick the channel variant that applies to this payload."""
  if channel == "buttons" and isinstance(obj.get("buttons"), dict):
    return extract_buttons
  if channel == "tilt":
    return extract_tilt
  if channel == "plunger" and first_present(obj, PLUNGER_ACTION_FIELDS) is not None:
    return extract_plunger
  return extract_generic


def normalize_flipper(device_id: str, channel: Optional[str], obj: Dict[str, Any]) -> Optional[FlipperEvent]:
  event = _generic_button_event(device_id, channel, obj)
  if event is None:
    event = select_extractor(channel, obj)(device_id, channel, obj)
  if event is None:
    return None
  event.timestamp = resolve_timestamp(obj)
  event.raw = obj
  return event


# =========================
# Entry point
# =========================
def normalize_message(
  classification: TopicClassification,
  payload_bytes: bytes,
) -> Tuple[Optional[Normalized], Dict[str, Any]]:
  """Turn one classified message into a canonical record.

  Returns ``(record, debug)``. ``record`` is None when the message is dropped;
  ``debug["result"]`` says why.
  """
  debug: Dict[str, Any] = {
    "result": RESULT_UNRECOGNIZED,
    "kind": classification.kind,
    "device_id": classification.device_id,
    "channel": classification.channel,
    "json_keys": None,
    "parse_error": None,
  }
  if not classification.recognized:
    return (None, debug)

  obj, error = decode_payload(payload_bytes)
  if obj is None:
    debug["result"] = RESULT_PARSE_ERROR
    debug["parse_error"] = error
    return (None, debug)
  debug["json_keys"] = list(obj.keys())[:50]

  if classification.kind == KIND_TELEMETRY:
    debug["result"] = RESULT_TELEMETRY
    return (normalize_telemetry(classification.device_id, obj), debug)

  if classification.kind == KIND_FLIPPER:
    event = normalize_flipper(classification.device_id, classification.channel, obj)
    debug["result"] = RESULT_FLIPPER if event is not None else RESULT_NO_EVENT
    return (event, debug)

  return (None, debug)
