import threading
import time
from collections import deque
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Generic, Iterator, List, Optional, TypeVar

from bridge.normalize import FlipperEvent, TelemetryReading, parse_timestamp

T = TypeVar("T")


class RingBuffer(Generic[T]):
  """Fixed-capacity, newest-first buffer. Pushing past capacity evicts the oldest."""

  def __init__(self, capacity: int) -> None:
    if capacity <= 0:
      raise ValueError("capacity must be positive")
    self.capacity = capacity
    self._items: Deque[T] = deque(maxlen=capacity)

  def push(self, item: T) -> None:
    # appendleft on a full deque drops from the right, i.e. the oldest entry
    self._items.appendleft(item)

  def __len__(self) -> int:
    return len(self._items)

  def __iter__(self) -> Iterator[T]:
    return iter(self._items)

  def to_list(self) -> List[T]:
    return list(self._items)


@dataclass
class DeviceState:
  id: str
  display_name: str
  last_telemetry: Optional[TelemetryReading] = None


def is_online(reading: Optional[TelemetryReading], now: Optional[float] = None, window_seconds: float = 60.0) -> bool:
  if reading is None:
    return False
  dt = parse_timestamp(reading.timestamp)
  if dt is None:
    return False
  now_dt = datetime.fromtimestamp(time.time() if now is None else now, tz=timezone.utc)
  return (now_dt - dt).total_seconds() < window_seconds


class StateStore:
  """Process-wide state: devices, counters, recent events and the raw log.

  Writes come from the MQTT network thread; reads come from the HTTP loop,
  so every access goes through one lock.
  """

  def __init__(
    self,
    device_names: Optional[Dict[str, str]] = None,
    recent_max: int = 20,
    raw_max: int = 20,
    raw_capture: bool = False,
    online_window_seconds: float = 60.0,
  ) -> None:
    self._lock = threading.Lock()
    self.device_names: Dict[str, str] = dict(device_names or {})
    self.online_window_seconds = online_window_seconds
    self.devices: Dict[str, DeviceState] = {}
    self.counters: Dict[str, int] = {}
    self.recent_events: RingBuffer[FlipperEvent] = RingBuffer(recent_max)
    self.last_event: Optional[FlipperEvent] = None
    self.raw_log: RingBuffer[Dict[str, str]] = RingBuffer(raw_max)
    self.raw_capture = raw_capture
    self.received_total = 0

  def display_name(self, device_id: str) -> str:
    return self.device_names.get(device_id) or device_id

  def upsert_device(self, device_id: str, reading: TelemetryReading) -> DeviceState:
    with self._lock:
      state = self.devices.get(device_id)
      if state is None:
        state = DeviceState(id=device_id, display_name=self.display_name(device_id))
        self.devices[device_id] = state
      state.last_telemetry = reading
      return state

  def record_flipper_event(self, event: FlipperEvent) -> None:
    with self._lock:
      self.recent_events.push(event)
      self.last_event = event
      for key in dict.fromkeys(event.presses):
        self.counters[key] = self.counters.get(key, 0) + 1

  def append_raw(self, topic: str, payload: str) -> None:
    with self._lock:
      self.received_total += 1
      if self.raw_capture:
        self.raw_log.push({"topic": topic, "payload": payload})

  def set_raw_capture(self, enabled: bool) -> None:
    with self._lock:
      self.raw_capture = bool(enabled)

  def is_online(self, device_id: str, now: Optional[float] = None) -> bool:
    with self._lock:
      state = self.devices.get(device_id)
      reading = state.last_telemetry if state is not None else None
    return is_online(reading, now=now, window_seconds=self.online_window_seconds)

  def snapshot(self, now: Optional[float] = None) -> Dict[str, Any]:
    now = time.time() if now is None else now
    with self._lock:
      devices = {}
      for device_id, state in self.devices.items():
        entry = asdict(state)
        entry["online"] = is_online(state.last_telemetry, now=now, window_seconds=self.online_window_seconds)
        devices[device_id] = entry
      return {
        "devices": devices,
        "counters": dict(self.counters),
        "recent_events": [e.to_dict() for e in self.recent_events],
        "last_event": self.last_event.to_dict() if self.last_event else None,
        "server_time": now,
      }

  def raw_snapshot(self) -> Dict[str, Any]:
    with self._lock:
      return {
        "capture": self.raw_capture,
        "received_total": self.received_total,
        "items": self.raw_log.to_list(),
      }
