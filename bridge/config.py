import json
import os
from typing import Dict

# =========================
# Env / Config
# =========================
MQTT_HOST = os.getenv("MQTT_HOST", "localhost")
MQTT_PORT = int(os.getenv("MQTT_PORT", "1883"))
MQTT_USERNAME = os.getenv("MQTT_USERNAME", "")
MQTT_PASSWORD = os.getenv("MQTT_PASSWORD", "")

MQTT_TLS = os.getenv("MQTT_TLS", "false").lower() == "true"
MQTT_TLS_INSECURE = os.getenv("MQTT_TLS_INSECURE", "false").lower() == "true"
MQTT_CA_CERT = os.getenv("MQTT_CA_CERT", "")  # optional path to CA bundle

MQTT_TRANSPORT = os.getenv("MQTT_TRANSPORT", "tcp").strip().lower()  # tcp | websockets
MQTT_WS_PATH = os.getenv("MQTT_WS_PATH", "/mqtt")  # often "/" or "/mqtt"

MQTT_CLIENT_ID = os.getenv("MQTT_CLIENT_ID", "")
MQTT_ENABLED = os.getenv("MQTT_ENABLED", "true").lower() == "true"

TELEMETRY_TOPIC = os.getenv("TELEMETRY_TOPIC", "classroom/+/telemetry")
FLIPPER_TOPIC = os.getenv("FLIPPER_TOPIC", "flipper/+/+")
MQTT_TOPICS = (TELEMETRY_TOPIC, FLIPPER_TOPIC)

WS_PORT = int(os.getenv("WS_PORT", "8080"))

try:
  ONLINE_WINDOW_SECONDS = float(os.getenv("ONLINE_WINDOW_SECONDS", "60"))
except ValueError:
  ONLINE_WINDOW_SECONDS = 60.0
if ONLINE_WINDOW_SECONDS <= 0:
  ONLINE_WINDOW_SECONDS = 60.0

RECENT_EVENTS_MAX = int(os.getenv("RECENT_EVENTS_MAX", "20"))
RAW_LOG_MAX = int(os.getenv("RAW_LOG_MAX", "20"))
RAW_CAPTURE = os.getenv("RAW_CAPTURE", "false").lower() == "true"

DEBUG_PAYLOAD = os.getenv("DEBUG_PAYLOAD", "false").lower() == "true"
DEBUG_PAYLOAD_MAX = int(os.getenv("DEBUG_PAYLOAD_MAX", "400"))

DEVICE_NAMES_FILE = os.getenv("DEVICE_NAMES_FILE", "")


def parse_device_names(value: str) -> Dict[str, str]:
  """Parse ``id=Name,id2=Name2`` into a display-name table."""
  names: Dict[str, str] = {}
  for part in value.split(","):
    if "=" not in part:
      continue
    device_id, name = part.split("=", 1)
    device_id = device_id.strip()
    name = name.strip()
    if device_id and name:
      names[device_id] = name
  return names


def load_device_names_file(path: str) -> Dict[str, str]:
  if not path or not os.path.exists(path):
    return {}
  try:
    with open(path, "r", encoding="utf-8") as handle:
      data = json.load(handle)
  except (OSError, ValueError) as exc:
    print(f"[config] failed to load {path}: {exc}")
    return {}
  if not isinstance(data, dict):
    return {}
  return {
    str(k).strip(): str(v).strip()
    for k, v in data.items()
    if str(k).strip() and isinstance(v, str) and v.strip()
  }


DEVICE_NAMES: Dict[str, str] = load_device_names_file(DEVICE_NAMES_FILE)
DEVICE_NAMES.update(parse_device_names(os.getenv("DEVICE_NAMES", "")))
