import asyncio
import threading
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from bridge import config
from bridge.broker import BrokerConnection, build_from_config
from bridge.fanout import Fanout
from bridge.pipeline import process_message
from bridge.state import StateStore

# =========================
# App / State
# =========================
app = FastAPI()

store = StateStore(
  device_names=config.DEVICE_NAMES,
  recent_max=config.RECENT_EVENTS_MAX,
  raw_max=config.RAW_LOG_MAX,
  raw_capture=config.RAW_CAPTURE,
  online_window_seconds=config.ONLINE_WINDOW_SECONDS,
)
fanout = Fanout()
broker: Optional[BrokerConnection] = None
update_queue: Optional["asyncio.Queue[Dict[str, Any]]"] = None
_loop: Optional[asyncio.AbstractEventLoop] = None
_broadcaster_task: Optional[asyncio.Task] = None

stats = {
  "last_rx_ts": None,
  "last_rx_topic": None,
  "relayed_total": 0,
}
result_counts: Dict[str, int] = {}
topic_counts: Dict[str, int] = {}  # topic -> count
_stats_lock = threading.Lock()


# =========================
# Bus -> pipeline
# =========================
def on_bus_message(topic: str, payload: bytes) -> Dict[str, str]:
  """Handle one bus message on the MQTT network thread.

  State is updated synchronously here; the relay record is handed to the
  event loop so viewers never hold up ingestion.
  """
  with _stats_lock:
    stats["last_rx_ts"] = time.time()
    stats["last_rx_topic"] = topic
    topic_counts[topic] = topic_counts.get(topic, 0) + 1

  relay, debug = process_message(
    store,
    topic,
    payload,
    debug_payload=config.DEBUG_PAYLOAD,
    preview_max=config.DEBUG_PAYLOAD_MAX,
  )
  result = debug.get("result") or "unknown"
  with _stats_lock:
    result_counts[result] = result_counts.get(result, 0) + 1

  loop, queue = _loop, update_queue
  if loop is not None and queue is not None and not loop.is_closed():
    loop.call_soon_threadsafe(queue.put_nowait, relay)
  return relay


# =========================
# Broadcaster
# =========================
async def broadcaster(queue: "asyncio.Queue[Dict[str, Any]]"):
  while True:
    relay = await queue.get()
    try:
      await fanout.broadcast(relay)
      with _stats_lock:
        stats["relayed_total"] += 1
    except Exception as exc:
      print(f"[ws] broadcast failed topic={relay.get('topic')}: {exc!r}")


# =========================
# FastAPI routes
# =========================
@app.get("/snapshot")
def snapshot():
  return store.snapshot()


@app.get("/stats")
def get_stats():
  with _stats_lock:
    counts = dict(result_counts)
    top_topics = sorted(topic_counts.items(), key=lambda kv: kv[1], reverse=True)[:20]
    current = dict(stats)
  raw = store.raw_snapshot()
  return {
    "stats": dict(current, received_total=raw["received_total"]),
    "result_counts": counts,
    "top_topics": top_topics,
    "devices": len(store.devices),
    "viewers": len(fanout),
    "raw_capture": raw["capture"],
    "mqtt_connected": broker.connected if broker is not None else False,
    "server_time": time.time(),
  }


@app.get("/raw")
def raw_entries():
  return store.raw_snapshot()


@app.post("/raw/capture")
def raw_capture(enabled: bool):
  store.set_raw_capture(enabled)
  print(f"[bridge] raw capture enabled={enabled}")
  return {"capture": store.raw_capture}


@app.websocket("/ws")
async def ws_endpoint(ws: WebSocket):
  try:
    await fanout.connect(ws)
    while True:
      await ws.receive_text()
  except WebSocketDisconnect:
    pass
  except RuntimeError:
    pass
  finally:
    fanout.disconnect(ws)


# =========================
# Startup / Shutdown
# =========================
@app.on_event("startup")
async def startup():
  global broker, _loop, update_queue, _broadcaster_task

  _loop = asyncio.get_running_loop()
  update_queue = asyncio.Queue()
  _broadcaster_task = asyncio.create_task(broadcaster(update_queue))

  if not config.MQTT_ENABLED:
    print("[mqtt] disabled, not connecting")
    return
  broker = build_from_config(on_bus_message)
  broker.start()


@app.on_event("shutdown")
async def shutdown():
  global broker, _loop, update_queue, _broadcaster_task
  if broker is not None:
    broker.stop()
    broker = None
  _loop = None
  update_queue = None
  if _broadcaster_task is not None:
    _broadcaster_task.cancel()
    _broadcaster_task = None
