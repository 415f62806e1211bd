import asyncio
import json
from typing import Any, Dict, Set

from fastapi import WebSocket
from starlette.websockets import WebSocketState

HANDSHAKE = {"type": "info", "message": "connected to bridge"}


def _is_ready(ws: WebSocket) -> bool:
  return (
    ws.client_state == WebSocketState.CONNECTED
    and ws.application_state == WebSocketState.CONNECTED
  )


class Fanout:
  """Best-effort, at-most-once broadcast to every connected viewer.

  Each send runs as its own task. A viewer whose previous send is still in
  flight misses the message instead of holding up the others.
  """

  def __init__(self) -> None:
    self.clients: Set[WebSocket] = set()
    self._pending: Dict[WebSocket, "asyncio.Task[None]"] = {}

  def __len__(self) -> int:
    return len(self.clients)

  async def connect(self, ws: WebSocket) -> None:
    await ws.accept()
    await ws.send_text(json.dumps(HANDSHAKE))
    self.clients.add(ws)
    print(f"[ws] client connected total={len(self.clients)}")

  def disconnect(self, ws: WebSocket) -> None:
    task = self._pending.pop(ws, None)
    if task is not None and not task.done():
      task.cancel()
    if ws in self.clients:
      self.clients.discard(ws)
      print(f"[ws] client disconnected total={len(self.clients)}")

  def busy(self, ws: WebSocket) -> bool:
    task = self._pending.get(ws)
    return task is not None and not task.done()

  async def _send(self, ws: WebSocket, text: str) -> None:
    try:
      await ws.send_text(text)
    except Exception:
      self._pending.pop(ws, None)
      self.disconnect(ws)

  def _forget(self, ws: WebSocket, task: "asyncio.Task[None]") -> None:
    if self._pending.get(ws) is task:
      self._pending.pop(ws, None)

  async def broadcast(self, record: Dict[str, Any]) -> int:
    """Start one send per ready viewer; returns how many were started."""
    text = json.dumps(record)
    started = 0
    for ws in list(self.clients):
      if not _is_ready(ws) or self.busy(ws):
        continue
      task = asyncio.create_task(self._send(ws, text))
      self._pending[ws] = task
      task.add_done_callback(lambda t, ws=ws: self._forget(ws, t))
      started += 1
    return started
