from typing import Callable, Optional, Sequence

import paho.mqtt.client as mqtt

from bridge import config

MessageHandler = Callable[[str, bytes], None]


class BrokerConnection:
  """The single MQTT connection feeding the pipeline.

  Subscribes to every filter in ``topics`` after each successful connect and
  hands ``(topic, payload)`` pairs to ``on_message`` in delivery order. All
  failures are logged; reconnects are left to paho's reconnect delay.
  """

  def __init__(
    self,
    host: str,
    port: int,
    topics: Sequence[str],
    on_message: MessageHandler,
    client_id: str = "",
    username: str = "",
    password: str = "",
    transport: str = "tcp",
    ws_path: str = "/mqtt",
    tls: bool = False,
    tls_insecure: bool = False,
    ca_cert: str = "",
  ) -> None:
    self.host = host
    self.port = port
    self.topics = tuple(topics)
    self.handler = on_message
    self.transport = "websockets" if transport == "websockets" else "tcp"
    self.connected = False
    self._pending_subs = {}

    self.client = mqtt.Client(
      mqtt.CallbackAPIVersion.VERSION2,
      client_id=(client_id or None),
      transport=self.transport,
    )
    if self.transport == "websockets":
      self.client.ws_set_options(path=ws_path)
    if username:
      self.client.username_pw_set(username, password)
    if tls:
      if ca_cert:
        self.client.tls_set(ca_certs=ca_cert)
      else:
        self.client.tls_set()
      if tls_insecure:
        self.client.tls_insecure_set(True)

    self.client.on_connect = self._on_connect
    self.client.on_disconnect = self._on_disconnect
    self.client.on_subscribe = self._on_subscribe
    self.client.on_message = self._on_message

  # =========================
  # MQTT Callbacks (Paho v2)
  # =========================
  def _on_connect(self, client, userdata, flags, reason_code, properties=None):
    if reason_code.is_failure:
      self.connected = False
      print(f"[mqtt] connect failed host={self.host} port={self.port} reason_code={reason_code}")
      return
    self.connected = True
    print(f"[mqtt] connected host={self.host} port={self.port}")
    for topic in self.topics:
      result, mid = client.subscribe(topic, qos=0)
      if result != mqtt.MQTT_ERR_SUCCESS:
        print(f"[mqtt] error subscribing topic={topic} rc={result}")
        continue
      self._pending_subs[mid] = topic

  def _on_subscribe(self, client, userdata, mid, reason_code_list, properties=None):
    topic = self._pending_subs.pop(mid, None)
    for rc in reason_code_list:
      if rc.is_failure:
        print(f"[mqtt] error subscribing topic={topic} reason_code={rc}")
      else:
        print(f"[mqtt] subscribed topic={topic}")

  def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
    self.connected = False
    print(f"[mqtt] disconnected reason_code={reason_code}")

  def _on_message(self, client, userdata, msg: mqtt.MQTTMessage):
    try:
      self.handler(msg.topic, msg.payload)
    except Exception as exc:
      # one bad message must not kill paho's network thread
      print(f"[mqtt] handler failed topic={msg.topic}: {exc!r}")

  # =========================
  # Lifecycle
  # =========================
  def start(self) -> None:
    print(
      f"[mqtt] connecting host={self.host} port={self.port} transport={self.transport} "
      f"topics={','.join(self.topics)}"
    )
    self.client.reconnect_delay_set(min_delay=1, max_delay=30)
    try:
      self.client.connect_async(self.host, self.port, keepalive=30)
    except (OSError, ValueError) as exc:
      print(f"[mqtt] connect error host={self.host} port={self.port}: {exc}")
      return
    self.client.loop_start()

  def stop(self) -> None:
    try:
      self.client.loop_stop()
      self.client.disconnect()
    except Exception as exc:
      print(f"[mqtt] shutdown error: {exc}")


def build_from_config(on_message: MessageHandler, topics: Optional[Sequence[str]] = None) -> BrokerConnection:
  return BrokerConnection(
    host=config.MQTT_HOST,
    port=config.MQTT_PORT,
    topics=topics or config.MQTT_TOPICS,
    on_message=on_message,
    client_id=config.MQTT_CLIENT_ID,
    username=config.MQTT_USERNAME,
    password=config.MQTT_PASSWORD,
    transport=config.MQTT_TRANSPORT,
    ws_path=config.MQTT_WS_PATH,
    tls=config.MQTT_TLS,
    tls_insecure=config.MQTT_TLS_INSECURE,
    ca_cert=config.MQTT_CA_CERT,
  )
