import json
import logging
import threading
import time
from typing import Any, Dict, Callable, Iterable, Optional
from paho.mqtt import client as mqtt
log = logging.getLogger(__name__)

STATUS_TOPIC = "_status"


class Mqtt:
    """
    Shared broker connection.

    paho runs its network loop on a background thread; ``publish`` is safe to
    call from any thread, so device loops and the command handler share one client.
    """

    def __init__(self, cfg, client: Optional[mqtt.Client] = None):
        self.cfg = cfg
        self.status_topic = f"{cfg.base_topic}/{STATUS_TOPIC}"
        self._started = time.monotonic()
        self._subs: Dict[str, Callable[[str, str], None]] = {}
        self._lock = threading.Lock()
        self.cli = client or mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=cfg.client_id,
            clean_session=True,
        )
        if cfg.username:
            self.cli.username_pw_set(cfg.username, cfg.password or "")
        self.cli.will_set(self.status_topic, json.dumps({"online": False}), qos=1, retain=True)
        self.cli.on_connect = self._on_connect
        self.cli.on_disconnect = self._on_disconnect

    def connect(self) -> None:
        log.info(f"Attempting to connect to MQTT broker at {self.cfg.host}:{self.cfg.port}")
        self.cli.connect_async(self.cfg.host, self.cfg.port, keepalive=self.cfg.keepalive)
        self.cli.loop_start()

    @property
    def connected(self) -> bool:
        return self.cli.is_connected()

    def _on_connect(self, _cli, _ud, _flags, reason_code, _props=None):
        if reason_code.is_failure:
            log.error(f"MQTT connection refused: {reason_code}")
            return
        log.info("Successfully connected to MQTT broker.")
        # clean_session drops subscriptions, so re-issue them on every (re)connect
        with self._lock:
            topics = list(self._subs)
        for topic in topics:
            self.cli.subscribe(topic, qos=0)
        self.publish_heartbeat()

    def _on_disconnect(self, _cli, _ud, _flags, reason_code, _props=None):
        log.warning(f"MQTT connection closed: {reason_code}")

    def pub(self, topic: str, payload: Dict[str, Any], retain: bool = False) -> Optional[mqtt.MQTTMessageInfo]:
        return self.pub_raw(topic, json.dumps(payload, separators=(",", ":")), retain=retain)

    def pub_raw(self, topic: str, payload: str, retain: bool = False) -> Optional[mqtt.MQTTMessageInfo]:
        if not self.connected:
            log.warning(f"MQTT client not connected. Cannot publish to topic: {topic}")
            return None
        log.debug("MQTT PUB %s %s retain=%s", topic, payload, retain)
        info = self.cli.publish(topic, payload, qos=0, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            log.error(f"Failed to publish message to topic {topic}: {mqtt.error_string(info.rc)}")
        return info

    def sub(self, topic: str, handler: Callable[[str, str], None]) -> None:
        """Subscribe ``handler(topic, payload_text)`` to an exact topic."""
        def on_message(_cli, _ud, msg):
            try:
                text = msg.payload.decode()
            except UnicodeDecodeError:
                log.warning(f"Dropping non UTF-8 payload on {msg.topic}")
                return
            log.debug(f"Received message on topic: {msg.topic} payload: {text}")
            handler(msg.topic, text)

        with self._lock:
            self._subs[topic] = handler
        self.cli.message_callback_add(topic, on_message)
        if self.connected:
            self.cli.subscribe(topic, qos=0)
        log.debug(f"Subscribed to {topic}")

    def publish_heartbeat(self) -> None:
        payload = {"online": True, "uptime_s": int(time.monotonic() - self._started)}
        self.pub(self.status_topic, payload, retain=True)

    def flush(self, infos: Iterable[Optional[mqtt.MQTTMessageInfo]], timeout: float) -> bool:
        """Wait up to ``timeout`` seconds in total for the given publishes to leave the client."""
        deadline = time.monotonic() + timeout
        delivered = True
        for info in infos:
            if info is None:
                delivered = False
                continue
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            try:
                info.wait_for_publish(timeout=remaining)
            except (RuntimeError, ValueError) as e:
                log.warning(f"Publish not flushed: {e}")
                delivered = False
                continue
            delivered = delivered and info.is_published()
        return delivered

    def disconnect(self) -> None:
        self.cli.disconnect()
        self.cli.loop_stop()
        log.info("Disconnected from MQTT broker.")
