"""
Thin transport session on top of a paho-mqtt client.

One instance is used for exactly one connect attempt. paho's own reconnect
handling is switched off by stopping the network loop as soon as the
connection drops, reconnecting is up to the ConnectionManager which simply
creates a new session.
"""
import logging
import time
from typing import Callable, Optional

import paho.mqtt.client as mqtt

from picar_helper.exceptions import TransportError


class MqttTransport:
    def __init__(
        self,
        host: str,
        port: int = 1883,
        keep_alive: int = 20,
        client_id_prefix: str = "picar_client",
        will_topic: Optional[str] = None,
        will_payload: str = "offline"
    ) -> None:
        self.host = host
        self.port = port
        self.keep_alive = keep_alive
        self.client_id = f"{client_id_prefix}_{int(time.time() * 1000)}"

        self.on_connected: Optional[Callable[[], None]] = None
        self.on_disconnected: Optional[Callable[[], None]] = None
        self.on_message: Optional[Callable[[str, bytes], None]] = None

        self.client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=True
        )
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message
        self.client.on_log = self._on_log

        if will_topic:
            self.client.will_set(will_topic, payload=will_payload, qos=1, retain=True)

    def connect(self) -> None:
        """Blocks until the TCP connection is up, CONNACK arrives later."""
        logging.debug(f"Connecting to {self.host}:{self.port} as '{self.client_id}' (keep_alive={self.keep_alive}s)")
        self.client.connect(self.host, self.port, self.keep_alive)
        self.client.loop_start()

    def disconnect(self) -> None:
        self.client.disconnect()
        self.client.loop_stop()

    def publish(self, topic: str, qos: int, payload: bytes) -> None:
        info = self.client.publish(topic, payload, qos)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError("publish", mqtt.error_string(info.rc))

    def subscribe(self, topic: str, qos: int = 0) -> None:
        result, _ = self.client.subscribe(topic, qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError("subscribe", mqtt.error_string(result))

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            logging.warning(f"Broker rejected connection: {reason_code}")
            client.loop_stop()
            if self.on_disconnected:
                self.on_disconnected()
            return

        if self.on_connected:
            self.on_connected()

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties) -> None:
        logging.info(f"MQTT client disconnected: {reason_code}")
        client.loop_stop()
        if self.on_disconnected:
            self.on_disconnected()

    def _on_message(self, client, userdata, message: mqtt.MQTTMessage) -> None:
        if self.on_message:
            self.on_message(message.topic, message.payload)

    def _on_log(self, client, userdata, level: int, buf: str) -> None:
        logging.debug(f"paho: {buf}")
