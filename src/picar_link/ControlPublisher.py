"""
ControlPublisher turns a noisy, high frequency stream of control intents into
a minimal outbound message stream.

Every intent kind (drive, pan/tilt, position) is handled independently:

* Not connected: the intent is dropped.
* Every component within EPSILON of what was last sent: dropped, no point in
  sending the same thing twice. A pending debounce for the kind is cancelled
  as well, since the latest intent is what has already been sent.
* Otherwise the per-kind debounce timer is (re)started. When it fires the
  latest value is published and remembered as last sent.

Position intents are absolute actions (e.g. "zero position"). They bypass the
debounce and go out immediately, still subject to the EPSILON check.
"""
import json
import logging
import threading
from typing import Dict, Optional, Tuple

from picar_helper import clamp, within_epsilon
from picar_link.ConnectionManager import ConnectionManager
from picar_link.dataclasses import IntentKind
from picar_link.Scheduler import Scheduler, TimerHandle
from picar_link.State import LinkState

Values = Tuple[float, ...]


class IntentChannel:
    """Per-kind memory: what went out last and what is waiting to go out."""

    def __init__(self, kind: IntentKind) -> None:
        self.kind = kind
        self.last_sent: Optional[Values] = None
        self.pending: Optional[Values] = None
        self.timer: Optional[TimerHandle] = None

    def cancel(self) -> None:
        if self.timer:
            self.timer.cancel()

        self.timer = None
        self.pending = None


class ControlPublisher:
    EPSILON = 0.01
    DEBOUNCE_MS = 50
    QOS = 2
    PAN_TILT_SCALE = 90.0
    POSITION_LIMIT = 500

    def __init__(
        self,
        connection: ConnectionManager,
        scheduler: Scheduler,
        topic: str,
        epsilon: float = EPSILON,
        debounce_ms: int = DEBOUNCE_MS,
        pan_tilt_scale: float = PAN_TILT_SCALE,
        position_limit: int = POSITION_LIMIT
    ) -> None:
        self.connection = connection
        self.scheduler = scheduler
        self.topic = topic
        self.epsilon = epsilon
        self.debounce = debounce_ms / 1000
        self.pan_tilt_scale = pan_tilt_scale
        self.position_limit = position_limit

        self._lock = threading.Lock()
        self._channels: Dict[IntentKind, IntentChannel] = {
            kind: IntentChannel(kind) for kind in IntentKind
        }

        self.published = 0

    def start(self) -> None:
        self.connection.on(LinkState.CONNECTED, self.reset)
        self.connection.on(LinkState.DISCONNECTED, self.cancel_pending)

    def stop(self) -> None:
        self.cancel_pending()

    def last_sent(self, kind: IntentKind) -> Optional[Values]:
        with self._lock:
            return self._channels[kind].last_sent

    def publish_drive(self, speed: float, turn: float) -> None:
        values = (clamp(speed, -1, 1), clamp(turn, -1, 1))
        self._submit(IntentKind.DRIVE, values)

    def publish_pan_tilt(self, pan: float, tilt: float) -> None:
        values = (clamp(pan, -1, 1), clamp(tilt, -1, 1))
        self._submit(IntentKind.PAN_TILT, values)

    def normalize_position(self, target: float) -> int:
        """The position actually sent for a target: rounded and limited."""
        return round(clamp(target, -self.position_limit, self.position_limit))

    def publish_position(self, target: float) -> None:
        position = self.normalize_position(target)
        self._submit(IntentKind.POSITION, (position,), immediate=True)

    def zero_position(self) -> None:
        self.publish_position(0)

    def reset(self) -> None:
        """
        Forget what was sent. Called on every new connection, the robot might
        not have seen our last values.
        """
        with self._lock:
            for channel in self._channels.values():
                channel.cancel()
                channel.last_sent = None

    def cancel_pending(self) -> None:
        with self._lock:
            for channel in self._channels.values():
                channel.cancel()

    def _submit(self, kind: IntentKind, values: Values, immediate: bool = False) -> None:
        if not self.connection.is_connected():
            return

        with self._lock:
            channel = self._channels[kind]

            if within_epsilon(values, channel.last_sent, self.epsilon):
                channel.cancel()
                return

            if immediate:
                channel.cancel()
            else:
                if channel.timer:
                    channel.timer.cancel()

                channel.pending = values
                handle = self.scheduler.call_later(
                    self.debounce,
                    lambda: self._flush(channel, handle),
                    name=f"debounce-{kind.value}"
                )
                channel.timer = handle
                return

        self._send(channel, values)

    def _flush(self, channel: IntentChannel, handle: TimerHandle) -> None:
        with self._lock:
            if channel.timer is not handle:
                return

            values = channel.pending
            channel.pending = None
            channel.timer = None

        if values is not None:
            self._send(channel, values)

    def _send(self, channel: IntentChannel, values: Values) -> None:
        payload = self._encode(channel.kind, values)
        if self.connection.publish(self.topic, payload, self.QOS):
            with self._lock:
                channel.last_sent = values
                self.published += 1

            logging.debug(f"Published {channel.kind.value} control: {payload!r}")
        else:
            logging.debug(f"Dropped {channel.kind.value} control, publish failed")

    def _encode(self, kind: IntentKind, values: Values) -> bytes:
        if kind == IntentKind.DRIVE:
            speed, turn = values
            message = {"speed": round(speed, 2), "turn": round(turn, 2)}

        elif kind == IntentKind.PAN_TILT:
            pan, tilt = values
            message = {
                "pan": round(pan * self.pan_tilt_scale, 2),
                "tilt": round(tilt * self.pan_tilt_scale, 2),
            }

        else:
            message = {"command": "set_position", "position": int(values[0])}

        return json.dumps(message).encode("utf-8")
