"""
StatusPoller asks the robot for its status in a fixed interval.

There is only ever one responder, so requests carry no correlation id: a
response on the status topic always belongs to the one outstanding request.
Issuing a new request cancels and replaces the pending timeout, so at most
one timeout is armed at any time.

No response in time is the authoritative signal that the robot is stopped,
there is no distinction between "broker unreachable" and "robot powered off"
at this layer. For the same reason losing the broker session marks the robot
stopped right away, no response can arrive until the session is back.
"""
import json
import logging
import threading
from typing import Optional

from picar_helper.exceptions import StatusParseError
from picar_link.ConnectionManager import ConnectionManager
from picar_link.Scheduler import Scheduler, TimerHandle
from picar_link.SharedState import SharedState
from picar_link.State import LinkState
from picar_link.TelemetryParser import parse_status


class StatusPoller:
    POLL_INTERVAL = 2.0
    RESPONSE_TIMEOUT = 1.0
    REQUEST_QOS = 2
    RESPONSE_QOS = 0

    def __init__(
        self,
        connection: ConnectionManager,
        state: SharedState,
        scheduler: Scheduler,
        request_topic: str,
        response_topic: str,
        poll_interval: float = POLL_INTERVAL,
        response_timeout: float = RESPONSE_TIMEOUT
    ) -> None:
        self.connection = connection
        self.state = state
        self.scheduler = scheduler
        self.request_topic = request_topic
        self.response_topic = response_topic
        self.poll_interval = poll_interval
        self.response_timeout = response_timeout

        self._lock = threading.Lock()
        self._poll_handle: Optional[TimerHandle] = None
        self._timeout_handle: Optional[TimerHandle] = None

        self._payload = json.dumps({"command": "status"}).encode("utf-8")

        self.requests_sent = 0
        self.responses_received = 0
        self.timeouts = 0

    @property
    def has_pending_timeout(self) -> bool:
        with self._lock:
            return self._timeout_handle is not None and self._timeout_handle.active

    def start(self) -> None:
        self.connection.subscribe(self.response_topic, self.handle_response, qos=self.RESPONSE_QOS)
        self.connection.on(LinkState.CONNECTED, self.request_status)
        self.connection.on(LinkState.DISCONNECTED, self.handle_disconnected)
        self._poll_handle = self.scheduler.call_every(
            self.poll_interval,
            self.tick,
            name="status-poll"
        )

    def stop(self) -> None:
        with self._lock:
            for handle in (self._poll_handle, self._timeout_handle):
                if handle:
                    handle.cancel()

            self._poll_handle = None
            self._timeout_handle = None

    def tick(self) -> None:
        if not self.connection.is_connected():
            logging.debug("Not connected, asking for a connection instead of polling")
            self.connection.ensure_connected()
            return

        self.request_status()

    def request_status(self) -> None:
        logging.debug("Requesting robot status...")
        if not self.connection.publish(self.request_topic, self._payload, self.REQUEST_QOS):
            logging.debug("Status request could not be published")

        with self._lock:
            if self._timeout_handle:
                self._timeout_handle.cancel()

            handle = self.scheduler.call_later(
                self.response_timeout,
                lambda: self._handle_timeout(handle),
                name="status-timeout"
            )
            self._timeout_handle = handle
            self.requests_sent += 1

    def handle_response(self, topic: str, payload: bytes) -> None:
        with self._lock:
            if self._timeout_handle:
                self._timeout_handle.cancel()
                self._timeout_handle = None
            self.responses_received += 1

        logging.debug(f"Received status response: {payload!r}")

        try:
            update = parse_status(payload)
        except StatusParseError as e:
            logging.warning(f"Failed to parse status response: {e}")
            return

        self.state.apply_status(update)

    def handle_disconnected(self) -> None:
        with self._lock:
            if self._timeout_handle:
                self._timeout_handle.cancel()
                self._timeout_handle = None

        logging.warning("Broker session lost, robot status unknown")
        self.state.force_stopped()

    def _handle_timeout(self, handle: TimerHandle) -> None:
        with self._lock:
            # Replaced or answered in the meantime
            if handle is not self._timeout_handle:
                return

            self._timeout_handle = None
            self.timeouts += 1

        logging.warning("No status response received, connection may be lost")
        self.state.force_stopped()
