"""
ConnectionManager owns the lifecycle of the broker session.

The session can only progress through its states in this order:

1. DISCONNECTED: No session. A connect attempt is only ever started from
   here, so there can never be two attempts at the same time.
2. CONNECTING: A fresh transport session has been created and is connecting
   in the background. If it does not report success within the connect
   timeout it is torn down and we are back to DISCONNECTED.
3. CONNECTED: The session is up, subscriptions have been applied.

An unexpected disconnect while CONNECTED schedules a reconnect after
RECONNECT_DELAY. This delay is longer than the status poll period on purpose,
so that pollers asking for a connection do not cause connection storms. A
supervising timer additionally picks up a DISCONNECTED session that nobody
cares about anymore (for example after a missed event).

Failures are logged and retried forever, nothing here is fatal.
"""
from collections import defaultdict
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from picar_helper import Handler
from picar_link.Scheduler import Scheduler, TimerHandle
from picar_link.State import LinkState

TransportFactory = Callable[[], Any]


class ConnectionManager:
    CONNECT_TIMEOUT = 5.0
    CONNECT_SETTLE_DELAY = 0.5
    RECONNECT_DELAY = 10.0
    SUPERVISE_INTERVAL = 3.0

    def __init__(
        self,
        transport_factory: TransportFactory,
        scheduler: Scheduler,
        connect_timeout: float = CONNECT_TIMEOUT,
        connect_settle_delay: float = CONNECT_SETTLE_DELAY,
        reconnect_delay: float = RECONNECT_DELAY,
        supervise_interval: float = SUPERVISE_INTERVAL
    ) -> None:
        self.transport_factory = transport_factory
        self.scheduler = scheduler
        self.connect_timeout = connect_timeout
        self.connect_settle_delay = connect_settle_delay
        self.reconnect_delay = reconnect_delay
        self.supervise_interval = supervise_interval

        self._lock = threading.Lock()
        self._state = LinkState.DISCONNECTED
        self._session: Optional[Any] = None

        self.state_handlers: Dict[LinkState, List[Callable[[], None]]] = defaultdict(list)
        self.subscriptions: Dict[str, Tuple[int, List[Handler]]] = {}

        self._timeout_handle: Optional[TimerHandle] = None
        self._reconnect_handle: Optional[TimerHandle] = None
        self._supervisor_handle: Optional[TimerHandle] = None

        self.connect_attempts = 0

    @property
    def state(self) -> LinkState:
        with self._lock:
            return self._state

    def is_connected(self) -> bool:
        return self.state == LinkState.CONNECTED

    def is_reconnect_pending(self) -> bool:
        with self._lock:
            return self._reconnect_handle is not None and self._reconnect_handle.active

    def on(self, state: LinkState, handler: Callable[[], None]) -> None:
        self.state_handlers[state].append(handler)

    def subscribe(self, topic: str, handler: Handler, qos: int = 0) -> None:
        """
        Register a handler for a topic. Subscriptions are applied to every new
        session once it is connected.
        """
        with self._lock:
            _, handlers = self.subscriptions.get(topic, (qos, []))
            handlers.append(handler)
            self.subscriptions[topic] = (qos, handlers)
            session = self._session if self._state == LinkState.CONNECTED else None

        if session:
            self._apply_subscription(session, topic, qos)

    def start(self) -> None:
        self._supervisor_handle = self.scheduler.call_every(
            self.supervise_interval,
            self._supervise,
            name="connection-supervisor"
        )
        self.connect()

    def stop(self) -> None:
        with self._lock:
            for handle in (self._timeout_handle, self._reconnect_handle, self._supervisor_handle):
                if handle:
                    handle.cancel()

            self._timeout_handle = None
            self._reconnect_handle = None
            self._supervisor_handle = None

            session = self._session
            self._session = None
            was_disconnected = self._state == LinkState.DISCONNECTED
            self._state = LinkState.DISCONNECTED

        if session:
            self._disconnect_session(session)

        if not was_disconnected:
            self._notify(LinkState.DISCONNECTED)

    def connect(self) -> bool:
        """
        Start a connect attempt. Returns False if the session is not
        DISCONNECTED, in which case nothing happens.
        """
        with self._lock:
            if self._state != LinkState.DISCONNECTED:
                return False

            if self._reconnect_handle:
                self._reconnect_handle.cancel()
                self._reconnect_handle = None

            session = self.transport_factory()
            session.on_connected = lambda: self._handle_connected(session)
            session.on_disconnected = lambda: self._handle_disconnected(session)
            session.on_message = self._dispatch

            self._session = session
            self._state = LinkState.CONNECTING
            self.connect_attempts += 1
            attempt = self.connect_attempts

            self._timeout_handle = self.scheduler.call_later(
                self.connect_timeout,
                lambda: self._handle_connect_timeout(session),
                name="connect-timeout"
            )

        logging.info(f"Attempting to connect to broker (attempt {attempt})...")

        # The transport connect blocks, keep it off the caller's thread
        self.scheduler.call_later(
            self.connect_settle_delay,
            lambda: self._connect_task(session),
            name="connect"
        )

        return True

    def ensure_connected(self) -> bool:
        """
        Connect if nothing else is going on. A scheduled reconnect is left
        alone, so its delay is honored.
        """
        with self._lock:
            idle = (
                self._state == LinkState.DISCONNECTED and
                not (self._reconnect_handle and self._reconnect_handle.active)
            )

        if idle:
            return self.connect()

        return False

    def publish(self, topic: str, payload: bytes, qos: int = 0) -> bool:
        with self._lock:
            if self._state != LinkState.CONNECTED or not self._session:
                return False
            session = self._session

        try:
            session.publish(topic, qos, payload)
            return True

        except Exception as e:
            logging.warning(f"Publish to '{topic}' failed: {e}")
            return False

    def _connect_task(self, session: Any) -> None:
        with self._lock:
            if session is not self._session or self._state != LinkState.CONNECTING:
                return

        try:
            session.connect()

        except Exception as e:
            logging.error(f"Failed to connect to broker: {e}")
            self._handle_connect_failed(session)
            return

        # Timed out or stopped while the connect was blocking
        with self._lock:
            stale = session is not self._session

        if stale:
            logging.debug("Connect returned for a stale session, closing it")
            self._disconnect_session(session)

    def _handle_connected(self, session: Any) -> None:
        with self._lock:
            stale = session is not self._session
            accepted = not stale and self._state == LinkState.CONNECTING

            if accepted:
                if self._timeout_handle:
                    self._timeout_handle.cancel()
                    self._timeout_handle = None

                self._state = LinkState.CONNECTED
                subscriptions = [(topic, qos) for topic, (qos, _) in self.subscriptions.items()]

        if stale:
            # Connected after its attempt was given up, nobody owns it
            logging.debug("Closing late connect from stale session")
            self._disconnect_session(session)

        if not accepted:
            return

        logging.info("Successfully connected to broker")

        for topic, qos in subscriptions:
            self._apply_subscription(session, topic, qos)

        self._notify(LinkState.CONNECTED)

    def _handle_disconnected(self, session: Any) -> None:
        with self._lock:
            if session is not self._session:
                return

            previous = self._state
            if previous == LinkState.DISCONNECTED:
                return

            if self._timeout_handle:
                self._timeout_handle.cancel()
                self._timeout_handle = None

            self._session = None
            self._state = LinkState.DISCONNECTED

            if previous == LinkState.CONNECTED:
                self._reconnect_handle = self.scheduler.call_later(
                    self.reconnect_delay,
                    self._reconnect,
                    name="reconnect"
                )

        if previous == LinkState.CONNECTED:
            logging.warning(f"Broker connection lost, reconnecting in {self.reconnect_delay}s")
            self._notify(LinkState.DISCONNECTED)
        else:
            logging.warning("Connection attempt failed")

    def _handle_connect_timeout(self, session: Any) -> None:
        with self._lock:
            if session is not self._session or self._state != LinkState.CONNECTING:
                return

            self._timeout_handle = None
            self._session = None
            self._state = LinkState.DISCONNECTED

        logging.warning(f"Connection attempt timed out after {self.connect_timeout}s")
        self._disconnect_session(session)

    def _handle_connect_failed(self, session: Any) -> None:
        with self._lock:
            if session is not self._session or self._state != LinkState.CONNECTING:
                return

            if self._timeout_handle:
                self._timeout_handle.cancel()
                self._timeout_handle = None

            self._session = None
            self._state = LinkState.DISCONNECTED

        self._disconnect_session(session)

    def _reconnect(self) -> None:
        with self._lock:
            self._reconnect_handle = None

        self.connect()

    def _supervise(self) -> None:
        if self.ensure_connected():
            logging.info("Supervisor found an idle session, connecting...")

    def _dispatch(self, topic: str, payload: bytes) -> None:
        with self._lock:
            _, handlers = self.subscriptions.get(topic, (0, []))
            handlers = list(handlers)

        for handler in handlers:
            try:
                handler(topic, payload)
            except Exception as e:
                logging.exception(f"Handler for '{topic}' failed: {e}")

    def _apply_subscription(self, session: Any, topic: str, qos: int) -> None:
        try:
            session.subscribe(topic, qos)
            logging.debug(f"Subscribed to '{topic}' (qos={qos})")
        except Exception as e:
            logging.error(f"Subscribing to '{topic}' failed: {e}")

    def _disconnect_session(self, session: Any) -> None:
        try:
            session.disconnect()
        except Exception as e:
            logging.warning(f"Disconnecting session failed: {e}")

    def _notify(self, state: LinkState) -> None:
        logging.debug(f"Link state changed to '{state}'")
        for handler in self.state_handlers[state]:
            try:
                handler()
            except Exception as e:
                logging.exception(f"State handler for '{state}' failed: {e}")
