"""
RobotLink wires the link components together and is the only thing callers
(the CLI, a UI) need to talk to.

All components share one Scheduler, shutdown() cancels every timer they
handed out in one go, so nothing fires after teardown.
"""
import logging
from typing import Any, Callable, Optional

from picar_link.ConnectionManager import ConnectionManager, TransportFactory
from picar_link.ControlPublisher import ControlPublisher
from picar_link.dataclasses import RobotSnapshot
from picar_link.Scheduler import Scheduler
from picar_link.Settings import Settings
from picar_link.SharedState import Listener, SharedState
from picar_link.StatusPoller import StatusPoller
from picar_link.transport import MqttTransport
from picar_link.VideoLivenessMonitor import VideoLivenessMonitor


class RobotLink:
    def __init__(
        self,
        transport_factory: TransportFactory,
        control_topic: str,
        status_request_topic: str,
        status_response_topic: str,
        video_url: str = "",
        scheduler: Optional[Scheduler] = None,
        connection_options: Optional[dict] = None,
        poller_options: Optional[dict] = None,
        publisher_options: Optional[dict] = None,
        monitor_options: Optional[dict] = None
    ) -> None:
        self.scheduler = scheduler or Scheduler()
        self.state = SharedState(video_url=video_url)

        self.connection = ConnectionManager(
            transport_factory,
            self.scheduler,
            **(connection_options or {})
        )
        self.poller = StatusPoller(
            self.connection,
            self.state,
            self.scheduler,
            status_request_topic,
            status_response_topic,
            **(poller_options or {})
        )
        self.publisher = ControlPublisher(
            self.connection,
            self.scheduler,
            control_topic,
            **(publisher_options or {})
        )
        self.monitor = VideoLivenessMonitor(
            self.state,
            self.scheduler,
            reconnect=None,
            **(monitor_options or {})
        )

        self._video_url_handler: Optional[Callable[[str], None]] = None
        self.settings: Optional[Settings] = None
        self.started = False
        self.closed = False

    @classmethod
    def from_settings(cls, settings: Settings, scheduler: Optional[Scheduler] = None) -> "RobotLink":
        broker = settings.get("broker")
        topics = settings.get("topics")
        video = settings.get("video")
        timing = settings.get("timing")
        control = settings.get("control")

        def transport_factory() -> MqttTransport:
            return MqttTransport(
                broker["host"],
                port=broker["port"],
                keep_alive=broker["keep_alive"],
                client_id_prefix=broker["client_id_prefix"],
                will_topic=topics["status_request"]
            )

        link = cls(
            transport_factory,
            control_topic=topics["control_request"],
            status_request_topic=topics["status_request"],
            status_response_topic=topics["status_response"],
            video_url=video["url"],
            scheduler=scheduler,
            connection_options={
                "connect_timeout": timing["connect_timeout"],
                "connect_settle_delay": timing["connect_settle_delay"],
                "reconnect_delay": timing["reconnect_delay"],
                "supervise_interval": timing["supervise_interval"],
            },
            poller_options={
                "poll_interval": timing["status_poll_interval"],
                "response_timeout": timing["status_timeout"],
            },
            publisher_options={
                "epsilon": control["epsilon"],
                "debounce_ms": control["debounce_ms"],
                "pan_tilt_scale": control["pan_tilt_scale"],
                "position_limit": control["position_limit"],
            },
            monitor_options={
                "check_interval": timing["video_check_interval"],
                "stall_threshold": timing["video_stall_threshold"],
                "cooldown": timing["video_reconnect_cooldown"],
                "recent_frame_window": timing["video_recent_frame_window"],
                "max_retries": timing["video_max_retries"],
                "backoff": timing["video_backoff"],
            }
        )
        link.settings = settings

        return link

    def start(self) -> None:
        # Shutdown closed the scheduler for good
        if self.closed:
            raise RuntimeError("RobotLink can not be restarted after shutdown")

        if self.started:
            return

        self.started = True
        self.publisher.start()
        self.poller.start()
        self.monitor.start()
        self.connection.start()

    def shutdown(self) -> None:
        logging.info("Shutting down robot link...")
        self.monitor.stop()
        self.poller.stop()
        self.publisher.stop()
        self.scheduler.cancel_all()
        self.connection.stop()
        self.started = False
        self.closed = True

    def is_connected(self) -> bool:
        return self.connection.is_connected()

    def snapshot(self) -> RobotSnapshot:
        return self.state.snapshot()

    def add_listener(self, listener: Listener) -> None:
        self.state.add_listener(listener)

    def publish_drive(self, speed: float, turn: float) -> None:
        self.publisher.publish_drive(speed, turn)

    def publish_pan_tilt(self, pan: float, tilt: float) -> None:
        self.publisher.publish_pan_tilt(pan, tilt)

    def publish_position(self, target: float) -> None:
        position = self.publisher.normalize_position(target)
        self.state.set_target_position(position)
        self.publisher.publish_position(position)

    def zero_position(self) -> None:
        self.publish_position(0)

    def set_video_reconnect(self, reconnect: Callable[[], None]) -> None:
        self.monitor.reconnect = reconnect

    def set_video_url_handler(self, handler: Callable[[str], None]) -> None:
        self._video_url_handler = handler

    def set_video_url(self, url: str) -> None:
        """Switch the video stream, the new URL is kept in the settings file."""
        if not self.state.update_video_url(url):
            return

        if self.settings:
            video = dict(self.settings.get("video"))
            video["url"] = url
            self.settings.set("video", video)
            try:
                self.settings.save()
            except OSError as e:
                logging.warning(f"Saving video URL to settings failed: {e}")

        if self._video_url_handler:
            self._video_url_handler(url)

    def on_frame_received(self, *_: Any) -> None:
        self.monitor.on_frame_received()

    def on_video_resolution(self, width: int, height: int) -> None:
        self.state.update_video_resolution(width, height)
