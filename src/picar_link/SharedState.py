"""
SharedState holds the one canonical snapshot of robot telemetry and the
flags derived from it.

Thread-safety: every mutation happens under a single lock, so timers running
concurrently never interleave partial updates of the derived flags. Listeners
are called after the lock is released, once per mutation that actually
changed something, with an immutable RobotSnapshot taken inside the lock.

Invariants enforced here:
* is_running == (battery_voltage > 0), recomputed on every telemetry update
* is_video_available is False whenever is_running is False
"""
from dataclasses import replace
import logging
import threading
from typing import Callable, List, Optional

from picar_helper import Timestamp
from picar_link.dataclasses import RobotSnapshot, StatusUpdate, SubsystemFlags

Listener = Callable[[RobotSnapshot, RobotSnapshot], None]


class SharedState:
    def __init__(self, video_url: str = "") -> None:
        self._lock = threading.Lock()
        self._snapshot = RobotSnapshot(video_url=video_url)
        self._listeners: List[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        """Listeners are called with (previous, current) snapshots."""
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def snapshot(self) -> RobotSnapshot:
        with self._lock:
            return self._snapshot

    @property
    def is_running(self) -> bool:
        return self.snapshot().is_running

    @property
    def is_video_available(self) -> bool:
        return self.snapshot().is_video_available

    @property
    def is_video_stalled(self) -> bool:
        return self.snapshot().is_video_stalled

    def apply_status(self, update: StatusUpdate) -> bool:
        """
        Apply a parsed status response. Subsystem flags are sparse, only the
        reported ones are overwritten.

        A reported camera while the robot is running makes video available,
        unless the video is currently stalled.
        """
        def mutate(current: RobotSnapshot) -> RobotSnapshot:
            flags = current.subsystems
            if update.has_mock_status:
                flags = SubsystemFlags(
                    gpio=flags.gpio if update.gpio is None else update.gpio,
                    i2c=flags.i2c if update.i2c is None else update.i2c,
                    adc=flags.adc if update.adc is None else update.adc,
                    camera=flags.camera if update.camera is None else update.camera,
                )

            new = replace(
                current,
                battery_voltage=update.battery_voltage,
                distance=current.distance if update.distance is None else update.distance,
                position=current.position if update.position is None else update.position,
                subsystems=flags,
            )

            if (
                update.camera_reported and
                update.battery_voltage > 0 and
                not new.is_video_stalled
            ):
                new = replace(new, is_video_available=True)

            return new

        return self._update(mutate)

    def force_stopped(self) -> bool:
        """No status response in time, the robot is considered stopped."""
        return self._update(lambda current: replace(current, battery_voltage=0.0))

    def set_target_position(self, target: float) -> bool:
        return self._update(lambda current: replace(current, target_position=float(target)))

    def update_video(
        self,
        available: Optional[bool] = None,
        stalled: Optional[bool] = None
    ) -> bool:
        """
        Change the video flags in one go, so both changes end up in a single
        notification. Availability can not be raised while not running.
        """
        def mutate(current: RobotSnapshot) -> RobotSnapshot:
            new = current
            if stalled is not None:
                new = replace(new, is_video_stalled=stalled)

            if available is not None:
                if available and not current.is_running:
                    logging.debug("Ignoring video availability while robot is not running")
                else:
                    new = replace(new, is_video_available=available)

            return new

        return self._update(mutate)

    def mark_video_frame(self, timestamp: Timestamp) -> None:
        """
        Record the arrival time of the latest video frame. This happens for
        every frame, so it does not notify listeners.
        """
        with self._lock:
            self._snapshot = replace(self._snapshot, last_video_frame_at=timestamp)

    def update_video_resolution(self, width: int, height: int) -> bool:
        def mutate(current: RobotSnapshot) -> RobotSnapshot:
            if width <= 0 or height <= 0:
                return current

            if (width, height) == current.video_resolution:
                return current

            logging.info(
                f"Updating video resolution from {current.video_width}x{current.video_height} "
                f"to {width}x{height}"
            )
            return replace(
                current,
                video_width=width,
                video_height=height,
                has_detected_resolution=True
            )

        return self._update(mutate)

    def update_video_url(self, url: str) -> bool:
        def mutate(current: RobotSnapshot) -> RobotSnapshot:
            if not url or url == current.video_url:
                return current

            logging.info(f"Updating video URL from {current.video_url} to {url}")
            return replace(current, video_url=url)

        return self._update(mutate)

    def _update(self, mutate: Callable[[RobotSnapshot], RobotSnapshot]) -> bool:
        with self._lock:
            previous = self._snapshot
            new = mutate(previous)

            # Derived flags are never taken from the mutation itself
            is_running = new.battery_voltage > 0
            new = replace(
                new,
                is_running=is_running,
                is_video_available=new.is_video_available and is_running
            )

            if new == previous:
                return False

            self._snapshot = new
            listeners = list(self._listeners)

        if previous.is_running != new.is_running:
            logging.info(f"Robot running state changed: {previous.is_running} -> {new.is_running}")

        if previous.is_video_available != new.is_video_available:
            logging.info(f"Video availability changed to: {new.is_video_available}")

        for listener in listeners:
            try:
                listener(previous, new)
            except Exception as e:
                logging.exception(f"State listener failed: {e}")

        return True
