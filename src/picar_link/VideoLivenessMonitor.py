"""
VideoLivenessMonitor watches an independently delivered video feed and drives
its recovery when it stalls.

Frames come in through on_frame_received(), reconnects go out through the
reconnect callback. Nothing in here knows about sockets, decoders or
rendering.

The feed is either LIVE or STALLED. A periodic check (only while the robot is
running, video is meaningless otherwise) compares the time since the last
frame against the stall threshold:

* LIVE -> STALLED when the feed has been silent for longer than the
  threshold. This happens once per silent interval and degrades the shared
  flags (stalled, not available).
* A forced reconnect is only requested when
  - the feed has been silent for more than twice the threshold, so brief
    hiccups do not cause reconnects,
  - the previous forced reconnect is at least COOLDOWN seconds ago,
  - no frame arrived within the last RECENT_FRAME_WINDOW seconds, and
  - no backoff pause is active.
* After MAX_RETRIES consecutive reconnects stall-driven reconnects are paused
  for BACKOFF seconds on top of the cooldown, then the retry counter starts
  over.

The first frame after a stall moves the feed back to LIVE.
"""
import logging
import threading
from typing import Callable, Optional

from picar_helper import Timestamp
from picar_link.dataclasses import LivenessPhase, RobotSnapshot
from picar_link.Scheduler import Scheduler, TimerHandle
from picar_link.SharedState import SharedState


class VideoLivenessMonitor:
    CHECK_INTERVAL = 2.0
    STALL_THRESHOLD = 3.0
    COOLDOWN = 5.0
    RECENT_FRAME_WINDOW = 2.0
    MAX_RETRIES = 3
    BACKOFF = 5.0

    def __init__(
        self,
        state: SharedState,
        scheduler: Scheduler,
        reconnect: Optional[Callable[[], None]] = None,
        check_interval: float = CHECK_INTERVAL,
        stall_threshold: float = STALL_THRESHOLD,
        cooldown: float = COOLDOWN,
        recent_frame_window: float = RECENT_FRAME_WINDOW,
        max_retries: int = MAX_RETRIES,
        backoff: float = BACKOFF
    ) -> None:
        self.state = state
        self.scheduler = scheduler
        self.reconnect = reconnect
        self.check_interval = check_interval
        self.stall_threshold = stall_threshold
        self.cooldown = cooldown
        self.recent_frame_window = recent_frame_window
        self.max_retries = max_retries
        self.backoff = backoff

        self._lock = threading.Lock()
        self._check_handle: Optional[TimerHandle] = None

        self.phase = LivenessPhase.LIVE
        self.last_frame_at: Optional[Timestamp] = None
        self.running_since: Optional[Timestamp] = None
        self.last_reconnect_at: Optional[float] = None
        self.backoff_until: Optional[float] = None
        self.retry_count = 0

        self.stalls = 0
        self.reconnects = 0

    def start(self) -> None:
        self.state.add_listener(self._on_state_change)
        if self.state.is_running:
            with self._lock:
                self.running_since = self.scheduler.now()

        self._check_handle = self.scheduler.call_every(
            self.check_interval,
            self.check,
            name="video-liveness"
        )

    def stop(self) -> None:
        self.state.remove_listener(self._on_state_change)
        if self._check_handle:
            self._check_handle.cancel()
            self._check_handle = None

    @property
    def stalled(self) -> bool:
        with self._lock:
            return self.phase == LivenessPhase.STALLED

    def on_frame_received(self) -> None:
        now = self.scheduler.now()

        with self._lock:
            self.last_frame_at = now
            recovered = self.phase == LivenessPhase.STALLED
            self.phase = LivenessPhase.LIVE

        self.state.mark_video_frame(now)

        if recovered:
            logging.info("Video feed recovered")
            self.state.update_video(available=True, stalled=False)

        elif not self.state.is_video_available and self.state.is_running:
            self.state.update_video(available=True)

    def check_stalled(self, threshold: Optional[float] = None) -> bool:
        """True if no frame arrived within threshold seconds (or ever)."""
        if threshold is None:
            threshold = self.stall_threshold

        with self._lock:
            if self.last_frame_at is None:
                return True

            return self.scheduler.now() - self.last_frame_at > threshold

    def check(self, now: Optional[float] = None) -> bool:
        """
        Periodic stall check, returns True while the feed is stalled.
        """
        if now is None:
            now = self.scheduler.now()

        if not self.state.is_running:
            return False

        declare_stall = False
        force_reconnect = False

        with self._lock:
            if self.running_since is None:
                self.running_since = now

            reference = self.last_frame_at
            if reference is None or reference < self.running_since:
                reference = self.running_since
            silence = now - reference

            if self.phase == LivenessPhase.LIVE:
                if silence > self.stall_threshold:
                    self.phase = LivenessPhase.STALLED
                    self.stalls += 1
                    declare_stall = True

                elif (
                    self.retry_count > 0 and
                    self.last_reconnect_at is not None and
                    now - self.last_reconnect_at >= self.cooldown
                ):
                    logging.debug("Video stable after reconnect, resetting retry count")
                    self.retry_count = 0

            if self.phase == LivenessPhase.STALLED:
                force_reconnect = self._should_reconnect(now, silence)
                if force_reconnect:
                    self.last_reconnect_at = now
                    self.retry_count += 1
                    self.reconnects += 1

                    if self.retry_count >= self.max_retries:
                        # The pause starts once the cooldown is over
                        self.backoff_until = now + self.cooldown + self.backoff
                        logging.warning(
                            f"Video reconnect attempted {self.retry_count} times, "
                            f"pausing reconnects for {self.backoff}s"
                        )

            stalled = self.phase == LivenessPhase.STALLED
            retry_count = self.retry_count

        if declare_stall:
            logging.warning(f"Video stalled, no frame for {silence:.1f}s")
            self.state.update_video(available=False, stalled=True)

        if force_reconnect:
            logging.info(f"Forcing video reconnect (attempt {retry_count})")
            self._request_reconnect()

        return stalled

    def _should_reconnect(self, now: float, silence: float) -> bool:
        """Caller must hold the lock."""
        if self.backoff_until is not None:
            if now < self.backoff_until:
                return False

            logging.info("Video reconnect backoff over, resuming monitoring")
            self.backoff_until = None
            self.retry_count = 0

        if silence <= 2 * self.stall_threshold:
            return False

        if (
            self.last_reconnect_at is not None and
            now - self.last_reconnect_at < self.cooldown
        ):
            return False

        if (
            self.last_frame_at is not None and
            now - self.last_frame_at < self.recent_frame_window
        ):
            return False

        return True

    def _request_reconnect(self) -> None:
        if not self.reconnect:
            logging.debug("No video reconnect callback registered")
            return

        try:
            self.reconnect()
        except Exception as e:
            logging.exception(f"Video reconnect request failed: {e}")

    def _on_state_change(self, previous: RobotSnapshot, current: RobotSnapshot) -> None:
        if previous.is_running == current.is_running:
            return

        if current.is_running:
            with self._lock:
                self.running_since = self.scheduler.now()
            return

        with self._lock:
            self.phase = LivenessPhase.LIVE
            self.running_since = None
            self.backoff_until = None
            self.retry_count = 0

        # SharedState already dropped availability, the stall flag is ours
        self.state.update_video(available=False, stalled=False)
