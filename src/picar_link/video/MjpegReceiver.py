"""
PyAV based receiver for the robot's MJPEG stream.

The receiver owns the actual stream connection. It reports every decoded
frame through on_frame (that is what the liveness monitor listens to) and the
stream resolution through on_resolution whenever it changes.

reconnect() does not tear the container down from the outside, the decode
loop notices the request on the next frame (or when the read timeout hits on
a dead stream) and re-opens the stream itself.

NOTE: ffmpeg names the multipart HTTP MJPEG demuxer "mpjpeg", plain "mjpeg"
      only works for raw concatenated JPEGs.
"""
import logging
import threading
import time
from typing import Any, Callable, Optional, Tuple

import av
from av.error import FFmpegError
import numpy as np
import numpy.typing as npt


class MjpegReceiver(threading.Thread):
    def __init__(
        self,
        url: str,
        on_frame: Callable[[], None],
        on_resolution: Optional[Callable[[int, int], None]] = None,
        stream_format: Optional[str] = "mpjpeg",
        open_timeout: float = 5.0,
        read_timeout: float = 3.0,
        retry_delay: float = 0.5,
        log_interval: int = 10
    ) -> None:
        super().__init__(daemon=True, name="mjpeg-receiver")

        self.url = url
        self.on_frame = on_frame
        self.on_resolution = on_resolution
        self.stream_format = stream_format
        self.open_timeout = open_timeout
        self.read_timeout = read_timeout
        self.retry_delay = retry_delay
        self.log_interval = log_interval

        self.running = threading.Event()
        self.reconnect_requested = threading.Event()

        self.frame_lock = threading.Lock()
        self.frame: Optional[npt.NDArray[np.uint8]] = None
        self.resolution: Optional[Tuple[int, int]] = None

        self.container: Optional[Any] = None
        self.container_options = {
            "fflags": "nobuffer",
            "analyzeduration": "0",
            "probesize": "32768",
        }

        self.open_count = 0
        self.decoded_frame_count = 0
        self.last_log_time = 0.0

    def set_url(self, url: str) -> None:
        if url and url != self.url:
            logging.info(f"Video URL changed to {url}")
            self.url = url
            self.reconnect()

    def reconnect(self) -> None:
        logging.info("Video reconnect requested")
        self.reconnect_requested.set()

    def stop(self) -> None:
        self.running.clear()
        self.reconnect_requested.set()

    def get_frame(self) -> Optional[npt.NDArray[np.uint8]]:
        with self.frame_lock:
            return self.frame

    def run(self) -> None:
        self.running.set()

        try:
            self._main_loop()

        except Exception as e:
            logging.exception(f"Error in {self.__class__.__name__}: {e}")

        finally:
            self._close()

    def _main_loop(self) -> None:
        while self.running.is_set():
            self.reconnect_requested.clear()

            self.container = self._open()
            if not self.container:
                # Wait for the retry delay, but wake up early on stop
                self.reconnect_requested.wait(self.retry_delay)
                continue

            frames = 0
            try:
                frames = self._decode()

            except (FFmpegError, OSError) as e:
                logging.warning(f"Stream decode error: {e}")

            finally:
                self._close()

            # Server accepted and hung up right away, do not hammer it
            if frames == 0:
                self.reconnect_requested.wait(self.retry_delay)

    def _open(self) -> Optional[Any]:
        try:
            start = time.monotonic()
            container = av.open(
                self.url,
                format=self.stream_format,
                options=self.container_options,
                timeout=(self.open_timeout, self.read_timeout)
            )
            self.open_count += 1
            logging.info(f"Video stream opened in {time.monotonic() - start:.3f}s")

            return container

        except (FFmpegError, OSError) as e:
            logging.warning(f"Opening video stream {self.url} failed: {e}")
            return None

    def _decode(self) -> int:
        """Decode until the stream ends or a reconnect is due, returns the frame count."""
        stream = self.container.streams.video[0]
        stream.codec_context.thread_type = "AUTO"
        frames = 0

        for frame in self.container.decode(stream):
            if not self.running.is_set() or self.reconnect_requested.is_set():
                break

            rgb_frame = frame.to_ndarray(format="rgb24")
            with self.frame_lock:
                self.frame = rgb_frame
            self.decoded_frame_count += 1

            resolution = (frame.width, frame.height)
            if resolution != self.resolution:
                self.resolution = resolution
                if self.on_resolution:
                    self.on_resolution(*resolution)

            frames += 1
            self.on_frame()
            self._log_stats_if_needed()

        return frames

    def _close(self) -> None:
        container = self.container
        self.container = None

        if container:
            try:
                container.close()
            except Exception as e:
                logging.warning(f"Container close failed: {e}")

    def _log_stats_if_needed(self) -> None:
        now = time.monotonic()
        if now - self.last_log_time < self.log_interval:
            return

        if self.last_log_time > 0:
            elapsed = now - self.last_log_time
            fps = round(self.decoded_frame_count / elapsed) if elapsed > 0 else 0
            logging.info(
                f"{self.__class__.__name__}: "
                f"frames={self.decoded_frame_count}, "
                f"avg_decoded_fps={fps}, "
                f"opens={self.open_count}"
            )

        self.decoded_frame_count = 0
        self.last_log_time = now
