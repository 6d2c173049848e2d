import argparse
from datetime import datetime
import logging
import signal
import threading
from typing import Optional

from picar_link.dataclasses import RobotSnapshot
from picar_link.input import GamepadInput
from picar_link.RobotLink import RobotLink
from picar_link.Settings import Settings
from picar_link.video import MjpegReceiver


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="PiCar robot link")
    parser.add_argument(
        "--log",
        default="ERROR",
        help="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL). Default is ERROR."
    )
    parser.add_argument(
        "--settings",
        default="settings.toml",
        help="Path to the settings file. Default is settings.toml."
    )
    parser.add_argument(
        "--log-to-file",
        action="store_true",
        help="Save logs to txt file."
    )
    parser.add_argument(
        "--no-video",
        action="store_true",
        help="Do not open the video stream."
    )
    parser.add_argument(
        "--video-url",
        default=None,
        help="Switch to this video stream URL and keep it in the settings file."
    )
    parser.add_argument(
        "--gamepad",
        action="store_true",
        help="Drive with the first connected gamepad."
    )

    return parser.parse_args(argv)


def configure_logging(log: str, log_to_file: bool) -> None:
    level_name = log.upper()
    level = getattr(logging, level_name, None)

    if not isinstance(level, int):
        raise ValueError(f"Invalid log level: {log}")

    log_format = "%(asctime)s - %(levelname)s - %(message)s"
    handlers = [logging.StreamHandler()]

    if log_to_file:
        timestamp = datetime.now().strftime("%Y-%m-%d_%H:%M:%S")
        log_filename = f"{timestamp}.txt"
        handlers.append(logging.FileHandler(log_filename))

    logging.basicConfig(
        level=level,
        format=log_format,
        handlers=handlers
    )


def log_changes(previous: RobotSnapshot, current: RobotSnapshot) -> None:
    logging.info(
        f"Battery: {current.battery_voltage:.2f}V ({current.battery_level.value}), "
        f"distance: {current.distance}, position: {current.position}, "
        f"video: {'stalled' if current.is_video_stalled else current.is_video_available}"
    )


def main(argv: Optional[list] = None) -> None:
    args = parse_args(argv)
    configure_logging(args.log, args.log_to_file)

    # Load settings from file, otherwise use default values if file not available
    settings = Settings(args.settings)
    link = RobotLink.from_settings(settings)
    link.add_listener(log_changes)

    receiver = None
    video = settings.get("video")
    if video["enabled"] and not args.no_video:
        receiver = MjpegReceiver(
            video["url"],
            on_frame=link.on_frame_received,
            on_resolution=link.on_video_resolution,
            stream_format=video["format"]
        )
        link.set_video_reconnect(receiver.reconnect)
        link.set_video_url_handler(receiver.set_url)

    if args.video_url:
        link.set_video_url(args.video_url)

    gamepad = None
    gamepad_settings = settings.get("gamepad")
    if args.gamepad or gamepad_settings["enabled"]:
        mapping = {
            key: value for key, value in gamepad_settings.items()
            if key not in ("enabled", "poll_hz")
        }
        gamepad = GamepadInput(link, mapping, poll_hz=gamepad_settings["poll_hz"])

    stop_event = threading.Event()

    def handle_signal(signum, frame) -> None:
        logging.info(f"Received signal {signum}, stopping...")
        stop_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    link.start()
    if receiver:
        receiver.start()
    if gamepad:
        gamepad.start()

    stop_event.wait()

    if gamepad:
        gamepad.stop()
        gamepad.join(timeout=1)
    if receiver:
        receiver.stop()
        receiver.join(timeout=5)

    link.shutdown()


if __name__ == "__main__":
    main()
