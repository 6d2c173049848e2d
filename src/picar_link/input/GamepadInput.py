"""
GamepadInput polls the first connected gamepad and feeds its sticks into a
RobotLink, once per input frame:

* left stick:  drive (speed = -y, turn = x)
* right stick: pan/tilt
* zero button: zero position

Values are sent every frame on purpose, deduplication and rate limiting is
the ControlPublisher's job.
"""
import logging
import threading
import time
from typing import Any, Dict, Optional

import pygame
from pygame.joystick import JoystickType

from picar_helper import clamp


class GamepadInput(threading.Thread):
    REFRESH_INTERVAL_MS = 1000

    DEFAULT_MAPPING: Dict[str, Any] = {
        "drive_x": 0,
        "drive_y": 1,
        "pan": 3,
        "tilt": 4,
        "zero_button": 0,
        "deadzone": 0.05,
    }

    def __init__(
        self,
        link: Any,
        mapping: Optional[Dict[str, Any]] = None,
        poll_hz: int = 60
    ) -> None:
        super().__init__(daemon=True, name="gamepad-input")
        pygame.init()

        self.link = link
        self.mapping = {**self.DEFAULT_MAPPING, **(mapping or {})}
        self.poll_interval = 1 / poll_hz

        self._gamepad: Optional[JoystickType] = None
        self._button_down = False
        self._stop_event = threading.Event()
        self._last_refresh = 0.0

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                pygame.event.pump()
                self._refresh_gamepad()

                if self._gamepad:
                    self.poll()

            except pygame.error as e:
                logging.warning(f"Gamepad read failed: {e}")
                self._gamepad = None

            self._stop_event.wait(self.poll_interval)

    def stop(self) -> None:
        self._stop_event.set()

    def poll(self) -> None:
        js = self._gamepad
        if not js:
            return

        turn = self._axis(js, "drive_x")
        speed = -self._axis(js, "drive_y")
        self.link.publish_drive(speed, turn)

        pan = self._axis(js, "pan")
        tilt = self._axis(js, "tilt")
        self.link.publish_pan_tilt(pan, tilt)

        button = self.mapping.get("zero_button")
        if button is not None and 0 <= button < js.get_numbuttons():
            pressed = bool(js.get_button(button))

            # Only act on the press, not while held
            if pressed and not self._button_down:
                self.link.zero_position()
            self._button_down = pressed

    def _axis(self, js: JoystickType, name: str) -> float:
        axis = self.mapping.get(name)
        if axis is None or not 0 <= axis < js.get_numaxes():
            return 0.0

        value = clamp(js.get_axis(axis), -1.0, 1.0)
        if abs(value) < self.mapping["deadzone"]:
            return 0.0

        return value

    def _refresh_gamepad(self) -> None:
        if self._gamepad:
            return

        now = time.monotonic() * 1000
        if self._last_refresh and now - self._last_refresh < self.REFRESH_INTERVAL_MS:
            return
        self._last_refresh = now

        if pygame.joystick.get_count() > 0:
            js = pygame.joystick.Joystick(0)
            js.init()
            self._gamepad = js
            logging.info(f"Using gamepad '{js.get_name()}'")
