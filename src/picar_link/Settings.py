from typing import Dict, List, Any
from pathlib import Path
import copy

import tomllib
import tomli_w


class Settings:
    DEFAULTS: Dict[str, Any] = {
        "broker": {
            "host": "192.168.1.167",
            "port": 1883,
            "keep_alive": 20,
            "client_id_prefix": "picar_client",
        },
        "topics": {
            "control_request": "picar/control_request",
            "status_request": "picar/status_request",
            "status_response": "picar/status_response",
        },
        "video": {
            "enabled": True,
            "url": "http://192.168.1.167:9000/mjpg",
            "format": "mpjpeg",
        },
        "timing": {
            "connect_timeout": 5.0,
            "connect_settle_delay": 0.5,
            "reconnect_delay": 10.0,
            "supervise_interval": 3.0,
            "status_poll_interval": 2.0,
            "status_timeout": 1.0,
            "video_check_interval": 2.0,
            "video_stall_threshold": 3.0,
            "video_reconnect_cooldown": 5.0,
            "video_recent_frame_window": 2.0,
            "video_max_retries": 3,
            "video_backoff": 5.0,
        },
        "control": {
            "epsilon": 0.01,
            "debounce_ms": 50,
            "pan_tilt_scale": 90.0,
            "position_limit": 500,
        },
        "gamepad": {
            "enabled": False,
            "poll_hz": 60,
            "drive_x": 0,
            "drive_y": 1,
            "pan": 3,
            "tilt": 4,
            "zero_button": 0,
            "deadzone": 0.05,
        },
    }

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self.settings = {}
        self.load()

    def load(self) -> None:
        if self.path.exists():
            with self.path.open("rb") as file:
                loaded = tomllib.load(file)
                self.settings = self._merge(copy.deepcopy(self.DEFAULTS), loaded)
        else:
            self.settings = copy.deepcopy(self.DEFAULTS)

    def save(self) -> None:
        serialized = self._remove_none(self.settings)
        with self.path.open("wb") as f:
            f.write(tomli_w.dumps(serialized).encode("utf-8"))

    def get(self, key: str, default: Any = None) -> Any:
        return self.settings.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.settings[key] = value

    def _merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        for key, value in override.items():
            if (
                key in base
                and isinstance(base[key], dict)
                and isinstance(value, dict)
            ):
                base[key] = self._merge(base[key], value)
            else:
                base[key] = value
        return base

    def _remove_none(self, obj: object) -> Dict[str, Any] | List[Any] | object:
        if isinstance(obj, dict):
            return {k: self._remove_none(v) for k, v in obj.items() if v is not None}
        elif isinstance(obj, list):
            return [self._remove_none(v) for v in obj if v is not None]
        else:
            return obj
