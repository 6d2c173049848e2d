"""Core dataclasses for picar_link."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class BatteryLevel(Enum):
    STOPPED = "stopped"
    LOW = "low"
    GOOD = "good"


class IntentKind(Enum):
    DRIVE = "drive"
    PAN_TILT = "pan_tilt"
    POSITION = "position"


class LivenessPhase(Enum):
    LIVE = "live"
    STALLED = "stalled"


LOW_BATTERY_VOLTAGE = 7.5


@dataclass(frozen=True)
class SubsystemFlags:
    """Subsystem status flags reported under 'mock_status'."""
    gpio: bool = False
    i2c: bool = False
    adc: bool = False
    camera: bool = False


@dataclass(frozen=True)
class StatusUpdate:
    """
    A fully validated status response. Optional fields are None when absent
    from the payload, subsystem entries are None when not reported.
    """
    battery_voltage: float
    distance: Optional[float] = None
    position: Optional[float] = None
    gpio: Optional[bool] = None
    i2c: Optional[bool] = None
    adc: Optional[bool] = None
    camera: Optional[bool] = None
    has_mock_status: bool = False

    @property
    def camera_reported(self) -> bool:
        return self.camera is not None


@dataclass(frozen=True)
class RobotSnapshot:
    """Consistent view of SharedState at one point in time."""
    battery_voltage: float = 0.0
    position: float = 0.0
    target_position: float = 0.0
    distance: float = 0.0
    is_running: bool = False
    subsystems: SubsystemFlags = field(default_factory=SubsystemFlags)
    is_video_available: bool = False
    is_video_stalled: bool = False
    last_video_frame_at: Optional[float] = None
    video_url: str = ""
    video_width: int = 320
    video_height: int = 240
    has_detected_resolution: bool = False

    @property
    def battery_level(self) -> BatteryLevel:
        if self.battery_voltage <= 0:
            return BatteryLevel.STOPPED

        if self.battery_voltage <= LOW_BATTERY_VOLTAGE:
            return BatteryLevel.LOW

        return BatteryLevel.GOOD

    @property
    def video_resolution(self) -> Tuple[int, int]:
        return (self.video_width, self.video_height)
