from .ConnectionManager import ConnectionManager
from .ControlPublisher import ControlPublisher
from .RobotLink import RobotLink
from .Scheduler import Scheduler, TimerHandle
from .Settings import Settings
from .SharedState import SharedState
from .State import LinkState
from .StatusPoller import StatusPoller
from .TelemetryParser import parse_status
from .VideoLivenessMonitor import VideoLivenessMonitor

__all__ = [
    "ConnectionManager",
    "ControlPublisher",
    "LinkState",
    "RobotLink",
    "Scheduler",
    "Settings",
    "SharedState",
    "StatusPoller",
    "TimerHandle",
    "VideoLivenessMonitor",
    "parse_status",
]
