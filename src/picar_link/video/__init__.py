from .MjpegReceiver import MjpegReceiver

__all__ = [
    "MjpegReceiver",
]
