from .GamepadInput import GamepadInput

__all__ = [
    "GamepadInput",
]
