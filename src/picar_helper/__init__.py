from picar_helper.helper import (
  clamp,
  within_epsilon,
)
from picar_helper.custom_types import (
  Handler,
  Timestamp,
)

__all__ = [
  "clamp",
  "within_epsilon",
  "Handler",
  "Timestamp",
]
