from typing import Callable

# Seconds on the monotonic clock
Timestamp = float

Handler = Callable[[str, bytes], None]
