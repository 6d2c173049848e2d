class StatusParseError(ValueError):
    """Raised when a status response can not be turned into a StatusUpdate."""
    pass


class TransportError(Exception):
    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Transport {operation} failed: {reason}")
