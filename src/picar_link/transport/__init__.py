from .MqttTransport import MqttTransport

__all__ = [
    "MqttTransport",
]
