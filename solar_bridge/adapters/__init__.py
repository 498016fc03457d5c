"""Adapter modules for external integrations."""

from .mqtt import MQTTClient, MQTTConnectionError
from .serial_port import SerialPortOpener, StreamPair, TransportOpener

__all__ = [
    "MQTTClient",
    "MQTTConnectionError",
    "SerialPortOpener",
    "StreamPair",
    "TransportOpener",
]
