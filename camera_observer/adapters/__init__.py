"""Adapter modules for external integrations."""

from .mqtt import MQTTClient, MQTTConnectionError
from .smartthings import Device, DeviceCommandError, SmartThingsClient

__all__ = [
    "Device",
    "DeviceCommandError",
    "MQTTClient",
    "MQTTConnectionError",
    "SmartThingsClient",
]
