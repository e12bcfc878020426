"""MQTT to HomeKit lightbulb bridge."""

__version__ = "1.0.0"
