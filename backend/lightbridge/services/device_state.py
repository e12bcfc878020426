"""
Device state mirror for the bridged lightbulb.

Holds the last-known value of the five lightbulb channels and decides,
from the origin attached to every mutation, which side hears about it:

    REMOTE (MQTT message)   -> write mirror -> push to HomeKit characteristic
    LOCAL  (HomeKit SET)    -> write mirror -> publish on the channel's set topic

A mutation is never sent back to the side it came from, which is what
keeps the bridge from looping.

All mutations happen on the bridge's event loop, so the mirror is not locked.
"""
import logging
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol, Union

from lightbridge.core.metrics import record_characteristic_update

logger = logging.getLogger(__name__)

ChannelValue = Union[bool, int, float]


class Channel(str, Enum):
    """Independently addressable lightbulb properties."""
    POWER = "power"
    BRIGHTNESS = "brightness"
    COLOR_TEMPERATURE = "color_temperature"
    HUE = "hue"
    SATURATION = "saturation"


class UpdateOrigin(str, Enum):
    """Where a mirror mutation came from."""
    REMOTE = "remote"  # MQTT message from the device
    LOCAL = "local"    # HomeKit SET from a paired controller


@dataclass
class DeviceState:
    """Snapshot of all five channels. Every field always has a value."""
    power: bool = False
    brightness: int = 0  # Range: [0, 100]
    color_temperature: int = 153  # Mireds
    hue: float = 0  # Range: [0, 360)
    saturation: float = 0  # Range: [0, 100]

    def to_dict(self) -> Dict[str, ChannelValue]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class ChannelUpdate:
    """A single decoded change for one channel."""
    channel: Channel
    value: ChannelValue
    origin: UpdateOrigin = UpdateOrigin.REMOTE


class OutboundTopics(Protocol):
    def publish_topic(self, channel: Channel) -> str: ...


def _normalize_number(value: float) -> Union[int, float]:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def coerce_value(channel: Channel, value: Any) -> ChannelValue:
    """
    Convert a raw value to the Python type of the channel.

    Power is a bool, brightness and colour temperature are ints, hue and
    saturation are floats.

    Raises:
        ValueError: If a numeric channel receives something non-numeric
    """
    if channel is Channel.POWER:
        return bool(value)

    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"{channel.value} expects a number, got {value!r}")

    number = float(value)
    if channel in (Channel.BRIGHTNESS, Channel.COLOR_TEMPERATURE):
        return int(round(number))
    return number


def format_wire_value(channel: Channel, value: ChannelValue) -> str:
    """
    Format a channel value for an outbound MQTT publish.

    Power becomes "ON"/"OFF"; numbers become decimal strings, with integral
    floats written without a fractional part ("120", not "120.0").
    """
    if channel is Channel.POWER:
        return "ON" if value else "OFF"
    return str(_normalize_number(value))


class DeviceStateMirror:
    """
    In-memory mirror of the device state.

    Args:
        router: Provides the publish topic for each channel
        publish: Called as publish(topic, payload) for LOCAL updates
        push: Called as push(channel, value) for REMOTE updates. Usually
            registered later with set_push_callback once the HomeKit
            accessory exists.
    """

    def __init__(
        self,
        router: OutboundTopics,
        publish: Callable[[str, str], Any],
        push: Optional[Callable[[Channel, ChannelValue], None]] = None,
    ):
        self._state = DeviceState()
        self._router = router
        self._publish = publish
        self._push = push

    def set_push_callback(self, push: Callable[[Channel, ChannelValue], None]) -> None:
        """Set callback that forwards REMOTE updates to HomeKit."""
        self._push = push

    @property
    def state(self) -> DeviceState:
        return self._state

    def snapshot(self) -> DeviceState:
        """Return a copy of the current state."""
        return replace(self._state)

    def read(self, channel: Channel) -> ChannelValue:
        """Return the current value of a channel."""
        return getattr(self._state, channel.value)

    def write(self, channel: Channel, value: ChannelValue) -> None:
        """Store a value with no outbound side effects."""
        setattr(self._state, channel.value, value)

    def apply(self, channel: Channel, value: ChannelValue, origin: UpdateOrigin) -> None:
        """
        Write a value and forward it to the side it did not come from.

        REMOTE updates are pushed to HomeKit, LOCAL updates are published
        to MQTT. The write itself is unconditional.
        """
        previous = self.read(channel)
        self.write(channel, value)
        record_characteristic_update(channel.value, origin.value)

        logger.debug(
            f"Mirror {channel.value}: {previous!r} -> {value!r} ({origin.value})",
            extra={
                "event_type": "mirror_updated",
                "channel": channel.value,
                "origin": origin.value,
            }
        )

        if origin is UpdateOrigin.REMOTE:
            if self._push is None:
                logger.debug(
                    f"No HomeKit push callback registered, {channel.value} not forwarded",
                    extra={"event_type": "mirror_push_skipped", "channel": channel.value}
                )
                return
            self._push(channel, value)
        else:
            topic = self._router.publish_topic(channel)
            self._publish(topic, format_wire_value(channel, value))

    def apply_update(self, update: ChannelUpdate) -> None:
        """Apply a decoded ChannelUpdate."""
        self.apply(update.channel, update.value, update.origin)
