"""
Inbound MQTT payload decoding.

Two payload shapes arrive from the device:

- Power status: a bare token, "ON" or anything else (off).
- Composite status: one JSON object packing several unrelated telemetry
  fields, of which Dimmer, CT and HSBColor ("H,S,B") are used.

Composite payloads repeat most fields unchanged on every message, so a
field only turns into a ChannelUpdate when it differs from the mirror.
"""
import json
import logging
import math
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from lightbridge.core.logging_config import sanitize_log_value
from lightbridge.services.device_state import (
    Channel,
    ChannelUpdate,
    DeviceState,
    UpdateOrigin,
    coerce_value,
)

logger = logging.getLogger(__name__)

POWER_ON_TOKEN = "ON"

FIELD_DIMMER = "Dimmer"
FIELD_CT = "CT"
FIELD_HSB = "HSBColor"


class MessageDecodeError(ValueError):
    """Raised when a composite payload cannot be decoded as a whole."""


@dataclass(frozen=True)
class CompositeStatus:
    """The fields of a composite status payload this bridge cares about."""
    dimmer: Optional[float] = None
    ct: Optional[float] = None
    hsb_color: Optional[str] = None


def payload_text(payload: bytes) -> str:
    """Decode a raw MQTT payload to text."""
    if isinstance(payload, str):
        return payload
    return payload.decode("utf-8", errors="replace")


def decode_power(payload: bytes) -> ChannelUpdate:
    """
    Decode a power status payload.

    Always produces exactly one power update: True for "ON", False for
    anything else.
    """
    status = payload_text(payload)
    return ChannelUpdate(Channel.POWER, status == POWER_ON_TOKEN, UpdateOrigin.REMOTE)


def _number_field(document: dict, key: str) -> Optional[float]:
    value = document.get(key)
    if value is None:
        return None
    # bool is an int subclass but never a valid reading
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MessageDecodeError(f"{key} must be a number, got {type(value).__name__}")
    try:
        finite = math.isfinite(value)
    except OverflowError:
        finite = False
    if not finite:
        raise MessageDecodeError(f"{key} must be a finite number")
    return value


def parse_composite(payload: bytes) -> CompositeStatus:
    """
    Parse a composite status payload once into a CompositeStatus.

    Raises:
        MessageDecodeError: If the payload is not a JSON object or a known
            field has the wrong type
    """
    try:
        document = json.loads(payload_text(payload))
    except ValueError as e:
        # JSONDecodeError, or an integer literal past the int conversion limit
        raise MessageDecodeError(f"Malformed JSON: {e}") from e

    if not isinstance(document, dict):
        raise MessageDecodeError(f"Expected a JSON object, got {type(document).__name__}")

    hsb_color = document.get(FIELD_HSB)
    if hsb_color is not None and not isinstance(hsb_color, str):
        raise MessageDecodeError(f"{FIELD_HSB} must be a string, got {type(hsb_color).__name__}")

    return CompositeStatus(
        dimmer=_number_field(document, FIELD_DIMMER),
        ct=_number_field(document, FIELD_CT),
        hsb_color=hsb_color,
    )


def parse_hsb_color(hsb_color: str) -> Optional[Tuple[float, float]]:
    """
    Extract hue and saturation from an "H,S,B" string.

    Returns:
        (hue, saturation), or None if fewer than two components are present
        or either is not a finite number
    """
    parts = hsb_color.split(",")
    if len(parts) < 2:
        return None

    try:
        hue = float(parts[0].strip())
        saturation = float(parts[1].strip())
    except ValueError:
        return None

    if not (math.isfinite(hue) and math.isfinite(saturation)):
        return None
    return hue, saturation


def decode_composite(payload: bytes, state: DeviceState) -> List[ChannelUpdate]:
    """
    Decode a composite status payload against the current mirror state.

    Each known field is extracted if present and emitted only when it
    differs from the mirror. A bad HSBColor string drops hue and
    saturation for this message but keeps the other fields.

    Raises:
        MessageDecodeError: If the payload as a whole cannot be decoded
    """
    status = parse_composite(payload)
    updates: List[ChannelUpdate] = []

    def candidate(channel: Channel, raw: Any) -> None:
        value = coerce_value(channel, raw)
        if value != getattr(state, channel.value):
            updates.append(ChannelUpdate(channel, value, UpdateOrigin.REMOTE))

    if status.dimmer is not None:
        candidate(Channel.BRIGHTNESS, status.dimmer)

    if status.ct is not None:
        candidate(Channel.COLOR_TEMPERATURE, status.ct)

    if status.hsb_color is not None:
        hue_sat = parse_hsb_color(status.hsb_color)
        if hue_sat is None:
            logger.warning(
                f"Ignoring unusable {FIELD_HSB} value '{sanitize_log_value(status.hsb_color)}'",
                extra={"event_type": "mqtt_hsb_ignored"}
            )
        else:
            candidate(Channel.HUE, hue_sat[0])
            candidate(Channel.SATURATION, hue_sat[1])

    return updates
