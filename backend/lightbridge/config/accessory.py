"""
Accessory configuration module

Describes the single bridged lightbulb: its display name, the MQTT broker
URL and credentials, and the seven topics it reads from and writes to.
The on-disk format is the JSON accessory block used by Homebridge MQTT
plugins, so camelCase topic keys (getOn, setBrightness, ...) are accepted
alongside their snake_case field names.
"""
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

DEFAULT_MANUFACTURER = "Custom Manufacturer"
DEFAULT_MODEL = "Custom Model"

# scheme -> (default port, tls, transport)
BROKER_SCHEMES = {
    "mqtt": (1883, False, "tcp"),
    "tcp": (1883, False, "tcp"),
    "mqtts": (8883, True, "tcp"),
    "ssl": (8883, True, "tcp"),
    "tls": (8883, True, "tcp"),
    "ws": (80, False, "websockets"),
    "wss": (443, True, "websockets"),
}


class AccessoryConfigError(Exception):
    """Raised when the accessory configuration cannot be loaded or validated."""


class TopicConfig(BaseModel):
    """MQTT topics for the two status subscriptions and five set commands."""
    get_on: str = Field(..., alias="getOn", min_length=1, description="Power status topic")
    get_res: str = Field(..., alias="getRes", min_length=1, description="Composite JSON status topic")
    set_on: str = Field(..., alias="setOn", min_length=1)
    set_brightness: str = Field(..., alias="setBrightness", min_length=1)
    set_color_temp: str = Field(..., alias="setColorTemp", min_length=1)
    set_hue: str = Field(..., alias="setHue", min_length=1)
    set_sat: str = Field(..., alias="setSat", min_length=1)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class LightAccessoryConfig(BaseModel):
    """Configuration for the bridged lightbulb accessory."""
    name: str = Field(..., min_length=1, max_length=64, description="Accessory name shown in the Home app")
    url: str = Field(..., description="Broker URL, e.g. mqtt://broker.local:1883")
    username: Optional[str] = None
    password: Optional[str] = None
    manufacturer: str = DEFAULT_MANUFACTURER
    model: str = DEFAULT_MODEL
    serial_number: Optional[str] = Field(None, alias="serialNumber")
    topics: TopicConfig

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        json_schema_extra={
            "example": {
                "name": "Desk Lamp",
                "url": "mqtt://broker.local:1883",
                "username": "homekit",
                "password": "secret",
                "topics": {
                    "getOn": "stat/desklamp/POWER",
                    "getRes": "stat/desklamp/RESULT",
                    "setOn": "cmnd/desklamp/POWER",
                    "setBrightness": "cmnd/desklamp/Dimmer",
                    "setColorTemp": "cmnd/desklamp/CT",
                    "setHue": "cmnd/desklamp/HSBColor1",
                    "setSat": "cmnd/desklamp/HSBColor2",
                },
            }
        },
    )

    @field_validator('url', mode='after')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Reject broker URLs paho cannot connect to."""
        parse_broker_url(v)
        return v

    @property
    def broker(self) -> "BrokerAddress":
        return parse_broker_url(self.url)


@dataclass(frozen=True)
class BrokerAddress:
    """Broker connection details derived from the configured URL."""
    host: str
    port: int
    use_tls: bool = False
    transport: str = "tcp"
    path: str = "/mqtt"

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


def parse_broker_url(url: str) -> BrokerAddress:
    """
    Split a broker URL into host, port and transport options.

    Supported schemes: mqtt, tcp (1883); mqtts, ssl, tls (8883, TLS);
    ws (80, websockets); wss (443, websockets + TLS). A bare "host" or
    "host:port" is treated as mqtt://.

    Args:
        url: Broker URL from the accessory configuration

    Returns:
        BrokerAddress

    Raises:
        ValueError: If the scheme is unsupported or the host is missing
    """
    if "://" not in url:
        url = f"mqtt://{url}"

    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme not in BROKER_SCHEMES:
        raise ValueError(f"Unsupported broker URL scheme '{scheme}'")

    if not parsed.hostname:
        raise ValueError(f"Broker URL has no host: {url}")

    default_port, use_tls, transport = BROKER_SCHEMES[scheme]
    try:
        port = parsed.port or default_port
    except ValueError as e:
        raise ValueError(f"Invalid broker port in {url}: {e}") from e

    path = parsed.path or "/mqtt"
    return BrokerAddress(
        host=parsed.hostname,
        port=port,
        use_tls=use_tls,
        transport=transport,
        path=path,
    )


def _select_accessory(document: Any, source: str) -> Dict[str, Any]:
    """Pick the accessory block out of a config document."""
    if not isinstance(document, dict):
        raise AccessoryConfigError(f"{source}: expected a JSON object")

    if "accessories" not in document:
        return document

    accessories = document["accessories"]
    if not isinstance(accessories, list) or not accessories:
        raise AccessoryConfigError(f"{source}: 'accessories' must be a non-empty list")

    if len(accessories) > 1:
        logger.warning(
            f"{source} defines {len(accessories)} accessories, bridging only the first",
            extra={"event_type": "config_extra_accessories", "count": len(accessories)}
        )
    return accessories[0]


def parse_accessory_config(document: Any, source: str = "<config>") -> LightAccessoryConfig:
    """
    Validate an already-parsed config document.

    Args:
        document: Accessory object, or a {"accessories": [...]} wrapper
        source: Label used in error messages

    Returns:
        LightAccessoryConfig

    Raises:
        AccessoryConfigError: If the document does not describe a valid accessory
    """
    block = _select_accessory(document, source)
    try:
        return LightAccessoryConfig.model_validate(block)
    except ValidationError as e:
        raise AccessoryConfigError(f"{source}: invalid accessory configuration: {e}") from e


def load_accessory_config(path: Union[str, Path]) -> LightAccessoryConfig:
    """
    Load the accessory configuration from a JSON file.

    Args:
        path: Path to the JSON config file

    Returns:
        LightAccessoryConfig

    Raises:
        AccessoryConfigError: If the file is missing, not JSON, or invalid
    """
    config_path = Path(path)
    try:
        raw = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise AccessoryConfigError(f"Cannot read accessory config {config_path}: {e}") from e

    try:
        document = json.loads(raw)
    except json.JSONDecodeError as e:
        raise AccessoryConfigError(f"{config_path} is not valid JSON: {e}") from e

    config = parse_accessory_config(document, source=str(config_path))
    logger.info(
        f"Loaded accessory config for '{config.name}'",
        extra={"event_type": "config_loaded", "path": str(config_path), "broker": str(config.broker)}
    )
    return config
