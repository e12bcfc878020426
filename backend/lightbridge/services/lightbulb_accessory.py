"""
HomeKit Lightbulb accessory backed by the device state mirror.

Exposes On, Brightness, ColorTemperature, Hue and Saturation on a
HAP-python Lightbulb service:

    HomeKit GET            -> mirror.read(channel), no MQTT traffic
    HomeKit SET            -> handle_set(..., LOCAL) -> mirror.apply -> MQTT publish
    mirror REMOTE update   -> push_value -> characteristic.set_value
                           -> handle_set(..., REMOTE) -> mirror.write only

The AccessoryDriver is passed in by the caller; this module holds no
driver or accessory state of its own.
"""
import logging
from typing import Any, Dict, Optional

from pyhap.accessory import Accessory
from pyhap.const import CATEGORY_LIGHTBULB

from lightbridge.config.accessory import LightAccessoryConfig
from lightbridge.core.logging_config import clear_correlation_id, new_correlation_id
from lightbridge.core.metrics import record_homekit_read
from lightbridge.services.device_state import (
    Channel,
    ChannelValue,
    DeviceStateMirror,
    UpdateOrigin,
    coerce_value,
)

logger = logging.getLogger(__name__)

FIRMWARE_REVISION = "1.0.0"

# HAP characteristic name for each channel
CHARACTERISTIC_NAMES: Dict[Channel, str] = {
    Channel.POWER: "On",
    Channel.BRIGHTNESS: "Brightness",
    Channel.COLOR_TEMPERATURE: "ColorTemperature",
    Channel.HUE: "Hue",
    Channel.SATURATION: "Saturation",
}


class LightbulbAccessory:
    """
    HomeKit Lightbulb adapter for the bridged device.

    Attributes:
        name: Display name in the Home app
        mirror: Device state mirror the characteristics read from and write to
    """

    def __init__(
        self,
        driver,
        config: LightAccessoryConfig,
        mirror: DeviceStateMirror,
    ):
        """
        Create the HAP accessory and register GET/SET callbacks.

        Args:
            driver: HAP-python AccessoryDriver instance
            config: Accessory configuration (name and information fields)
            mirror: Device state mirror
        """
        self.name = config.name
        self.mirror = mirror
        self._driver = driver

        self._accessory = Accessory(driver, config.name)
        self._accessory.category = CATEGORY_LIGHTBULB

        accessory_info = self._accessory.get_service("AccessoryInformation")
        if accessory_info:
            accessory_info.configure_char("Manufacturer", value=config.manufacturer)
            accessory_info.configure_char("Model", value=config.model)
            accessory_info.configure_char("SerialNumber", value=config.serial_number or config.name[:20])
            accessory_info.configure_char("FirmwareRevision", value=FIRMWARE_REVISION)
            accessory_info.configure_char("Identify", setter_callback=self._identify)

        service = self._accessory.add_preload_service(
            "Lightbulb",
            chars=[CHARACTERISTIC_NAMES[c] for c in Channel if c is not Channel.POWER],
        )

        self._characteristics: Dict[Channel, Any] = {}
        for channel, char_name in CHARACTERISTIC_NAMES.items():
            self._characteristics[channel] = service.configure_char(
                char_name,
                value=mirror.read(channel),
                getter_callback=self._make_getter(channel),
                setter_callback=self._make_setter(channel),
            )

        mirror.set_push_callback(self.push_value)

        logger.info(
            f"Created HomeKit lightbulb accessory: {config.name}",
            extra={"event_type": "homekit_accessory_created"}
        )

    @property
    def accessory(self) -> Accessory:
        """Get the underlying HAP-python accessory."""
        return self._accessory

    def characteristic(self, channel: Channel) -> Any:
        """Get the HAP characteristic bound to a channel."""
        return self._characteristics[channel]

    def _make_getter(self, channel: Channel):
        def getter():
            return self.handle_get(channel)
        return getter

    def _make_setter(self, channel: Channel):
        def setter(value):
            token = new_correlation_id()
            try:
                self.handle_set(channel, value, UpdateOrigin.LOCAL)
            finally:
                clear_correlation_id(token)
        return setter

    def handle_get(self, channel: Channel) -> ChannelValue:
        """Return the mirror value for a HomeKit GET."""
        value = self.mirror.read(channel)
        record_homekit_read(channel.value)
        logger.debug(
            f"HomeKit read {channel.value}: {value!r}",
            extra={"event_type": "homekit_get", "channel": channel.value}
        )
        return value

    def handle_set(self, channel: Channel, value: Any, origin: UpdateOrigin) -> None:
        """
        Handle a characteristic write.

        REMOTE writes are the mirror's own pushes coming back through the
        characteristic and only refresh the mirror slot. Anything else is a
        controller request and is applied as LOCAL, which publishes to MQTT.
        """
        try:
            coerced = coerce_value(channel, value)
        except ValueError as e:
            logger.warning(
                f"Ignoring HomeKit write to {channel.value}: {e}",
                extra={"event_type": "homekit_set_invalid", "channel": channel.value}
            )
            return

        if origin is UpdateOrigin.REMOTE:
            self.mirror.write(channel, coerced)
            return

        self.mirror.apply(channel, coerced, UpdateOrigin.LOCAL)
        logger.info(
            f"Lightbulb {channel.value} was set to: {coerced!r}",
            extra={"event_type": "homekit_set", "channel": channel.value}
        )

    def push_value(self, channel: Channel, value: ChannelValue) -> None:
        """
        Forward a REMOTE mirror update to HomeKit.

        Updates the characteristic so paired controllers are notified, then
        routes the characteristic value, which HAP may have clamped, through
        handle_set tagged REMOTE so nothing is published back to MQTT.
        """
        char = self._characteristics[channel]
        try:
            char.set_value(value)
        except ValueError as e:
            logger.warning(
                f"HomeKit rejected {channel.value}={value!r}: {e}",
                extra={"event_type": "homekit_push_rejected", "channel": channel.value}
            )
            return

        self.handle_set(channel, char.value, UpdateOrigin.REMOTE)
        logger.info(
            f"Pushed {channel.value}={char.value!r} to HomeKit",
            extra={"event_type": "homekit_push", "channel": channel.value}
        )

    def _identify(self, value: Optional[Any] = None) -> None:
        """Acknowledge an identify request. The bulb is not flashed."""
        logger.info("Identify!", extra={"event_type": "homekit_identify"})
