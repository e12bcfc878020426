"""
MQTT <-> HomeKit lightbulb bridge

Wires the topic router, device state mirror, HomeKit accessory and MQTT
client for one configured accessory:

    MQTT message -> router.decode -> mirror.apply(REMOTE) -> HomeKit push
    HomeKit SET  -> adapter -> mirror.apply(LOCAL)       -> MQTT publish

Everything runs on one event loop: the HAP driver is created on it and
MQTT messages are scheduled onto it from paho's network thread.
"""
import asyncio
import logging
from dataclasses import asdict
from typing import Any, Dict, Optional

from lightbridge.config.accessory import LightAccessoryConfig, load_accessory_config
from lightbridge.config.homekit import HomekitConfig
from lightbridge.core.config import settings
from lightbridge.core.logging_config import clear_correlation_id, new_correlation_id
from lightbridge.services.device_state import DeviceStateMirror
from lightbridge.services.homekit_service import HomekitService
from lightbridge.services.lightbulb_accessory import LightbulbAccessory
from lightbridge.services.mqtt_service import MQTTService
from lightbridge.services.topic_router import TopicRouter

logger = logging.getLogger(__name__)


class LightBridgeService:
    """
    Bridge between one MQTT-controlled light and one HomeKit Lightbulb.

    Args:
        config: Accessory configuration
        homekit_config: HAP server configuration (default: from environment)
        mqtt_service: MQTT client wrapper (default: built from config)
        homekit_service: HAP server wrapper (default: built from homekit_config)

    Raises:
        ValueError: If the topic configuration is unusable
    """

    def __init__(
        self,
        config: LightAccessoryConfig,
        homekit_config: Optional[HomekitConfig] = None,
        mqtt_service: Optional[MQTTService] = None,
        homekit_service: Optional[HomekitService] = None,
    ):
        self.config = config
        self.router = TopicRouter(config.topics)
        self.mqtt = mqtt_service or MQTTService(config)
        self.homekit = homekit_service or HomekitService(homekit_config)
        self.mirror = DeviceStateMirror(self.router, publish=self.mqtt.publish)
        self.accessory: Optional[LightbulbAccessory] = None
        self._running = False

        for topic in self.router.looped_topics():
            logger.warning(
                f"Set topic {topic} is also subscribed; published commands will be read back as status",
                extra={"event_type": "bridge_topic_loop", "topic": topic}
            )

    @property
    def is_running(self) -> bool:
        return self._running

    def handle_message(self, topic: str, payload: bytes) -> None:
        """
        React to one inbound MQTT message.

        Decodes the message against the current mirror and applies each
        resulting update as REMOTE, so changes reach HomeKit and never go
        back out over MQTT.
        """
        token = new_correlation_id()
        try:
            updates = self.router.decode(topic, payload, self.mirror.state)
            for update in updates:
                self.mirror.apply_update(update)
        finally:
            clear_correlation_id(token)

    async def start(self) -> bool:
        """
        Start the HomeKit accessory server, then connect to MQTT.

        Returns:
            True if the HomeKit server started. MQTT keeps retrying in the
            background if the broker is not reachable yet.
        """
        if self._running:
            return True

        loop = asyncio.get_running_loop()

        logger.info(
            f"Starting bridge for {self.config.name}",
            extra={
                "event_type": "bridge_starting",
                "broker": str(self.config.broker),
                "subscriptions": self.router.subscriptions(),
            }
        )

        driver = self.homekit.create_driver(loop)
        self.accessory = LightbulbAccessory(driver, self.config, self.mirror)
        if not await self.homekit.start(self.accessory):
            return False

        self.mqtt.set_subscriptions(self.router.subscriptions())
        self.mqtt.set_on_message_callback(self.handle_message)
        await self.mqtt.connect(loop)

        self._running = True
        logger.info("Bridge started", extra={"event_type": "bridge_started"})
        return True

    async def stop(self) -> None:
        """Disconnect from MQTT and stop the HomeKit accessory server."""
        logger.info("Stopping bridge", extra={"event_type": "bridge_stopping"})
        try:
            await self.mqtt.disconnect()
        finally:
            await self.homekit.stop()
            self._running = False
        logger.info("Bridge stopped", extra={"event_type": "bridge_stopped"})

    def get_status(self) -> Dict[str, Any]:
        """
        Get current bridge status.

        Returns:
            Dict with the mirror snapshot, MQTT and HomeKit status.
        """
        return {
            "accessory": self.config.name,
            "running": self._running,
            "state": self.mirror.snapshot().to_dict(),
            "mqtt": self.mqtt.get_status(),
            "homekit": asdict(self.homekit.get_status()),
        }


# Global singleton instance
_bridge_service: Optional[LightBridgeService] = None


def get_bridge_service() -> Optional[LightBridgeService]:
    """
    Get the global bridge service instance.

    Returns:
        LightBridgeService, or None before initialize_bridge_service().
    """
    return _bridge_service


async def initialize_bridge_service(
    config: Optional[LightAccessoryConfig] = None,
    homekit_config: Optional[HomekitConfig] = None,
) -> LightBridgeService:
    """
    Create and start the bridge on app startup.

    A bridge whose HomeKit server failed to start is still registered so
    its status stays visible, but an error is logged.

    Args:
        config: Accessory configuration (default: loaded from
            settings.ACCESSORY_CONFIG_FILE)
        homekit_config: HAP server configuration (default: from environment)

    Raises:
        AccessoryConfigError: If the accessory configuration cannot be loaded
    """
    global _bridge_service
    if config is None:
        config = load_accessory_config(settings.ACCESSORY_CONFIG_FILE)

    service = LightBridgeService(config, homekit_config)
    if not await service.start():
        logger.error(
            f"Bridge for {config.name} failed to start: {service.homekit.get_status().error}",
            extra={"event_type": "bridge_start_failed"}
        )
    _bridge_service = service
    return service


async def shutdown_bridge_service() -> None:
    """Stop the bridge on app shutdown."""
    global _bridge_service
    if _bridge_service is not None:
        await _bridge_service.stop()
        _bridge_service = None
