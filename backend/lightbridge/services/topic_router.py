"""
Static topic routing for the bridged lightbulb.

Inbound: the power status topic and the composite status topic, each
bound to its decoder. Outbound: one set topic per channel.
"""
import logging
from enum import Enum
from typing import Dict, List

from lightbridge.config.accessory import TopicConfig
from lightbridge.core.logging_config import sanitize_log_value
from lightbridge.core.metrics import record_mqtt_decode_error, record_mqtt_message_received
from lightbridge.services.device_state import Channel, ChannelUpdate, DeviceState
from lightbridge.services.message_decoder import (
    MessageDecodeError,
    decode_composite,
    decode_power,
    payload_text,
)

logger = logging.getLogger(__name__)


class TopicKind(str, Enum):
    POWER = "power"
    COMPOSITE = "composite"
    UNKNOWN = "unknown"


class TopicRouter:
    """
    Bidirectional topic mapping configured once per accessory.

    Args:
        topics: Topic configuration of the accessory

    Raises:
        ValueError: If the power and composite status topics are the same
    """

    def __init__(self, topics: TopicConfig):
        if topics.get_on == topics.get_res:
            raise ValueError(
                f"Power and composite status topics must differ, both are '{topics.get_on}'"
            )

        self._topics = topics
        self._inbound: Dict[str, TopicKind] = {
            topics.get_on: TopicKind.POWER,
            topics.get_res: TopicKind.COMPOSITE,
        }
        self._outbound: Dict[Channel, str] = {
            Channel.POWER: topics.set_on,
            Channel.BRIGHTNESS: topics.set_brightness,
            Channel.COLOR_TEMPERATURE: topics.set_color_temp,
            Channel.HUE: topics.set_hue,
            Channel.SATURATION: topics.set_sat,
        }

    @property
    def topics(self) -> TopicConfig:
        return self._topics

    def subscriptions(self) -> List[str]:
        """Topics to subscribe to, power status first."""
        return list(self._inbound)

    def kind_of(self, topic: str) -> TopicKind:
        return self._inbound.get(topic, TopicKind.UNKNOWN)

    def publish_topic(self, channel: Channel) -> str:
        """Set topic for a channel."""
        return self._outbound[channel]

    def looped_topics(self) -> List[str]:
        """Set topics that are also subscribed, which would echo publishes back."""
        return [topic for topic in self._outbound.values() if topic in self._inbound]

    def decode(self, topic: str, payload: bytes, state: DeviceState) -> List[ChannelUpdate]:
        """
        Decode an inbound message into channel updates.

        Malformed composite payloads and unknown topics yield no updates;
        neither raises.
        """
        kind = self.kind_of(topic)
        record_mqtt_message_received(kind.value)

        if kind is TopicKind.POWER:
            return [decode_power(payload)]

        if kind is TopicKind.COMPOSITE:
            try:
                return decode_composite(payload, state)
            except MessageDecodeError as e:
                record_mqtt_decode_error()
                logger.warning(
                    f"Dropping composite status message: {e}",
                    extra={
                        "event_type": "mqtt_decode_failed",
                        "topic": topic,
                        "payload": sanitize_log_value(payload_text(payload)),
                    }
                )
                return []

        logger.debug(
            f"Ignoring message on unrouted topic {topic}",
            extra={"event_type": "mqtt_topic_ignored", "topic": topic}
        )
        return []
