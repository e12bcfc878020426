"""
MQTT Service for the bridged lightbulb

Provides MQTT client management with:
- Connection to the broker named by the accessory URL (mqtt, mqtts, ws, wss)
- Username/password authentication
- Subscription to the status topics on every connect
- Fire-and-forget string publishing
- Inbound messages handed to the bridge's event loop
- Connection status tracking and metrics

Reconnection is left to paho's network loop, configured with a 1s -> 60s
backoff; connection failures are logged and never raised to the bridge.

Publishes made while disconnected are dropped, not queued for the next
connection. The mirror keeps the value HomeKit set, so the device and the
mirror can disagree until the next status message arrives.

Uses paho-mqtt 2.0+ with CallbackAPIVersion.VERSION2.
"""
import asyncio
import logging
import re
import ssl
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import paho.mqtt.client as mqtt

from lightbridge.config.accessory import LightAccessoryConfig
from lightbridge.core.logging_config import sanitize_log_value
from lightbridge.core.metrics import (
    update_mqtt_connection_status,
    record_mqtt_message_published,
    record_mqtt_publish_error,
    record_mqtt_reconnect_attempt,
)

logger = logging.getLogger(__name__)

# Reconnect backoff bounds in seconds (paho doubles the delay up to the max)
RECONNECT_MIN_DELAY = 1
RECONNECT_MAX_DELAY = 60

# Connection timeout in seconds
CONNECTION_TIMEOUT = 10.0

# Keep-alive interval in seconds
KEEPALIVE_SECONDS = 60

# Device command topics are plain fire-and-forget writes
PUBLISH_QOS = 0

MessageCallback = Callable[[str, bytes], None]


def build_client_id(name: str) -> str:
    """
    Build a unique MQTT client ID for an accessory.

    Example:
        >>> build_client_id("Desk Lamp")
        'lightbridge_desk_lamp_1a2b3c4d'
    """
    slug = re.sub(r'[^a-z0-9]+', '_', name.lower()).strip('_') or "light"
    return f"lightbridge_{slug}_{uuid.uuid4().hex[:8]}"


class MQTTService:
    """
    MQTT connection manager for one accessory.

    Attributes:
        _client: Paho MQTT client instance
        _config: Accessory configuration (broker URL, credentials)
        _connected: Connection status flag
        _subscriptions: Topics subscribed on every connect
        _loop: Event loop inbound messages are dispatched to
        _lock: Thread lock for status updates
    """

    def __init__(self, config: LightAccessoryConfig):
        """Initialize MQTT service without connecting."""
        self._config = config
        self._client: Optional[mqtt.Client] = None
        self._client_id: Optional[str] = None
        self._connected = False
        self._subscriptions: List[str] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._lock = threading.Lock()
        self._messages_published = 0
        self._messages_received = 0
        self._connect_failures = 0
        self._last_error: Optional[str] = None
        self._last_connected_at: Optional[datetime] = None
        self._on_message_callback: Optional[MessageCallback] = None

    @property
    def is_connected(self) -> bool:
        """Return current connection status."""
        return self._connected

    @property
    def messages_published(self) -> int:
        """Return total messages published in this session."""
        return self._messages_published

    @property
    def messages_received(self) -> int:
        """Return total messages received in this session."""
        return self._messages_received

    @property
    def last_error(self) -> Optional[str]:
        """Return last connection error message."""
        return self._last_error

    @property
    def subscriptions(self) -> List[str]:
        return list(self._subscriptions)

    def set_subscriptions(self, topics: List[str]) -> None:
        """Set the topics subscribed to whenever the client connects."""
        self._subscriptions = list(topics)

    def set_on_message_callback(self, callback: MessageCallback) -> None:
        """Set callback for inbound messages, called as callback(topic, payload)."""
        self._on_message_callback = callback

    async def connect(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> bool:
        """
        Start the client and wait briefly for the broker to accept it.

        The network loop keeps retrying in the background if the broker is
        unreachable, so a False return is not fatal.

        Args:
            loop: Event loop that inbound messages are dispatched to
                (default: the running loop)

        Returns:
            True if connected within CONNECTION_TIMEOUT, False otherwise.
        """
        self._loop = loop or asyncio.get_running_loop()

        if self._client is not None:
            logger.debug("MQTT client already started")
            return self._connected

        broker = self._config.broker
        self._client_id = build_client_id(self._config.name)
        self._client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
            protocol=mqtt.MQTTv311,
            transport=broker.transport,
        )

        self._client.on_connect = self._on_connect
        self._client.on_connect_fail = self._on_connect_fail
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

        if self._config.username:
            self._client.username_pw_set(self._config.username, self._config.password)
            logger.debug("MQTT authentication configured")

        if broker.use_tls:
            self._client.tls_set(cert_reqs=ssl.CERT_REQUIRED)
            logger.debug("MQTT TLS enabled")

        if broker.transport == "websockets":
            self._client.ws_set_options(path=broker.path)

        self._client.reconnect_delay_set(
            min_delay=RECONNECT_MIN_DELAY,
            max_delay=RECONNECT_MAX_DELAY
        )

        logger.info(
            f"Connecting to {self._config.url}",
            extra={
                "event_type": "mqtt_connecting",
                "broker": str(broker),
                "client_id": self._client_id
            }
        )

        try:
            self._client.connect_async(broker.host, broker.port, keepalive=KEEPALIVE_SECONDS)
        except (OSError, ValueError) as e:
            self._last_error = str(e)
            logger.error(
                f"MQTT connect setup failed: {e}",
                extra={"event_type": "mqtt_connection_failed", "broker": str(broker), "error": str(e)}
            )
            self._client = None
            return False

        self._client.loop_start()

        connected = await self._wait_for_connection(CONNECTION_TIMEOUT)
        if not connected:
            logger.warning(
                f"MQTT not connected after {CONNECTION_TIMEOUT}s, retrying in background",
                extra={"event_type": "mqtt_connect_pending", "broker": str(broker)}
            )
        return connected

    async def _wait_for_connection(self, timeout: float) -> bool:
        """Wait for connection to establish with timeout."""
        start = asyncio.get_running_loop().time()
        while not self._connected:
            if asyncio.get_running_loop().time() - start > timeout:
                return False
            await asyncio.sleep(0.1)
        return True

    async def disconnect(self) -> None:
        """Gracefully disconnect from the broker and stop the network loop."""
        if self._client is None:
            return

        logger.info("Disconnecting MQTT", extra={"event_type": "mqtt_disconnecting"})
        client = self._client
        self._client = None
        try:
            client.disconnect()
        finally:
            client.loop_stop()

        with self._lock:
            self._connected = False
        update_mqtt_connection_status(False)
        logger.info("MQTT disconnected", extra={"event_type": "mqtt_disconnected"})

    def publish(self, topic: str, payload: str) -> bool:
        """
        Publish a string payload without waiting for acknowledgment.

        Args:
            topic: MQTT topic to publish to
            payload: Message body

        Returns:
            True if the message was handed to the client, False otherwise.
        """
        if not self._connected or not self._client:
            record_mqtt_publish_error()
            logger.warning(
                "Cannot publish: MQTT not connected",
                extra={"event_type": "mqtt_publish_skipped", "topic": topic}
            )
            return False

        result = self._client.publish(topic, payload, qos=PUBLISH_QOS, retain=False)

        if result.rc == mqtt.MQTT_ERR_SUCCESS:
            with self._lock:
                self._messages_published += 1
            record_mqtt_message_published(topic)
            logger.debug(
                f"MQTT message published to {topic}: {payload}",
                extra={
                    "event_type": "mqtt_published",
                    "topic": topic,
                    "message_id": result.mid
                }
            )
            return True

        record_mqtt_publish_error()
        logger.warning(
            f"MQTT publish failed: rc={result.rc}",
            extra={
                "event_type": "mqtt_publish_failed",
                "topic": topic,
                "error_code": result.rc
            }
        )
        return False

    def _on_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: mqtt.ReasonCode,
        properties: Any
    ) -> None:
        """Mark the connection up and subscribe to the status topics."""
        if reason_code == mqtt.CONNACK_ACCEPTED or reason_code.value == 0:
            with self._lock:
                self._connected = True
                self._last_connected_at = datetime.now(timezone.utc)
                self._last_error = None

            update_mqtt_connection_status(True)
            logger.info(
                "MQTT connection established",
                extra={"event_type": "mqtt_on_connect", "flags": str(flags)}
            )

            for topic in self._subscriptions:
                logger.info(
                    f"Subscribing to topic {topic}",
                    extra={"event_type": "mqtt_subscribe", "topic": topic}
                )
                client.subscribe(topic)
        else:
            error_msg = f"Connection refused: {reason_code}"
            with self._lock:
                self._connected = False
                self._last_error = error_msg

            update_mqtt_connection_status(False)
            logger.error(
                "Error event on MQTT: connection refused",
                extra={
                    "event_type": "mqtt_connection_refused",
                    "reason_code": str(reason_code)
                }
            )

    def _on_connect_fail(self, client: mqtt.Client, userdata: Any) -> None:
        """Log a failed (re)connect attempt; paho schedules the next one."""
        with self._lock:
            self._connect_failures += 1
            self._last_error = "Broker unreachable"

        record_mqtt_reconnect_attempt()
        logger.error(
            f"Error event on MQTT: connect attempt {self._connect_failures} failed",
            extra={
                "event_type": "mqtt_connect_failed",
                "attempt": self._connect_failures,
                "broker": str(self._config.broker)
            }
        )

    def _on_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: mqtt.ReasonCode,
        properties: Any
    ) -> None:
        """Mark the connection down; unexpected drops are logged as errors."""
        was_connected = self._connected

        with self._lock:
            self._connected = False
            if reason_code.value != 0:
                self._last_error = f"Disconnected: {reason_code}"

        update_mqtt_connection_status(False)

        if reason_code.value != 0:
            logger.warning(
                f"MQTT connection lost: {reason_code}",
                extra={
                    "event_type": "mqtt_on_disconnect",
                    "reason_code": str(reason_code),
                    "was_connected": was_connected
                }
            )
        else:
            logger.info(
                "MQTT disconnected",
                extra={"event_type": "mqtt_on_disconnect", "was_connected": was_connected}
            )

    def _on_message(self, client: mqtt.Client, userdata: Any, message: mqtt.MQTTMessage) -> None:
        """
        Hand an inbound message to the bridge.

        Runs on paho's network thread, so the callback is scheduled on the
        bridge's event loop rather than called here.
        """
        with self._lock:
            self._messages_received += 1

        payload = bytes(message.payload)
        logger.info(
            f"{sanitize_log_value(payload.decode('utf-8', errors='replace'))} {message.topic}",
            extra={"event_type": "mqtt_message", "topic": message.topic}
        )

        if self._on_message_callback is None:
            return

        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._on_message_callback, message.topic, payload)
        else:
            self._on_message_callback(message.topic, payload)

    def get_status(self) -> Dict[str, Any]:
        """
        Get current connection status.

        Returns:
            Dict with connection status, broker info, and statistics.
        """
        return {
            "connected": self._connected,
            "broker": str(self._config.broker),
            "client_id": self._client_id,
            "subscriptions": list(self._subscriptions),
            "last_connected_at": self._last_connected_at.isoformat() if self._last_connected_at else None,
            "messages_published": self._messages_published,
            "messages_received": self._messages_received,
            "connect_failures": self._connect_failures,
            "last_error": self._last_error,
        }
