"""
Prometheus Metrics Registry

Provides Prometheus-compatible metrics for:
- MQTT connection status and message traffic
- Composite payload decode failures
- Characteristic updates by channel and origin
- HomeKit characteristic reads
"""
import logging
import time
from typing import Optional

from prometheus_client import (
    Counter, Gauge, Info,
    CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
)

logger = logging.getLogger(__name__)

# Create a custom registry to avoid conflicts with default registry
REGISTRY = CollectorRegistry()

_start_time: Optional[float] = None

# ============================================================================
# Application Info
# ============================================================================

app_info = Info(
    'lightbridge',
    'Bridge application information',
    registry=REGISTRY
)

uptime_seconds = Gauge(
    'lightbridge_uptime_seconds',
    'Seconds since metrics were initialized',
    registry=REGISTRY
)

# ============================================================================
# MQTT Metrics
# ============================================================================

mqtt_connection_status = Gauge(
    'mqtt_connection_status',
    'MQTT connection status (0=disconnected, 1=connected)',
    registry=REGISTRY
)

mqtt_messages_received_total = Counter(
    'mqtt_messages_received_total',
    'Total MQTT messages received',
    ['kind'],  # power, composite, unknown
    registry=REGISTRY
)

mqtt_decode_errors_total = Counter(
    'mqtt_decode_errors_total',
    'Total MQTT messages dropped because they could not be decoded',
    registry=REGISTRY
)

mqtt_messages_published_total = Counter(
    'mqtt_messages_published_total',
    'Total MQTT messages published',
    ['topic'],  # set topic
    registry=REGISTRY
)

mqtt_publish_errors_total = Counter(
    'mqtt_publish_errors_total',
    'Total MQTT publish errors',
    registry=REGISTRY
)

mqtt_reconnect_attempts_total = Counter(
    'mqtt_reconnect_attempts_total',
    'Total MQTT reconnect attempts',
    registry=REGISTRY
)

# ============================================================================
# Characteristic Metrics
# ============================================================================

characteristic_updates_total = Counter(
    'lightbridge_characteristic_updates_total',
    'Total device state mirror updates',
    ['channel', 'origin'],  # origin: remote, local
    registry=REGISTRY
)

homekit_reads_total = Counter(
    'lightbridge_homekit_reads_total',
    'Total HomeKit characteristic GET requests',
    ['channel'],
    registry=REGISTRY
)


# ============================================================================
# Helper Functions
# ============================================================================


def init_metrics(version: str = "1.0.0", accessory_name: str = ""):
    """
    Initialize metrics with application info.

    Args:
        version: Application version string
        accessory_name: Name of the bridged accessory
    """
    global _start_time
    _start_time = time.time()

    app_info.info({
        'version': version,
        'accessory': accessory_name,
    })

    logger.info("Prometheus metrics initialized", extra={"version": version})


def update_mqtt_connection_status(connected: bool):
    """
    Update MQTT connection status metric.

    Args:
        connected: Whether MQTT is connected
    """
    mqtt_connection_status.set(1 if connected else 0)


def record_mqtt_message_received(kind: str):
    """Record an inbound MQTT message by topic kind."""
    mqtt_messages_received_total.labels(kind=kind).inc()


def record_mqtt_decode_error():
    """Record an inbound message dropped by the decoder."""
    mqtt_decode_errors_total.inc()


def record_mqtt_message_published(topic: str):
    """Record a successful MQTT message publish."""
    mqtt_messages_published_total.labels(topic=topic).inc()


def record_mqtt_publish_error():
    """Record an MQTT publish error."""
    mqtt_publish_errors_total.inc()


def record_mqtt_reconnect_attempt():
    """Record an MQTT reconnect attempt."""
    mqtt_reconnect_attempts_total.inc()


def record_characteristic_update(channel: str, origin: str):
    """
    Record a mirror update.

    Args:
        channel: Channel name (power, brightness, ...)
        origin: Update origin (remote, local)
    """
    characteristic_updates_total.labels(channel=channel, origin=origin).inc()


def record_homekit_read(channel: str):
    """Record a HomeKit GET on a characteristic."""
    homekit_reads_total.labels(channel=channel).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus metrics output.

    Returns:
        Prometheus text format metrics
    """
    if _start_time is not None:
        uptime_seconds.set(time.time() - _start_time)
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
