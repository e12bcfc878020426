"""
Unit tests for the Prometheus metrics registry
"""
from lightbridge.core.metrics import (
    REGISTRY,
    init_metrics,
    get_metrics,
    get_content_type,
    update_mqtt_connection_status,
    record_mqtt_message_received,
    record_mqtt_decode_error,
    record_mqtt_message_published,
    record_characteristic_update,
    record_homekit_read,
)


def _sample(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


class TestMetrics:

    def test_connection_status_gauge(self):
        update_mqtt_connection_status(True)
        assert _sample("mqtt_connection_status") == 1.0

        update_mqtt_connection_status(False)
        assert _sample("mqtt_connection_status") == 0.0

    def test_message_counters_by_label(self):
        before_kind = _sample("mqtt_messages_received_total", {"kind": "composite"})
        before_topic = _sample("mqtt_messages_published_total", {"topic": "cmnd/lamp/CT"})
        before_errors = _sample("mqtt_decode_errors_total")

        record_mqtt_message_received("composite")
        record_mqtt_message_published("cmnd/lamp/CT")
        record_mqtt_decode_error()

        assert _sample("mqtt_messages_received_total", {"kind": "composite"}) == before_kind + 1
        assert _sample("mqtt_messages_published_total", {"topic": "cmnd/lamp/CT"}) == before_topic + 1
        assert _sample("mqtt_decode_errors_total") == before_errors + 1

    def test_characteristic_counters(self):
        labels = {"channel": "hue", "origin": "local"}
        before = _sample("lightbridge_characteristic_updates_total", labels)
        before_reads = _sample("lightbridge_homekit_reads_total", {"channel": "hue"})

        record_characteristic_update("hue", "local")
        record_homekit_read("hue")

        assert _sample("lightbridge_characteristic_updates_total", labels) == before + 1
        assert _sample("lightbridge_homekit_reads_total", {"channel": "hue"}) == before_reads + 1

    def test_get_metrics_exposition(self):
        init_metrics(version="1.2.3", accessory_name="Desk Lamp")

        output = get_metrics().decode("utf-8")

        assert 'lightbridge_info{accessory="Desk Lamp",version="1.2.3"} 1.0' in output
        assert "lightbridge_uptime_seconds" in output
        assert get_content_type().startswith("text/plain")
