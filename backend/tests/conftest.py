"""Pytest fixtures and configuration for the test suite

This module provides:
1. A throwaway log directory so importing the app never writes into the repo
2. Factory functions for accessory configuration documents
3. Fixtures for the topic router, device state mirror and a HomeKit
   Lightbulb accessory built on a patched HAP-python Accessory

Factory Functions:
    - make_topics(**overrides) -> dict
    - make_accessory_document(**overrides) -> dict
"""
import os
import tempfile
from typing import Any, Dict, Optional, Tuple
from unittest.mock import MagicMock, patch

import pytest

# Must be set before lightbridge.core.config instantiates Settings
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="lightbridge-logs-"))

from lightbridge.config.accessory import LightAccessoryConfig, parse_accessory_config  # noqa: E402
from lightbridge.services.device_state import DeviceStateMirror  # noqa: E402
from lightbridge.services.topic_router import TopicRouter  # noqa: E402


# =============================================================================
# Factory Functions
# =============================================================================

def make_topics(**overrides) -> Dict[str, str]:
    """
    Build a camelCase topics block.

    Example:
        topics = make_topics(getRes="tele/lamp/STATE")
    """
    topics = {
        "getOn": "stat/lamp/POWER",
        "getRes": "tele/lamp/STATE",
        "setOn": "cmnd/lamp/POWER",
        "setBrightness": "cmnd/lamp/Dimmer",
        "setColorTemp": "cmnd/lamp/CT",
        "setHue": "cmnd/lamp/HSBColor1",
        "setSat": "cmnd/lamp/HSBColor2",
    }
    topics.update(overrides)
    return topics


def make_accessory_document(topics: Optional[Dict[str, str]] = None, **overrides) -> Dict[str, Any]:
    """
    Build an accessory config document as it appears in config.json.

    Example:
        doc = make_accessory_document(url="mqtts://broker:8883")
    """
    document = {
        "name": "Desk Lamp",
        "url": "mqtt://broker.local:1883",
        "username": "homekit",
        "password": "secret",
        "topics": topics or make_topics(),
    }
    document.update(overrides)
    return document


# =============================================================================
# Fake HAP-python objects
# =============================================================================

class FakeLightbulbService:
    """Stands in for the HAP Lightbulb service, recording configure_char calls."""

    def __init__(self):
        self.chars: Dict[str, MagicMock] = {}
        self.callbacks: Dict[str, Tuple[Any, Any]] = {}

    def configure_char(self, name, value=None, getter_callback=None, setter_callback=None, **kwargs):
        char = MagicMock(name=name)
        char.value = value
        char.set_value.side_effect = lambda new_value, **kwargs: setattr(char, "value", new_value)
        self.chars[name] = char
        self.callbacks[name] = (getter_callback, setter_callback)
        return char

    def getter(self, name):
        return self.callbacks[name][0]

    def setter(self, name):
        return self.callbacks[name][1]


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def accessory_config() -> LightAccessoryConfig:
    """Validated accessory configuration."""
    return parse_accessory_config(make_accessory_document())


@pytest.fixture
def router(accessory_config) -> TopicRouter:
    return TopicRouter(accessory_config.topics)


@pytest.fixture
def publish() -> MagicMock:
    """Stand-in for MQTTService.publish."""
    return MagicMock(return_value=True)


@pytest.fixture
def mirror(router, publish) -> DeviceStateMirror:
    return DeviceStateMirror(router, publish=publish)


@pytest.fixture
def hap_accessory():
    """
    Patch HAP-python's Accessory for the lightbulb module.

    Yields (MockAccessory, accessory instance, FakeLightbulbService,
    AccessoryInformation mock).
    """
    with patch("lightbridge.services.lightbulb_accessory.Accessory") as MockAccessory:
        mock_accessory = MagicMock()
        lightbulb_service = FakeLightbulbService()
        info_service = MagicMock()
        mock_accessory.add_preload_service.return_value = lightbulb_service
        mock_accessory.get_service.return_value = info_service
        MockAccessory.return_value = mock_accessory
        yield MockAccessory, mock_accessory, lightbulb_service, info_service


@pytest.fixture
def lightbulb(hap_accessory, accessory_config, mirror):
    """LightbulbAccessory wired to the mirror, on a mock driver."""
    from lightbridge.services.lightbulb_accessory import LightbulbAccessory

    return LightbulbAccessory(MagicMock(), accessory_config, mirror)
