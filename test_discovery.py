"""
Unit tests for Home Assistant discovery
Tests the descriptor catalog and the rendered discovery messages
"""

from unittest.mock import Mock

import pytest

from ez1bridge.config import DeviceConfig
from ez1bridge.device_state import DeviceRecord
from ez1bridge.ha.discovery import (
    DESCRIPTORS, HADiscoveryPublisher, build_discovery_messages,
    DEFAULT_MIN_POWER_W, DEFAULT_MAX_POWER_W,
)
from ez1bridge.payloads import CHANNEL_FIELDS, TOTAL_FIELDS, ALARM_FIELDS

DEVICE_ID = "E17000000001"


class TestCatalog:
    """Test the static descriptor catalog"""

    def test_catalog_shape(self):
        kinds = [d.component for d in DESCRIPTORS]
        assert len(DESCRIPTORS) == 14
        assert kinds.count("sensor") == 9
        assert kinds.count("binary_sensor") == 4
        assert kinds.count("number") == 1

    def test_catalog_covers_status_payload(self):
        keys = {d.key for d in DESCRIPTORS if not d.writable}
        assert keys == set(CHANNEL_FIELDS + TOTAL_FIELDS + ALARM_FIELDS)

    def test_keys_unique(self):
        keys = [d.key for d in DESCRIPTORS]
        assert len(keys) == len(set(keys))


class TestBuildDiscoveryMessages:
    """Test rendered discovery topics and payloads"""

    @pytest.fixture
    def messages(self):
        return build_discovery_messages(DEVICE_ID, "garage", "garage", "ez1mqtt",
                                        "homeassistant", min_power=30, max_power=800)

    def test_topics(self, messages):
        topics = [t for t, _ in messages]
        assert topics[0] == f"homeassistant/sensor/{DEVICE_ID}/channel1Power_W/config"
        assert f"homeassistant/binary_sensor/{DEVICE_ID}/isOffGrid/config" in topics
        assert topics[-1] == f"homeassistant/number/{DEVICE_ID}/maxPower_W/config"

    def test_shared_device_block(self, messages):
        devices = [p["device"] for _, p in messages]
        assert all(d == devices[0] for d in devices)
        assert devices[0] == {
            "identifiers": [DEVICE_ID],
            "name": "garage",
            "model": "EZ1 Microinverter",
            "manufacturer": "APsystems",
        }

    def test_sensor_payload(self, messages):
        payload = dict(messages)[f"homeassistant/sensor/{DEVICE_ID}/totalEnergyLifetime_kWh/config"]
        assert payload["unique_id"] == f"{DEVICE_ID}_totalEnergyLifetime_kWh"
        assert payload["state_topic"] == "ez1mqtt/garage/status"
        assert payload["value_template"] == "{{ value_json.totalEnergyLifetime_kWh }}"
        assert payload["unit_of_measurement"] == "kWh"
        assert payload["device_class"] == "energy"
        assert payload["state_class"] == "total_increasing"
        assert payload["availability_topic"] == "ez1mqtt/garage/availability"
        assert payload["payload_available"] == "1"
        assert payload["payload_not_available"] == "0"

    def test_binary_sensor_payload(self, messages):
        payload = dict(messages)[f"homeassistant/binary_sensor/{DEVICE_ID}/isOutputFault/config"]
        assert payload["device_class"] == "problem"
        assert payload["payload_on"] is True
        assert payload["payload_off"] is False
        assert "unit_of_measurement" not in payload

    def test_number_payload(self, messages):
        payload = dict(messages)[f"homeassistant/number/{DEVICE_ID}/maxPower_W/config"]
        assert payload["command_topic"] == "ez1mqtt/garage/maxPower_W/set"
        assert payload["state_topic"] == "ez1mqtt/garage/maxPower_W"
        assert payload["value_template"] == "{{ value_json.maximumPowerOutput_W }}"
        assert payload["min"] == 30
        assert payload["max"] == 800

    def test_number_defaults_without_bounds(self):
        messages = dict(build_discovery_messages(DEVICE_ID, None, DEVICE_ID, "ez1mqtt"))
        payload = messages[f"homeassistant/number/{DEVICE_ID}/maxPower_W/config"]
        assert payload["min"] == DEFAULT_MIN_POWER_W
        assert payload["max"] == DEFAULT_MAX_POWER_W
        assert payload["device"]["name"] == DEVICE_ID


class TestHADiscoveryPublisher:
    """Test the one-shot publisher"""

    def test_publishes_once(self):
        mqtt = Mock()
        record = DeviceRecord(DeviceConfig(ip="10.0.0.2"))
        record.assign_device_id(DEVICE_ID)
        publisher = HADiscoveryPublisher(mqtt, "ez1mqtt/", "custom_prefix/")

        assert publisher.publish_for_device(record) is True
        assert publisher.publish_for_device(record) is False

        assert mqtt.pub.call_count == len(DESCRIPTORS)
        for call in mqtt.pub.call_args_list:
            assert call.args[0].startswith("custom_prefix/")
            assert call.kwargs["retain"] is True
        assert record.discovery_published is True

    def test_skips_without_device_id(self):
        mqtt = Mock()
        record = DeviceRecord(DeviceConfig(ip="10.0.0.2", nickname="garage"))

        assert HADiscoveryPublisher(mqtt, "ez1mqtt").publish_for_device(record) is False
        mqtt.pub.assert_not_called()
        assert record.discovery_published is False
