"""
Unit tests for the Mqtt wrapper
Uses a mocked paho client so no broker is needed
"""

import json
from unittest.mock import Mock

import pytest
from paho.mqtt import client as paho

from ez1bridge.config import MqttConfig
from ez1bridge.mqtt import Mqtt


@pytest.fixture
def cli():
    client = Mock()
    client.is_connected.return_value = True
    client.publish.return_value = Mock(rc=paho.MQTT_ERR_SUCCESS)
    return client


@pytest.fixture
def mqtt(cli):
    return Mqtt(MqttConfig(base_topic="ez1mqtt", username="ez1", password="pw"), client=cli)


class TestSetup:
    """Test client configuration at construction"""

    def test_last_will(self, mqtt, cli):
        cli.will_set.assert_called_once_with("ez1mqtt/_status", json.dumps({"online": False}),
                                             qos=1, retain=True)
        assert mqtt.status_topic == "ez1mqtt/_status"

    def test_credentials(self, cli, mqtt):
        cli.username_pw_set.assert_called_once_with("ez1", "pw")

    def test_no_credentials(self):
        client = Mock()
        Mqtt(MqttConfig(), client=client)
        client.username_pw_set.assert_not_called()

    def test_connect_starts_loop(self, mqtt, cli):
        mqtt.connect()
        cli.connect_async.assert_called_once_with("localhost", 1883, keepalive=30)
        cli.loop_start.assert_called_once()


class TestPublish:
    """Test publishing"""

    def test_pub_compact_json(self, mqtt, cli):
        mqtt.pub("ez1mqtt/garage/status", {"isOnline": True, "totalPower_W": 200})

        cli.publish.assert_called_once_with("ez1mqtt/garage/status",
                                            '{"isOnline":true,"totalPower_W":200}',
                                            qos=0, retain=False)

    def test_pub_raw_retained(self, mqtt, cli):
        info = mqtt.pub_raw("ez1mqtt/garage/availability", "1", retain=True)

        cli.publish.assert_called_once_with("ez1mqtt/garage/availability", "1", qos=0, retain=True)
        assert info is cli.publish.return_value

    def test_not_connected(self, mqtt, cli):
        cli.is_connected.return_value = False

        assert mqtt.pub_raw("ez1mqtt/garage/availability", "0") is None
        cli.publish.assert_not_called()

    def test_heartbeat(self, mqtt, cli):
        mqtt.publish_heartbeat()

        topic, payload = cli.publish.call_args.args
        body = json.loads(payload)
        assert topic == "ez1mqtt/_status"
        assert body["online"] is True
        assert body["uptime_s"] >= 0
        assert cli.publish.call_args.kwargs["retain"] is True


class TestSubscribe:
    """Test subscriptions and message dispatch"""

    def test_sub_registers_callback(self, mqtt, cli):
        handler = Mock()
        mqtt.sub("ez1mqtt/garage/maxPower_W/set", handler)

        cli.subscribe.assert_called_once_with("ez1mqtt/garage/maxPower_W/set", qos=0)
        topic, callback = cli.message_callback_add.call_args.args
        assert topic == "ez1mqtt/garage/maxPower_W/set"

        callback(cli, None, Mock(topic=topic, payload=b"600"))
        handler.assert_called_once_with(topic, "600")

    def test_non_utf8_payload_dropped(self, mqtt, cli):
        handler = Mock()
        mqtt.sub("ez1mqtt/garage/maxPower_W/set", handler)
        _, callback = cli.message_callback_add.call_args.args

        callback(cli, None, Mock(topic="ez1mqtt/garage/maxPower_W/set", payload=b"\xff\xfe"))
        handler.assert_not_called()

    def test_sub_deferred_until_connected(self, mqtt, cli):
        cli.is_connected.return_value = False
        mqtt.sub("ez1mqtt/garage/maxPower_W/set", Mock())
        cli.subscribe.assert_not_called()

        cli.is_connected.return_value = True
        mqtt._on_connect(cli, None, None, Mock(is_failure=False))

        cli.subscribe.assert_called_once_with("ez1mqtt/garage/maxPower_W/set", qos=0)
        assert cli.publish.call_args.args[0] == "ez1mqtt/_status"

    def test_refused_connection(self, mqtt, cli):
        mqtt.sub("ez1mqtt/garage/maxPower_W/set", Mock())
        cli.subscribe.reset_mock()

        mqtt._on_connect(cli, None, None, Mock(is_failure=True))

        cli.subscribe.assert_not_called()
        cli.publish.assert_not_called()


class TestFlush:
    """Test the bounded shutdown flush"""

    def test_all_published(self, mqtt):
        infos = [Mock(is_published=Mock(return_value=True)) for _ in range(2)]

        assert mqtt.flush(infos, timeout=1.0) is True
        for info in infos:
            info.wait_for_publish.assert_called_once()

    def test_missing_info(self, mqtt):
        assert mqtt.flush([None], timeout=1.0) is False

    def test_wait_error(self, mqtt):
        info = Mock()
        info.wait_for_publish.side_effect = RuntimeError("not connected")

        assert mqtt.flush([info], timeout=1.0) is False

    def test_disconnect(self, mqtt, cli):
        mqtt.disconnect()
        cli.disconnect.assert_called_once()
        cli.loop_stop.assert_called_once()
