# discovery.py
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ez1bridge.device_state import DeviceRecord
from ez1bridge.models import Number

log = logging.getLogger("ez1bridge.ha.discovery")

DISCOVERY_PREFIX = "homeassistant"
MANUFACTURER = "APsystems"
MODEL = "EZ1 Microinverter"

# EZ1 output range, used for the number entity when the device did not report one
DEFAULT_MIN_POWER_W = 30
DEFAULT_MAX_POWER_W = 800

POWER_LIMIT_KEY = "maxPower_W"


@dataclass(frozen=True)
class DiscoveryDescriptor:
    key: str
    name: str
    component: str  # "sensor" | "binary_sensor" | "number"
    unit: Optional[str] = None
    device_class: Optional[str] = None
    state_class: Optional[str] = None
    writable: bool = False


def _power(key: str, name: str) -> DiscoveryDescriptor:
    return DiscoveryDescriptor(key, name, "sensor", "W", "power", "measurement")


def _energy(key: str, name: str) -> DiscoveryDescriptor:
    # Lifetime counters only ever grow, since-startup ones reset with the device: both are total_increasing
    return DiscoveryDescriptor(key, name, "sensor", "kWh", "energy", "total_increasing")


def _problem(key: str, name: str) -> DiscoveryDescriptor:
    return DiscoveryDescriptor(key, name, "binary_sensor", device_class="problem")


DESCRIPTORS: Tuple[DiscoveryDescriptor, ...] = (
    _power("channel1Power_W", "Channel 1 Power"),
    _energy("channel1EnergySinceStartup_kWh", "Channel 1 Energy Since Startup"),
    _energy("channel1EnergyLifetime_kWh", "Channel 1 Energy Lifetime"),
    _power("channel2Power_W", "Channel 2 Power"),
    _energy("channel2EnergySinceStartup_kWh", "Channel 2 Energy Since Startup"),
    _energy("channel2EnergyLifetime_kWh", "Channel 2 Energy Lifetime"),
    _power("totalPower_W", "Total Power"),
    _energy("totalEnergySinceStartup_kWh", "Total Energy Since Startup"),
    _energy("totalEnergyLifetime_kWh", "Total Energy Lifetime"),
    _problem("isOffGrid", "Off-Grid"),
    _problem("isOutputFault", "Output Fault"),
    _problem("isChannel1ShortCircuit", "Channel 1 Short Circuit"),
    _problem("isChannel2ShortCircuit", "Channel 2 Short Circuit"),
    DiscoveryDescriptor(POWER_LIMIT_KEY, "Maximum Power Output", "number", "W", "power", writable=True),
)


def _or_default(value: Optional[Number], default: int) -> Number:
    return value if value is not None else default


def build_discovery_messages(
    device_id: str,
    name: Optional[str],
    device_topic: str,
    base_topic: str,
    discovery_prefix: str = DISCOVERY_PREFIX,
    min_power: Optional[Number] = None,
    max_power: Optional[Number] = None,
) -> List[Tuple[str, Dict[str, Any]]]:
    """
    Render the discovery catalog for one device.

    Returns ``(topic, payload)`` pairs in catalog order. Topics are
    ``<prefix>/<component>/<device_id>/<key>/config``.
    """
    base = f"{base_topic.rstrip('/')}/{device_topic}"
    prefix = discovery_prefix.rstrip("/")
    device = {
        "identifiers": [device_id],
        "name": name or device_id,
        "model": MODEL,
        "manufacturer": MANUFACTURER,
    }

    messages = []
    for d in DESCRIPTORS:
        payload: Dict[str, Any] = {
            "name": d.name,
            "unique_id": f"{device_id}_{d.key}",
            "device": device,
            "availability_topic": f"{base}/availability",
            "payload_available": "1",
            "payload_not_available": "0",
        }
        if d.writable:
            payload["state_topic"] = f"{base}/{d.key}"
            payload["value_template"] = "{{ value_json.maximumPowerOutput_W }}"
            payload["command_topic"] = f"{base}/{d.key}/set"
            payload["min"] = _or_default(min_power, DEFAULT_MIN_POWER_W)
            payload["max"] = _or_default(max_power, DEFAULT_MAX_POWER_W)
            payload["step"] = 1
            payload["mode"] = "box"
        else:
            payload["state_topic"] = f"{base}/status"
            payload["value_template"] = f"{{{{ value_json.{d.key} }}}}"
        if d.component == "binary_sensor":
            payload["payload_on"] = True
            payload["payload_off"] = False
        if d.unit:
            payload["unit_of_measurement"] = d.unit
        if d.device_class:
            payload["device_class"] = d.device_class
        if d.state_class:
            payload["state_class"] = d.state_class
        messages.append((f"{prefix}/{d.component}/{device_id}/{d.key}/config", payload))
    return messages


class HADiscoveryPublisher:
    """Publishes the retained discovery catalog for a device, once per process lifetime."""

    def __init__(self, mqtt_client, base_topic: str, discovery_prefix: str = DISCOVERY_PREFIX) -> None:
        self.mqtt = mqtt_client
        self.base_topic = base_topic.rstrip("/")
        self.discovery_prefix = discovery_prefix.rstrip("/")

    def publish_for_device(self, record: DeviceRecord) -> bool:
        """
        Publish every discovery message for ``record``.

        Does nothing when the device identifier is still unknown or when the
        catalog was already published for this device.
        """
        if record.device_id is None:
            log.debug(f"Skipping discovery for {record.ip}: device id not known yet")
            return False
        if record.discovery_published:
            return False

        log.info(f"Publishing Home Assistant discovery messages for device {record.device_id}")
        messages = build_discovery_messages(
            record.device_id,
            record.display_name,
            record.topic,
            self.base_topic,
            self.discovery_prefix,
            record.min_power,
            record.max_power,
        )
        for topic, payload in messages:
            self.mqtt.pub(topic, payload, retain=True)
        record.mark_discovery_published()
        return True
