"""
Builders for the JSON payloads published per device.

Field names carry their unit as a suffix (``_W``, ``_kWh``) and timestamps are
unix seconds.
"""
from typing import Any, Dict, Optional

from ez1bridge.device_state import DeviceRecord
from ez1bridge.models import AlarmInfo, DeviceInfo, MaxPower, Number, OutputData

ALARM_RAISED = "1"

CHANNEL_FIELDS = (
    "channel1Power_W",
    "channel1EnergySinceStartup_kWh",
    "channel1EnergyLifetime_kWh",
    "channel2Power_W",
    "channel2EnergySinceStartup_kWh",
    "channel2EnergyLifetime_kWh",
)
TOTAL_FIELDS = (
    "totalPower_W",
    "totalEnergySinceStartup_kWh",
    "totalEnergyLifetime_kWh",
)
ALARM_FIELDS = (
    "isOffGrid",
    "isOutputFault",
    "isChannel1ShortCircuit",
    "isChannel2ShortCircuit",
)


def _sum(a: Optional[Number], b: Optional[Number]) -> Optional[Number]:
    if a is None or b is None:
        return None
    return a + b


def output_fields(output: Optional[OutputData]) -> Dict[str, Optional[Number]]:
    if output is None:
        return {key: None for key in CHANNEL_FIELDS + TOTAL_FIELDS}
    fields = {
        "channel1Power_W": output.p1,
        "channel1EnergySinceStartup_kWh": output.e1,
        "channel1EnergyLifetime_kWh": output.te1,
        "channel2Power_W": output.p2,
        "channel2EnergySinceStartup_kWh": output.e2,
        "channel2EnergyLifetime_kWh": output.te2,
    }
    fields["totalPower_W"] = _sum(output.p1, output.p2)
    fields["totalEnergySinceStartup_kWh"] = _sum(output.e1, output.e2)
    fields["totalEnergyLifetime_kWh"] = _sum(output.te1, output.te2)
    return fields


def alarm_fields(alarm: Optional[AlarmInfo]) -> Dict[str, Optional[bool]]:
    if alarm is None:
        return {key: None for key in ALARM_FIELDS}
    return {
        "isOffGrid": alarm.og == ALARM_RAISED,
        "isOutputFault": alarm.oe == ALARM_RAISED,
        "isChannel1ShortCircuit": alarm.isce1 == ALARM_RAISED,
        "isChannel2ShortCircuit": alarm.isce2 == ALARM_RAISED,
    }


def build_status_payload(record: DeviceRecord, output: Optional[OutputData],
                         alarm: Optional[AlarmInfo], now: int) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "observedAt": now,
        "isOnline": record.is_online,
        "deviceLastSeenAt": record.last_seen_at,
    }
    payload.update(output_fields(output))
    payload.update(alarm_fields(alarm))
    return payload


def build_info_payload(record: DeviceRecord, info: DeviceInfo, now: int) -> Dict[str, Any]:
    return {
        "observedAt": now,
        "deviceIdentifier": info.device_id,
        "deviceVersion": info.dev_ver,
        "wifiNetworkSSID": info.ssid,
        "deviceIPAddress": info.ip_addr,
        "minimumPowerOutput_W": record.min_power,
        "maximumPowerOutput_W": record.max_power,
        "deviceDescription": record.description,
    }


def build_max_power_payload(limit: MaxPower, now: int) -> Dict[str, Any]:
    return {
        "observedAt": now,
        "maximumPowerOutput_W": limit.power,
    }
