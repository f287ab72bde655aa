"""
Response models for the EZ1 local HTTP API.

Every endpoint answers with the same envelope::

    {"data": {...}, "message": "SUCCESS", "deviceId": "E07000000001"}
"""
from typing import Any, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

# Whole-number readings parse to int, fractional ones to float
Number = Union[int, float]


class ApiEnvelope(BaseModel):
    data: Any = None
    message: str
    device_id: Optional[str] = Field(default=None, alias="deviceId")


class DeviceInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    device_id: str = Field(alias="deviceId")
    dev_ver: Optional[str] = Field(default=None, alias="devVer")
    ssid: Optional[str] = None
    ip_addr: Optional[str] = Field(default=None, alias="ipAddr")
    # The device reports its power range as strings, e.g. "30" / "800"
    min_power: Optional[Number] = Field(default=None, alias="minPower")
    max_power: Optional[Number] = Field(default=None, alias="maxPower")


class OutputData(BaseModel):
    """Instantaneous power (W), since-startup energy (kWh) and lifetime energy (kWh) per channel."""
    p1: Number
    e1: Number
    te1: Number
    p2: Number
    e2: Number
    te2: Number


class MaxPower(BaseModel):
    power: Number


class AlarmInfo(BaseModel):
    """Alarm flags; each is "1" when raised and "0" otherwise."""
    og: str   # off-grid
    isce1: str  # channel 1 short circuit
    isce2: str  # channel 2 short circuit
    oe: str   # output fault
