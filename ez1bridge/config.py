import logging
import os
from typing import Optional, List, Dict, Any, Mapping
from pydantic import BaseModel, Field, field_validator, model_validator

log = logging.getLogger(__name__)

class DeviceConfig(BaseModel):
    ip: str
    nickname: Optional[str] = None  # used as the MQTT topic segment when set
    description: Optional[str] = None

    @field_validator("ip")
    @classmethod
    def ip_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("device ip must not be empty")
        return v

class MqttConfig(BaseModel):
    host: str = "localhost"
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None
    base_topic: str = "ez12mqtt"
    client_id: str = "ez1-bridge"
    keepalive: int = 30
    heartbeat_secs: float = Field(gt=0, default=30.0)

    @field_validator("base_topic")
    @classmethod
    def strip_base_topic(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v:
            raise ValueError("base_topic must not be empty")
        return v

class PollingConfig(BaseModel):
    interval_secs: float = Field(gt=0, default=30.0)
    timeout_secs: float = Field(gt=0, default=5.0)

class HomeAssistantConfig(BaseModel):
    enabled: bool = False
    discovery_prefix: str = "homeassistant"

class LoggingConfig(BaseModel):
    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @field_validator("level")
    @classmethod
    def known_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v}")
        return v

class BridgeConfig(BaseModel):
    devices: List[DeviceConfig] = Field(min_length=1)
    mqtt: MqttConfig = MqttConfig()
    polling: PollingConfig = PollingConfig()
    homeassistant: HomeAssistantConfig = HomeAssistantConfig()
    logging: LoggingConfig = LoggingConfig()

    @model_validator(mode='after')
    def unique_devices(self):
        """Device addresses and nicknames key the runtime lookups, so both must be unique."""
        ips = [d.ip for d in self.devices]
        if len(set(ips)) != len(ips):
            raise ValueError("duplicate device ip in configuration")
        nicknames = [d.nickname for d in self.devices if d.nickname]
        if len(set(nicknames)) != len(nicknames):
            raise ValueError("duplicate device nickname in configuration")
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BridgeConfig":
        """
        Build the configuration from environment variables.

        Devices are read from DEVICE_1_IP, DEVICE_2_IP, ... until the first
        index that is not set. NICKNAME and DESCRIPTION are optional per device.
        """
        env = os.environ if environ is None else environ
        data: Dict[str, Any] = {"devices": _devices_from_env(env)}

        mqtt: Dict[str, Any] = {}
        for key, var in (("host", "MQTT_HOST"), ("port", "MQTT_PORT"), ("username", "MQTT_USER"),
                         ("password", "MQTT_PASSWORD"), ("base_topic", "MQTT_BASE_TOPIC")):
            if env.get(var):
                mqtt[key] = env[var]
        data["mqtt"] = mqtt

        if env.get("POLL_INTERVAL"):
            data["polling"] = {"interval_secs": env["POLL_INTERVAL"]}

        ha: Dict[str, Any] = {}
        if env.get("HOMEASSISTANT_ENABLE"):
            ha["enabled"] = env["HOMEASSISTANT_ENABLE"].strip().lower() in ("1", "true", "yes", "on")
        if env.get("HOMEASSISTANT_DISCOVERY_PREFIX"):
            ha["discovery_prefix"] = env["HOMEASSISTANT_DISCOVERY_PREFIX"]
        data["homeassistant"] = ha

        if env.get("LOG_LEVEL"):
            data["logging"] = {"level": env["LOG_LEVEL"]}

        return cls.model_validate(data)


def _devices_from_env(env: Mapping[str, str]) -> List[Dict[str, Any]]:
    devices = []
    i = 1
    while f"DEVICE_{i}_IP" in env:
        ip = env[f"DEVICE_{i}_IP"].strip()
        if not ip:
            log.error(f"DEVICE_{i}_IP is defined but empty. Skipping device {i}.")
            i += 1
            continue
        device: Dict[str, Any] = {"ip": ip}
        if env.get(f"DEVICE_{i}_NICKNAME"):
            device["nickname"] = env[f"DEVICE_{i}_NICKNAME"]
        if env.get(f"DEVICE_{i}_DESCRIPTION"):
            device["description"] = env[f"DEVICE_{i}_DESCRIPTION"]
        devices.append(device)
        i += 1
    return devices
