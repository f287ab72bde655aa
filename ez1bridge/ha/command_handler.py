"""
Handles power-limit commands from Home Assistant (or any MQTT client).

Topic: <base>/<device topic>/maxPower_W/set, payload: plain integer watts.
"""
import asyncio
import logging
import re
from typing import Optional

from ez1bridge.ha.discovery import POWER_LIMIT_KEY
from ez1bridge.registry import DeviceRegistry

log = logging.getLogger(__name__)

# Optional sign followed by ASCII digits
_INTEGER = re.compile(r"[+-]?[0-9]+")


class PowerLimitCommandHandler:
    """Validates power-limit commands against the device's bounds and applies them."""

    def __init__(self, mqtt_client, registry: DeviceRegistry, base_topic: str,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self.mqtt = mqtt_client
        self.registry = registry
        self.base_topic = base_topic.rstrip("/")
        self.loop = loop

    def command_topic(self, device_topic: str) -> str:
        return f"{self.base_topic}/{device_topic}/{POWER_LIMIT_KEY}/set"

    def device_topic_from(self, topic: str) -> Optional[str]:
        prefix = f"{self.base_topic}/"
        suffix = f"/{POWER_LIMIT_KEY}/set"
        if not (topic.startswith(prefix) and topic.endswith(suffix)):
            return None
        segment = topic[len(prefix):len(topic) - len(suffix)]
        return segment or None

    def subscribe(self, device_topic: str) -> None:
        self.mqtt.sub(self.command_topic(device_topic), self.on_message)
        log.info(f"Listening for power limit commands on {self.command_topic(device_topic)}")

    def on_message(self, topic: str, payload: str) -> None:
        """MQTT callback; runs on the MQTT network thread and hands off to the event loop."""
        if self.loop is None or self.loop.is_closed():
            log.warning(f"Event loop not available, dropping command on {topic}")
            return
        fut = asyncio.run_coroutine_threadsafe(self.handle_command(topic, payload), self.loop)
        fut.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(fut) -> None:
        if not fut.cancelled() and fut.exception() is not None:
            log.error("Power limit command failed", exc_info=fut.exception())

    @staticmethod
    def parse_power(payload: str) -> Optional[int]:
        text = str(payload).strip()
        if not _INTEGER.fullmatch(text):
            return None
        return int(text)

    async def handle_command(self, topic: str, payload: str) -> bool:
        """Apply one command. Returns True when the device accepted the new limit."""
        device_topic = self.device_topic_from(topic)
        rc = self.registry.by_topic(device_topic) if device_topic else None
        if rc is None:
            log.warning(f"Received setMaxPower command for unknown device: {device_topic or topic}")
            return False

        rec = rc.record
        power = self.parse_power(payload)
        if power is None or not rec.bounds_known or not (rec.min_power <= power <= rec.max_power):
            log.warning(f"Invalid power value received for {device_topic}: {payload!r} "
                        f"(bounds: {rec.min_power}..{rec.max_power})")
            return False

        log.info(f"Setting max power for {device_topic} to {power}")
        result = await rc.client.set_max_power(power)
        if result is None:
            log.error(f"Failed to set max power for {device_topic}")
            return False

        log.debug(f"setMaxPower successful for {device_topic}. Re-publishing {POWER_LIMIT_KEY} topic.")
        await rc.refresh_power_limit()
        return True
