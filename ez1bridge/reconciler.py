import logging
import time
from typing import Callable, Optional

from ez1bridge.adapters.ez1 import EZ1Client
from ez1bridge.device_state import DeviceRecord, Transition
from ez1bridge.ha.discovery import HADiscoveryPublisher, POWER_LIMIT_KEY
from ez1bridge.models import DeviceInfo, MaxPower
from ez1bridge.payloads import build_info_payload, build_max_power_payload, build_status_payload

log = logging.getLogger(__name__)


def unix_now() -> int:
    return int(time.time())


class DeviceReconciler:
    """
    Brings the published MQTT state of one inverter in line with what the device reports.

    Topics, under ``<base>/<record.topic>``:
      - availability   -> "1"/"0", retained, when the link state changes or the segment moves
      - status         -> status payload, every poll
      - maxPower_W     -> current power limit, retained
      - info           -> identity payload, retained, whenever the device comes online
    """

    def __init__(
        self,
        record: DeviceRecord,
        client: EZ1Client,
        mqtt_client,
        base_topic: str,
        discovery: Optional[HADiscoveryPublisher] = None,
        on_topic_assigned: Optional[Callable[["DeviceReconciler", str], None]] = None,
        clock: Callable[[], int] = unix_now,
    ):
        self.record = record
        self.client = client
        self.mqtt = mqtt_client
        self.base_topic = base_topic.rstrip("/")
        self.discovery = discovery
        self.on_topic_assigned = on_topic_assigned
        self.clock = clock

    def topic(self, leaf: str) -> str:
        return f"{self.base_topic}/{self.record.topic}/{leaf}"

    async def poll(self) -> Transition:
        """Run one full poll sequence. Publish order: availability, status, power limit, info, discovery."""
        rec = self.record
        log.debug(f"Polling device: {rec.ip}")

        output = await self.client.get_output_data()
        alarm = await self.client.get_alarm()
        now = self.clock()

        transition = rec.record_poll(output is not None, now)
        if transition is not Transition.NONE:
            self.mqtt.pub_raw(self.topic("availability"), "1" if rec.is_online else "0", retain=True)

        self.mqtt.pub(self.topic("status"), build_status_payload(rec, output, alarm, now))

        if rec.is_online:
            await self.refresh_power_limit()

        if transition is Transition.CAME_ONLINE:
            log.info(f"Device {rec.ip} is now online. Fetching info.")
            await self.refresh_identity()
            await self.refresh_power_limit()
            if self.discovery is not None and not rec.discovery_published:
                self.discovery.publish_for_device(rec)
        elif transition is Transition.WENT_OFFLINE:
            log.warning(f"Device {rec.ip} went offline.")
        return transition

    async def refresh_identity(self) -> Optional[DeviceInfo]:
        rec = self.record
        info = await self.client.get_device_info()
        if info is None:
            log.warning(f"Could not fetch device info for {rec.ip}")
            return None

        old_topic = rec.assign_device_id(info.device_id)
        if old_topic is not None:
            log.info(f"Device {rec.ip} publishes under {rec.topic} (was {old_topic})")
            if self.on_topic_assigned is not None:
                self.on_topic_assigned(self, old_topic)
            # The new segment has never carried availability; discovery points at it
            if rec.is_online:
                self.mqtt.pub_raw(self.topic("availability"), "1", retain=True)
        elif rec.device_id != info.device_id:
            log.warning(f"Device {rec.ip} now reports id {info.device_id}, keeping {rec.device_id}")
        rec.update_bounds(info.min_power, info.max_power)

        payload = build_info_payload(rec, info, self.clock())
        self.mqtt.pub(self.topic("info"), payload, retain=True)
        log.debug(f"Published info topic for {rec.topic}: {payload}")
        rec.mark_identity_published()
        return info

    async def refresh_power_limit(self) -> Optional[MaxPower]:
        rec = self.record
        limit = await self.client.get_max_power()
        if limit is None:
            return None
        if rec.max_power is None:
            # Identity did not report a ceiling; the current limit is the best bound available
            rec.update_bounds(max_power=limit.power)
        payload = build_max_power_payload(limit, self.clock())
        self.mqtt.pub(self.topic(POWER_LIMIT_KEY), payload, retain=True)
        log.debug(f"Published {POWER_LIMIT_KEY} topic for {rec.topic}: {payload}")
        return limit

    def publish_offline(self):
        """Announce the device as unavailable. Returns the publish handle for flushing."""
        return self.mqtt.pub_raw(self.topic("availability"), "0", retain=True)
