import asyncio, logging, sys
from typing import List, Optional

import aiohttp

from ez1bridge.config import BridgeConfig
from ez1bridge.mqtt import Mqtt
from ez1bridge.adapters.ez1 import EZ1Client
from ez1bridge.device_state import DeviceRecord
from ez1bridge.ha.command_handler import PowerLimitCommandHandler
from ez1bridge.ha.discovery import HADiscoveryPublisher
from ez1bridge.reconciler import DeviceReconciler
from ez1bridge.registry import DeviceRegistry


log = logging.getLogger(__name__)

SHUTDOWN_FLUSH_SECS = 2.0
BROKER_WAIT_SECS = 10.0


class BridgeApp:
    """
    Polls every configured EZ1 inverter and mirrors it to MQTT.

    Topics:
      - <base>/<device>/availability, status, info, maxPower_W  -> see DeviceReconciler
      - <base>/<device>/maxPower_W/set                          -> power limit commands
      - <base>/_status                                          -> bridge heartbeat / last will
    """
    def __init__(self, cfg: BridgeConfig, mqtt_client: Optional[Mqtt] = None):
        self.cfg = cfg
        self._configure_logging()
        self.mqtt = mqtt_client or Mqtt(cfg.mqtt)
        self.registry = DeviceRegistry()
        self.session: Optional[aiohttp.ClientSession] = None
        self.ha: Optional[HADiscoveryPublisher] = None
        if cfg.homeassistant.enabled:
            self.ha = HADiscoveryPublisher(self.mqtt, cfg.mqtt.base_topic, cfg.homeassistant.discovery_prefix)
        self.commands = PowerLimitCommandHandler(self.mqtt, self.registry, cfg.mqtt.base_topic)
        self._tasks: List[asyncio.Task] = []

    def _configure_logging(self):
        """Configure logging based on config settings."""
        log_config = self.cfg.logging
        root_logger = logging.getLogger()
        log_level = getattr(logging, log_config.level.upper())
        root_logger.setLevel(log_level)

        if not root_logger.handlers:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(log_level)
            console_handler.setFormatter(logging.Formatter(log_config.format))
            root_logger.addHandler(console_handler)

        logging.getLogger("ez1bridge").setLevel(log_level)
        # Library chatter (reconnects, connection pool) is not actionable here
        logging.getLogger("paho").setLevel(logging.WARNING)
        logging.getLogger("aiohttp").setLevel(logging.WARNING)
        log.info(f"Logging configured - Level: {log_config.level}")

    async def init(self):
        self.commands.loop = asyncio.get_running_loop()
        self.session = aiohttp.ClientSession()
        for dev in self.cfg.devices:
            record = DeviceRecord(dev)
            client = EZ1Client(dev.ip, self.session, timeout=self.cfg.polling.timeout_secs)
            rc = DeviceReconciler(
                record,
                client,
                self.mqtt,
                self.cfg.mqtt.base_topic,
                discovery=self.ha,
                on_topic_assigned=self._on_topic_assigned,
            )
            self.registry.add(rc)
            if record.nickname:
                self.commands.subscribe(record.topic)
        self.mqtt.connect()
        await self._wait_for_broker(BROKER_WAIT_SECS)
        log.info(f"Configured {len(self.registry)} device(s), polling every {self.cfg.polling.interval_secs}s")

    async def _wait_for_broker(self, timeout: float) -> bool:
        """Give the broker connection a head start so the first poll's availability is not dropped."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not self.mqtt.connected:
            if loop.time() >= deadline:
                log.warning(f"MQTT broker not connected after {timeout}s, starting to poll anyway")
                return False
            await asyncio.sleep(0.1)
        return True

    def _on_topic_assigned(self, rc: DeviceReconciler, old_topic: str) -> None:
        self.registry.retopic(rc, old_topic)
        self.commands.subscribe(rc.record.topic)

    # ---------- Main loop ----------
    async def run(self):
        log.info("Starting EZ1 bridge main loop")
        self._tasks = [asyncio.create_task(self._device_loop(rc), name=f"poll-{rc.record.ip}")
                       for rc in self.registry]
        self._tasks.append(asyncio.create_task(self._heartbeat_loop(), name="heartbeat"))
        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            log.info("Main loop cancelled")
            raise
        except Exception as e:
            log.error(f"Fatal error in main loop: {e}", exc_info=True)
            raise
        finally:
            for task in self._tasks:
                task.cancel()

    async def _device_loop(self, rc: DeviceReconciler):
        """Poll one device immediately, then on a fixed interval. A slow poll only delays this device."""
        loop = asyncio.get_running_loop()
        interval = self.cfg.polling.interval_secs
        next_at = loop.time()
        while True:
            try:
                await rc.poll()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error(f"Unexpected error polling {rc.record.ip}: {e}", exc_info=True)
            next_at += interval
            now = loop.time()
            if next_at < now:
                log.debug(f"Poll of {rc.record.ip} overran the interval, polling again immediately")
                next_at = now
            await asyncio.sleep(next_at - now)

    async def _heartbeat_loop(self):
        while True:
            await asyncio.sleep(self.cfg.mqtt.heartbeat_secs)
            self.mqtt.publish_heartbeat()

    async def shutdown(self):
        """Mark online devices unavailable, give the broker a moment to receive it, then disconnect."""
        log.info("Shutting down...")
        for task in self._tasks:
            task.cancel()
        infos = [rc.publish_offline() for rc in self.registry.online()]
        if infos:
            flushed = await asyncio.to_thread(self.mqtt.flush, infos, SHUTDOWN_FLUSH_SECS)
            if not flushed:
                log.warning("Not every offline availability message was confirmed before disconnecting")
        self.mqtt.disconnect()
        if self.session is not None:
            await self.session.close()
        log.info("Shutdown complete")
