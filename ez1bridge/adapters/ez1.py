import asyncio
import logging
import time
from typing import Optional, Type, TypeVar, Dict, Any

import aiohttp
from pydantic import BaseModel, ValidationError

from ez1bridge.models import ApiEnvelope, DeviceInfo, OutputData, MaxPower, AlarmInfo

log = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

API_PORT = 8050
DEFAULT_TIMEOUT_SECS = 5.0


class EZ1Client:
    """
    Client for the EZ1 microinverter local API (http://<ip>:8050).

    Every call returns the parsed ``data`` block on success and ``None`` on any
    failure. Nothing is retried here; the next poll cycle is the retry.
    """

    def __init__(self, ip: str, session: aiohttp.ClientSession, timeout: float = DEFAULT_TIMEOUT_SECS,
                 port: int = API_PORT):
        self.ip = ip
        self.session = session
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.base_url = f"http://{ip}:{port}"

    async def _get(self, endpoint: str, model: Type[T], params: Optional[Dict[str, Any]] = None) -> Optional[T]:
        url = f"{self.base_url}{endpoint}"
        started = time.monotonic()
        try:
            async with self.session.get(url, params=params, timeout=self.timeout) as resp:
                elapsed_ms = int((time.monotonic() - started) * 1000)
                if resp.status != 200:
                    text = await resp.text()
                    log.info(f"API error response - URL: {url}, Time: {elapsed_ms}ms, Status: {resp.status}, Body: {text}")
                    return None
                body = await resp.json(content_type=None)
                log.debug(f"API response - URL: {url}, Time: {elapsed_ms}ms, Status: {resp.status}, Body: {body}")
        except aiohttp.ClientConnectorError as e:
            # Refused, unreachable or unresolvable: the inverter is asleep or off the network
            log.debug(f"Device {self.ip} is offline or unreachable for {endpoint}: {e}")
            return None
        except asyncio.TimeoutError:
            log.warning(f"Request to {self.ip}{endpoint} timed out after {self.timeout.total}s")
            return None
        except (aiohttp.ClientError, ValueError) as e:
            log.error(f"Error fetching data from {self.ip}{endpoint}: {e}")
            return None

        try:
            envelope = ApiEnvelope.model_validate(body)
        except ValidationError as e:
            log.error(f"Malformed response from {self.ip}{endpoint}: {e}")
            return None
        if envelope.message != "SUCCESS":
            log.warning(f"API call to {self.ip}{endpoint} returned non-success message: {envelope.message}")
            return None
        try:
            return model.model_validate(envelope.data)
        except ValidationError as e:
            log.error(f"Unexpected data from {self.ip}{endpoint}: {e}")
            return None

    async def get_device_info(self) -> Optional[DeviceInfo]:
        return await self._get("/getDeviceInfo", DeviceInfo)

    async def get_output_data(self) -> Optional[OutputData]:
        return await self._get("/getOutputData", OutputData)

    async def get_max_power(self) -> Optional[MaxPower]:
        return await self._get("/getMaxPower", MaxPower)

    async def get_alarm(self) -> Optional[AlarmInfo]:
        return await self._get("/getAlarm", AlarmInfo)

    async def set_max_power(self, power: int) -> Optional[MaxPower]:
        """Set the output power limit in watts. Returns the limit the device acknowledged."""
        return await self._get("/setMaxPower", MaxPower, params={"p": int(power)})
