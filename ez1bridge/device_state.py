"""
Per-device runtime state.

One ``DeviceRecord`` exists per configured inverter for the lifetime of the
process. It is owned by that device's reconciler; every change goes through
one of the methods below.
"""
from enum import Enum
from typing import Optional

from ez1bridge.config import DeviceConfig
from ez1bridge.models import Number


class LinkState(str, Enum):
    UNKNOWN = "unknown"
    ONLINE = "online"
    OFFLINE = "offline"


class Transition(str, Enum):
    NONE = "none"
    CAME_ONLINE = "came_online"
    WENT_OFFLINE = "went_offline"


def placeholder_topic(ip: str) -> str:
    """Topic segment used for an unlabeled device until its identifier is known."""
    return "".join(ch if ch.isalnum() else "_" for ch in ip.strip())


class DeviceRecord:
    def __init__(self, cfg: DeviceConfig):
        self.ip = cfg.ip
        self.nickname = cfg.nickname
        self.description = cfg.description
        self.device_id: Optional[str] = None
        self.topic = cfg.nickname or placeholder_topic(cfg.ip)
        self.state = LinkState.UNKNOWN
        self.last_seen_at: Optional[int] = None
        self.min_power: Optional[Number] = None
        self.max_power: Optional[Number] = None
        self.identity_published = False
        self.discovery_published = False

    @property
    def key(self) -> str:
        return self.ip

    @property
    def is_online(self) -> bool:
        return self.state is LinkState.ONLINE

    @property
    def display_name(self) -> str:
        return self.nickname or self.device_id or self.ip

    def record_poll(self, online: bool, now: int) -> Transition:
        """
        Apply one poll outcome and report the transition it caused.

        Leaving UNKNOWN counts as a change in either direction, so the first
        poll always announces availability.
        """
        previous = self.state
        self.state = LinkState.ONLINE if online else LinkState.OFFLINE
        if online:
            if self.last_seen_at is None or now > self.last_seen_at:
                self.last_seen_at = now
        if previous is self.state:
            return Transition.NONE
        return Transition.CAME_ONLINE if online else Transition.WENT_OFFLINE

    def assign_device_id(self, device_id: str) -> Optional[str]:
        """
        Record the identifier reported by the device.

        The first assignment fixes the identifier and, for unlabeled devices,
        the topic segment. Returns the previous topic when the segment moved,
        ``None`` otherwise. Later calls never change either value.
        """
        if self.device_id is not None:
            return None
        self.device_id = device_id
        if self.nickname:
            return None
        old_topic = self.topic
        self.topic = device_id
        return old_topic if old_topic != device_id else None

    def update_bounds(self, min_power: Optional[Number] = None, max_power: Optional[Number] = None) -> None:
        if min_power is not None:
            self.min_power = min_power
        if max_power is not None:
            self.max_power = max_power

    @property
    def bounds_known(self) -> bool:
        return self.min_power is not None and self.max_power is not None

    def mark_identity_published(self) -> None:
        self.identity_published = True

    def mark_discovery_published(self) -> bool:
        """Set the discovery flag. Returns False if it was already set."""
        if self.discovery_published:
            return False
        self.discovery_published = True
        return True

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(ip={self.ip}, topic={self.topic}, state={self.state.value})"
