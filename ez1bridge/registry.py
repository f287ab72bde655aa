"""
Device lookup for the running bridge.

Reconcilers are stored by network address, which never changes, and indexed
by their current MQTT topic segment for inbound command routing.
"""
from typing import Dict, Iterator, List, Optional

from ez1bridge.reconciler import DeviceReconciler


class DeviceRegistry:
    def __init__(self) -> None:
        self._by_key: Dict[str, DeviceReconciler] = {}
        self._by_topic: Dict[str, DeviceReconciler] = {}

    def add(self, rc: DeviceReconciler) -> None:
        key = rc.record.key
        if key in self._by_key:
            raise ValueError(f"device {key} already registered")
        self._by_key[key] = rc
        self._by_topic[rc.record.topic] = rc

    def by_topic(self, topic: str) -> Optional[DeviceReconciler]:
        return self._by_topic.get(topic)

    def retopic(self, rc: DeviceReconciler, old_topic: str) -> None:
        if self._by_topic.get(old_topic) is rc:
            del self._by_topic[old_topic]
        self._by_topic[rc.record.topic] = rc

    def online(self) -> List[DeviceReconciler]:
        return [rc for rc in self._by_key.values() if rc.record.is_online]

    def __iter__(self) -> Iterator[DeviceReconciler]:
        return iter(list(self._by_key.values()))

    def __len__(self) -> int:
        return len(self._by_key)
