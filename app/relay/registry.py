"""
Presence Registry - in-memory view of the devices known to this relay.

Each device keeps its metadata plus a merged view of the most recent
reading fields. Nothing is evicted: freshness is evaluated lazily when a
snapshot is taken, so a device that stops reporting simply drops out of
snapshots once its last_seen falls outside the freshness window.

The registry is mutated only from the event loop, so it carries no locks.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from app.core.clock import Clock, utcnow
from app.core.errors import DeviceNotFound
from app.relay.schemas import DeviceOut, reading_to_wire

logger = logging.getLogger(__name__)


@dataclass
class DeviceState:
    """Latest known state of one device."""

    device_id: str
    device_type: str | None = None
    name: str | None = None
    hub_id: str | None = None
    connected: bool = True
    last_seen: datetime | None = None
    reading: dict[str, Any] = field(default_factory=dict)

    def touch(self, seen_at: datetime) -> None:
        """Advance last_seen; older timestamps never move it back."""
        if self.last_seen is None or seen_at > self.last_seen:
            self.last_seen = seen_at

    def is_fresh(self, now: datetime, window: timedelta) -> bool:
        if not self.connected or self.last_seen is None:
            return False
        return now - self.last_seen <= window

    def to_out(self) -> DeviceOut:
        return DeviceOut(
            device_id=self.device_id,
            device_type=self.device_type,
            name=self.name,
            hub_id=self.hub_id,
            connected=self.connected,
            last_seen=self.last_seen,
            latest_reading=reading_to_wire(self.reading) if self.reading else None,
        )


class PresenceRegistry:
    """Owns the device map and the freshness policy."""

    def __init__(self, clock: Clock = utcnow):
        self._clock = clock
        self._devices: dict[str, DeviceState] = {}

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, device_id: str) -> bool:
        return device_id in self._devices

    def get(self, device_id: str) -> DeviceState | None:
        return self._devices.get(device_id)

    def upsert_device(
        self,
        device_id: str,
        device_type: str | None = None,
        name: str | None = None,
        hub_id: str | None = None,
        seen_at: datetime | None = None,
    ) -> DeviceState:
        """
        Create the device or mark it connected again.

        Metadata given as None keeps the current value.
        """
        seen_at = seen_at or self._clock()
        device = self._devices.get(device_id)

        if device is None:
            device = DeviceState(
                device_id=device_id,
                device_type=device_type,
                name=name,
                hub_id=hub_id,
                connected=True,
                last_seen=seen_at,
            )
            self._devices[device_id] = device
            logger.info(f"🆕 Device registered: {device_id} ({device_type or 'unknown type'})")
            return device

        if device_type is not None:
            device.device_type = device_type
        if name is not None:
            device.name = name
        if hub_id is not None:
            device.hub_id = hub_id
        device.connected = True
        device.touch(seen_at)
        return device

    def apply_reading(
        self,
        device_id: str,
        fields: dict[str, Any],
        seen_at: datetime | None = None,
    ) -> DeviceState:
        """
        Merge reported fields onto the device's latest-reading view.

        Fields absent from this sample keep their previous value.
        Raises DeviceNotFound if the device never connected.
        """
        device = self._devices.get(device_id)
        if device is None:
            raise DeviceNotFound(device_id)

        device.reading.update({k: v for k, v in fields.items() if v is not None})
        device.touch(seen_at or self._clock())
        logger.debug(f"📩 Reading applied to {device_id}: {fields}")
        return device

    def snapshot(self, freshness_window: timedelta) -> list[DeviceState]:
        """Connected devices seen within the window, in first-connect order."""
        now = self._clock()
        return [d for d in self._devices.values() if d.is_fresh(now, freshness_window)]
