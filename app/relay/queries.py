"""
Query Facade - request/response operations for viewers that poll.

Device listings come from the durable store so they survive restarts.
Store failures propagate as StoreUnavailable for the HTTP layer to map.
"""

import logging
from datetime import timedelta
from typing import Any

from pydantic.alias_generators import to_camel

from app.core.clock import Clock, utcnow
from app.core.errors import DeviceNotFound, ValidationError
from app.models.device import Device
from app.models.reading import Reading
from app.relay.broadcast import BroadcastHub
from app.relay.registry import PresenceRegistry
from app.relay.schemas import DeviceOut, DeviceRegistration, ReadingFields, ReadingOut, dump
from app.relay.store import ReadingStore

logger = logging.getLogger(__name__)


def device_out(device: Device, latest: Reading | None = None) -> DeviceOut:
    return DeviceOut(
        device_id=device.device_id,
        device_type=device.device_type,
        name=device.name,
        hub_id=device.hub_id,
        connected=device.connected,
        last_seen=device.last_seen,
        latest_reading=dump(ReadingOut.model_validate(latest)) if latest is not None else None,
    )


class QueryService:
    """Read operations plus out-of-band registration and reading inserts."""

    def __init__(
        self,
        store: ReadingStore,
        registry: PresenceRegistry,
        hub: BroadcastHub,
        freshness_window: timedelta,
        max_limit: int = 1000,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.registry = registry
        self.hub = hub
        self.freshness_window = freshness_window
        self.max_limit = max_limit
        self._clock = clock

    def _check_limit(self, limit: int) -> None:
        if not 1 <= limit <= self.max_limit:
            raise ValidationError(f"limit must be between 1 and {self.max_limit}")

    async def list_devices(
        self,
        device_type: str | None = None,
        connected: bool | None = None,
        limit: int = 100,
    ) -> list[DeviceOut]:
        """Devices with their latest reading; connected=True applies the freshness window."""
        self._check_limit(limit)
        fresh_since = self._clock() - self.freshness_window
        rows = await self.store.list_devices(
            fresh_since,
            device_type=device_type,
            connected=connected,
            limit=limit,
        )
        return [device_out(device, latest) for device, latest in rows]

    async def get_reading_history(self, device_id: str, limit: int = 100) -> list[ReadingOut]:
        """Most recent readings, newest first. Not filtered by freshness."""
        self._check_limit(limit)
        readings = await self.store.query_readings_by_device(device_id, limit)
        return [ReadingOut.model_validate(r) for r in readings]

    async def register_device(self, registration: DeviceRegistration) -> DeviceOut:
        """Upsert the device row. Presence is left to hub_connect."""
        missing = [
            to_camel(field)
            for field in ("device_id", "device_type", "name")
            if not getattr(registration, field)
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        device = await self.store.upsert_device(
            registration.device_id,
            device_type=registration.device_type,
            name=registration.name,
            connected=False,
        )
        return device_out(device)

    async def record_reading(self, device_id: str, payload: dict[str, Any]) -> ReadingOut:
        """
        Persist one reading whether or not the device is known.

        A device that is present in the registry also gets the reading
        merged and broadcast, as for a device_data event.
        """
        if not device_id:
            raise ValidationError("deviceId is required")

        fields = ReadingFields.model_validate(payload).reported()
        reading = await self.store.insert_reading(device_id, fields)

        try:
            self.registry.apply_reading(device_id, fields)
        except DeviceNotFound:
            logger.debug(f"Reading for {device_id} stored; device not live")
        else:
            self.hub.broadcast()

        return ReadingOut.model_validate(reading)
