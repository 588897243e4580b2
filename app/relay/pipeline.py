"""
Ingest Pipeline - single entry point for events sent by hubs.

    hub_connect  -> store upsert, registry upsert, broadcast
    device_data  -> detached store insert, registry merge, broadcast
    anything else -> logged and ignored

Every failure is absorbed here: one bad event never stops the next one.
The registry mutation and the broadcast it triggers run without yielding
to the event loop, so broadcasts follow event arrival order.
"""

import asyncio
import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from app.core.errors import DeviceNotFound, StoreUnavailable
from app.relay.broadcast import BroadcastHub
from app.relay.registry import PresenceRegistry
from app.relay.schemas import HubConnect, ReadingFields
from app.relay.store import ReadingStore

logger = logging.getLogger(__name__)


class IngestPipeline:
    """Validates hub events and routes them to the store, registry and hub."""

    def __init__(self, registry: PresenceRegistry, hub: BroadcastHub, store: ReadingStore):
        self.registry = registry
        self.hub = hub
        self.store = store
        self._pending_writes: set[asyncio.Task] = set()

    async def handle(self, message: Any) -> None:
        """Process one inbound event to completion. Never raises."""
        if not isinstance(message, dict):
            logger.warning(f"⚠️ Ignoring non-object message: {message!r}")
            return

        message_type = message.get("type")
        try:
            if message_type == "hub_connect":
                await self.handle_hub_connect(message)
            elif message_type == "device_data":
                self.handle_device_data(message)
            else:
                logger.warning(f"⚠️ Unknown message type: {message_type!r}")
        except Exception as e:
            logger.exception(f"❌ Error handling {message_type} event: {e}")

    async def handle_hub_connect(self, message: dict) -> None:
        try:
            event = HubConnect.model_validate(message)
        except PydanticValidationError as e:
            logger.warning(f"⚠️ Malformed hub_connect dropped: {e.errors()}")
            return

        try:
            await self.store.upsert_device(
                event.device_id,
                device_type=event.device_type,
                name=event.name,
                hub_id=event.hub_id,
            )
        except StoreUnavailable as e:
            logger.error(f"❌ Could not persist hub_connect for {event.device_id}: {e}")

        self.registry.upsert_device(
            event.device_id,
            device_type=event.device_type,
            name=event.name,
            hub_id=event.hub_id,
        )
        logger.info(f"✅ Hub {event.hub_id or '?'} connected device {event.device_id}")
        self.hub.broadcast()

    def handle_device_data(self, message: dict) -> None:
        """
        Persist in the background, then update presence synchronously.

        Data for a device that never sent hub_connect is stored but not
        broadcast.
        """
        device_id = message.get("deviceId")
        if not isinstance(device_id, str) or not device_id:
            logger.warning("⚠️ device_data without deviceId dropped")
            return

        fields = ReadingFields.model_validate(message).reported()
        self._spawn_write(device_id, fields)

        try:
            self.registry.apply_reading(device_id, fields)
        except DeviceNotFound:
            logger.warning(f"⚠️ Data from unknown device {device_id}: stored, not broadcast")
            return

        self.hub.broadcast()

    def _spawn_write(self, device_id: str, fields: dict[str, Any]) -> None:
        task = asyncio.create_task(self._persist_reading(device_id, fields))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _persist_reading(self, device_id: str, fields: dict[str, Any]) -> None:
        try:
            await self.store.insert_reading(device_id, fields)
        except StoreUnavailable as e:
            logger.error(f"❌ Could not persist reading for {device_id}: {e}")
        except Exception as e:
            logger.exception(f"❌ Unexpected error persisting reading for {device_id}: {e}")

    async def drain(self) -> None:
        """Wait for detached store writes still in flight."""
        if self._pending_writes:
            await asyncio.gather(*self._pending_writes, return_exceptions=True)
