"""
Reading Store - durable device registry and append-only reading log.

Every public operation is bounded by a timeout. Database errors and
timeouts surface as StoreUnavailable; nothing is retried here.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import Clock, utcnow
from app.core.errors import StoreUnavailable
from app.models.device import Device
from app.models.reading import Reading

logger = logging.getLogger(__name__)


class ReadingStore:
    """Async SQLAlchemy access to the devices and readings tables."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        timeout: float = 5.0,
        clock: Clock = utcnow,
    ):
        self._session_maker = session_maker
        self.timeout = timeout
        self._clock = clock
        self._last_timestamp: datetime | None = None

    async def _bounded(self, operation: str, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailable(f"{operation} timed out after {self.timeout}s") from e
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"{operation} failed: {e}") from e

    def _next_timestamp(self) -> datetime:
        """Server-assigned reading time, strictly increasing per insert."""
        now = self._clock()
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    # ==================== DEVICES ====================

    async def upsert_device(
        self,
        device_id: str,
        device_type: str | None = None,
        name: str | None = None,
        hub_id: str | None = None,
        connected: bool = True,
        seen_at: datetime | None = None,
    ) -> Device:
        """
        Insert the device row or update it in place.

        With connected=True the row is (re)activated and last_seen
        refreshed. With connected=False only metadata is written and the
        presence columns of an existing row are left alone.
        """
        if connected and seen_at is None:
            seen_at = self._clock()
        return await self._bounded(
            "upsert_device",
            self._upsert_device(device_id, device_type, name, hub_id, connected, seen_at),
        )

    async def _upsert_device(self, device_id, device_type, name, hub_id, connected, seen_at) -> Device:
        async with self._session_maker() as session:
            try:
                device = await self._merge_device(
                    session, device_id, device_type, name, hub_id, connected, seen_at
                )
                await session.commit()
            except IntegrityError:
                # Lost an insert race for a new device id; update the winner's row
                await session.rollback()
                device = await self._merge_device(
                    session, device_id, device_type, name, hub_id, connected, seen_at
                )
                await session.commit()
            return device

    async def _merge_device(
        self, session: AsyncSession, device_id, device_type, name, hub_id, connected, seen_at
    ) -> Device:
        device = await session.get(Device, device_id)

        if device is None:
            device = Device(
                device_id=device_id,
                device_type=device_type,
                name=name,
                hub_id=hub_id,
                connected=connected,
                last_seen=seen_at,
                created_at=self._clock(),
            )
            session.add(device)
            await session.flush()
            logger.info(f"🆕 Created device row: {device_id}")
            return device

        if device_type is not None:
            device.device_type = device_type
        if name is not None:
            device.name = name
        if hub_id is not None:
            device.hub_id = hub_id
        if connected:
            device.connected = True
            if seen_at is not None and (device.last_seen is None or seen_at > device.last_seen):
                device.last_seen = seen_at
        return device

    async def list_devices(
        self,
        fresh_since: datetime,
        device_type: str | None = None,
        connected: bool | None = None,
        limit: int = 100,
    ) -> list[tuple[Device, Reading | None]]:
        """
        Devices joined with their most recent reading.

        connected=True keeps devices flagged connected and seen at or after
        fresh_since; connected=False returns the complement; None returns all.
        """
        return await self._bounded(
            "list_devices",
            self._list_devices(fresh_since, device_type, connected, limit),
        )

    async def _list_devices(self, fresh_since, device_type, connected, limit):
        is_fresh = and_(
            Device.connected.is_(True),
            Device.last_seen.is_not(None),
            Device.last_seen >= fresh_since,
        )

        query = select(Device)
        if device_type is not None:
            query = query.where(Device.device_type == device_type)
        if connected is True:
            query = query.where(is_fresh)
        elif connected is False:
            query = query.where(
                or_(
                    Device.connected.is_(False),
                    Device.last_seen.is_(None),
                    Device.last_seen < fresh_since,
                )
            )
        query = query.order_by(Device.last_seen.desc().nulls_last(), Device.device_id).limit(limit)

        async with self._session_maker() as session:
            devices = list((await session.execute(query)).scalars().all())
            if not devices:
                return []

            # Newest reading per device, same order as the history query.
            # Concurrent inserts can commit out of timestamp order, so id alone is not enough.
            ranked = (
                select(
                    Reading.id,
                    func.row_number()
                    .over(
                        partition_by=Reading.device_id,
                        order_by=(Reading.timestamp.desc(), Reading.id.desc()),
                    )
                    .label("rank"),
                )
                .where(Reading.device_id.in_([d.device_id for d in devices]))
                .subquery()
            )
            latest_ids = select(ranked.c.id).where(ranked.c.rank == 1)
            result = await session.execute(select(Reading).where(Reading.id.in_(latest_ids)))
            latest = {r.device_id: r for r in result.scalars().all()}

        return [(device, latest.get(device.device_id)) for device in devices]

    # ==================== READINGS ====================

    async def insert_reading(self, device_id: str, fields: dict[str, Any]) -> Reading:
        """
        Append one reading. Also advances last_seen of an existing device
        row; readings for unregistered devices are stored all the same.
        """
        return await self._bounded("insert_reading", self._insert_reading(device_id, fields))

    async def _insert_reading(self, device_id: str, fields: dict[str, Any]) -> Reading:
        timestamp = self._next_timestamp()

        async with self._session_maker() as session:
            reading = Reading(device_id=device_id, timestamp=timestamp, **fields)
            session.add(reading)

            await session.execute(
                update(Device)
                .where(Device.device_id == device_id)
                .where(or_(Device.last_seen.is_(None), Device.last_seen < timestamp))
                .values(last_seen=timestamp)
            )
            await session.commit()

        logger.debug(f"💾 Saved reading for {device_id}")
        return reading

    async def query_readings_by_device(self, device_id: str, limit: int = 100) -> list[Reading]:
        """Most recent readings for a device, newest first."""
        return await self._bounded(
            "query_readings_by_device",
            self._query_readings_by_device(device_id, limit),
        )

    async def _query_readings_by_device(self, device_id: str, limit: int) -> list[Reading]:
        query = (
            select(Reading)
            .where(Reading.device_id == device_id)
            .order_by(Reading.timestamp.desc(), Reading.id.desc())
            .limit(limit)
        )
        async with self._session_maker() as session:
            result = await session.execute(query)
            return list(result.scalars().all())
