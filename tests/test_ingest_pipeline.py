"""
Tests for hub event ingestion.
"""

import pytest

from app.core.errors import StoreUnavailable
from app.relay.pipeline import IngestPipeline
from app.relay.schemas import ReadingFields
from conftest import FakeSocket


def device_data(device_id: str, **fields) -> dict:
    return {"type": "device_data", "deviceId": device_id, **fields}


class UnavailableStore:
    """Store stand-in whose every operation fails."""

    def __init__(self):
        self.calls = []

    async def upsert_device(self, device_id, **kwargs):
        self.calls.append(("upsert_device", device_id))
        raise StoreUnavailable("database is down")

    async def insert_reading(self, device_id, fields):
        self.calls.append(("insert_reading", device_id))
        raise StoreUnavailable("database is down")


class TestHubConnect:
    """Tests for hub_connect events."""

    async def test_hub_connect_registers_and_persists(self, pipeline, registry, store, sample_hub_connect):
        await pipeline.handle(sample_hub_connect)

        device = registry.get("d1")
        assert device.connected is True
        assert device.hub_id == "hub-1"
        assert device.device_type == "heart_rate_strap"

        rows = await store.list_devices(registry.get("d1").last_seen, connected=True)
        assert [d.device_id for d, _ in rows] == ["d1"]

    async def test_hub_connect_broadcasts(self, pipeline, hub, sample_hub_connect):
        viewer = FakeSocket()
        channel = hub.connect(viewer.send)

        await pipeline.handle(sample_hub_connect)
        await channel.flush()

        assert [len(m["data"]) for m in viewer.messages] == [0, 1]
        assert viewer.messages[1]["data"][0]["name"] == "Chest strap"

    async def test_hub_connect_without_device_id_is_dropped(self, pipeline, registry):
        await pipeline.handle({"type": "hub_connect", "hubId": "hub-1"})

        assert len(registry) == 0

    async def test_hub_connect_with_empty_device_id_is_dropped(self, pipeline, registry, store, clock):
        await pipeline.handle({"type": "hub_connect", "hubId": "hub-1", "deviceId": ""})

        assert len(registry) == 0
        assert await store.list_devices(clock.now) == []


class TestDeviceData:
    """Tests for device_data events."""

    async def test_unknown_device_is_persisted_but_not_broadcast(self, pipeline, hub, registry, store):
        viewer = FakeSocket()
        channel = hub.connect(viewer.send)

        await pipeline.handle(device_data("ghost", heartRate=88))
        await pipeline.drain()
        await channel.flush()

        history = await store.query_readings_by_device("ghost")
        assert [r.heart_rate for r in history] == [88]
        assert "ghost" not in registry
        assert len(viewer.messages) == 1  # initial snapshot only

    async def test_ordering_final_state_is_latest(self, pipeline, hub, sample_hub_connect):
        viewer = FakeSocket()
        channel = hub.connect(viewer.send)

        await pipeline.handle(sample_hub_connect)
        await pipeline.handle(device_data("d1", heartRate=70))
        await pipeline.handle(device_data("d1", heartRate=75))
        await channel.flush()

        rates = [
            (m["data"][0].get("latestReading") or {}).get("heartRate")
            for m in viewer.messages
            if m["data"]
        ]
        assert rates == [None, 70, 75]

    async def test_partial_events_merge(self, pipeline, registry, sample_hub_connect):
        await pipeline.handle(sample_hub_connect)
        await pipeline.handle(device_data("d1", heartRate=80))
        await pipeline.handle(device_data("d1", battery=50))

        assert registry.get("d1").reading == {"heart_rate": 80, "battery": 50}

    async def test_malformed_fields_are_treated_as_absent(self, pipeline, registry, store, sample_hub_connect):
        await pipeline.handle(sample_hub_connect)
        await pipeline.handle(device_data("d1", heartRate="fast", battery=50, sosAlert=True))
        await pipeline.drain()

        assert registry.get("d1").reading == {"battery": 50, "sos_alert": True}
        [stored] = await store.query_readings_by_device("d1")
        assert stored.heart_rate is None
        assert stored.battery == 50

    async def test_zero_values_are_kept(self, pipeline, registry, sample_hub_connect):
        await pipeline.handle(sample_hub_connect)
        await pipeline.handle(device_data("d1", steps=0, calories=0))

        assert registry.get("d1").reading == {"steps": 0, "calories": 0.0}

    async def test_missing_device_id_is_dropped(self, pipeline, store):
        await pipeline.handle({"type": "device_data", "heartRate": 70})
        await pipeline.drain()

        assert await store.query_readings_by_device("") == []


class TestFailureIsolation:
    """Failures never stop the next event."""

    async def test_store_outage_does_not_block_live_view(self, registry, hub, sample_hub_connect):
        store = UnavailableStore()
        pipeline = IngestPipeline(registry, hub, store)
        viewer = FakeSocket()
        channel = hub.connect(viewer.send)

        await pipeline.handle(sample_hub_connect)
        await pipeline.handle(device_data("d1", heartRate=72))
        await pipeline.drain()
        await channel.flush()

        assert registry.get("d1").reading == {"heart_rate": 72}
        assert len(viewer.messages) == 3
        assert ("insert_reading", "d1") in store.calls

    @pytest.mark.parametrize("message", [
        {"type": "firmware_update"},
        {"type": None},
        {},
        ["not", "an", "object"],
        "hub_connect",
    ])
    async def test_unrecognized_messages_are_ignored(self, pipeline, hub, registry, message):
        viewer = FakeSocket()
        channel = hub.connect(viewer.send)

        await pipeline.handle(message)
        await channel.flush()

        assert len(registry) == 0
        assert len(viewer.messages) == 1

    async def test_next_event_processed_after_failure(self, pipeline, registry, monkeypatch, sample_hub_connect):
        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(registry, "upsert_device", explode)
        await pipeline.handle(sample_hub_connect)
        monkeypatch.undo()

        await pipeline.handle(sample_hub_connect)

        assert "d1" in registry


class TestReadingFields:
    """Lenient parsing of sensor fields."""

    def test_camel_case_keys_are_mapped(self):
        fields = ReadingFields.model_validate({
            "deviceId": "d1",
            "heartRate": 72,
            "boxingPunchType": "jab",
            "cadenceWheel": 88,
        })

        assert fields.reported() == {"heart_rate": 72, "boxing_punch_type": "jab", "cadence_wheel": 88}

    def test_numeric_strings_are_coerced(self):
        assert ReadingFields.model_validate({"power": "250"}).reported() == {"power": 250}

    def test_unknown_keys_are_ignored(self):
        assert ReadingFields.model_validate({"colour": "red"}).reported() == {}


async def test_drain_waits_for_pending_writes(pipeline, store, sample_hub_connect):
    await pipeline.handle(sample_hub_connect)
    for rate in (60, 61, 62):
        await pipeline.handle(device_data("d1", heartRate=rate))

    await pipeline.drain()

    history = await store.query_readings_by_device("d1")
    assert sorted(r.heart_rate for r in history) == [60, 61, 62]
