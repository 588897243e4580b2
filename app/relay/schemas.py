"""
Wire schemas for the push channel and the REST surface.

JSON on the wire is camelCase (``heartRate``, ``deviceId``); Python code
uses snake_case attribute names.
"""

import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        extra="ignore",
    )


class SensorValues(CamelModel):
    """Optional sensor fields of one sample. None means "not reported"."""

    heart_rate: int | None = None
    cadence: int | None = None
    cadence_wheel: int | None = None
    power: int | None = None
    speed: float | None = None
    jumps: int | None = None
    battery: int | None = None
    boxing_hand: str | None = None
    boxing_punch_type: str | None = None
    boxing_power: int | None = None
    boxing_speed: float | None = None
    steps: int | None = None
    calories: float | None = None
    temperature: float | None = None
    oxygen: int | None = None
    sos_alert: bool | None = None


class ReadingFields(SensorValues):
    """
    Sensor fields parsed from an inbound event.

    0 is a real value. A field that fails to parse is treated as not
    reported instead of failing the whole event.
    """

    @field_validator("*", mode="wrap")
    @classmethod
    def _absent_when_malformed(cls, value, handler):
        try:
            return handler(value)
        except ValidationError:
            return None

    def reported(self) -> dict[str, Any]:
        """Fields present in this sample, keyed by attribute name."""
        return self.model_dump(exclude_none=True)


class HubConnect(CamelModel):
    """Hub -> server: a device was paired and is now live."""

    hub_id: str | None = None
    device_id: str = Field(min_length=1)
    device_type: str | None = None
    name: str | None = None


class DeviceRegistration(CamelModel):
    """POST /devices body. Required fields are checked by the query service."""

    device_id: str | None = None
    device_type: str | None = None
    name: str | None = None


class ReadingOut(SensorValues):
    """A stored reading as returned to viewers."""

    model_config = ConfigDict(frozen=True)

    id: int
    device_id: str
    timestamp: datetime


class DeviceOut(CamelModel):
    """
    A device joined with its latest reading.

    latest_reading has two shapes. In pushed ``devices`` snapshots it is
    the sparse in-memory merge of every field reported so far, e.g.
    ``{"heartRate": 72}``. In ``connected_devices`` replies and
    GET /devices it is the newest stored row as a ReadingOut, with ``id``,
    ``timestamp`` and null for fields that sample did not carry.
    """

    model_config = ConfigDict(frozen=True)

    device_id: str
    device_type: str | None = None
    name: str | None = None
    hub_id: str | None = None
    connected: bool = False
    last_seen: datetime | None = None
    latest_reading: dict[str, Any] | None = None


def reading_to_wire(fields: dict[str, Any]) -> dict[str, Any]:
    """camelCase keys for a snake_case reading dict."""
    return {to_camel(key): value for key, value in fields.items()}


def dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


def envelope(message_type: str, devices: list[DeviceOut]) -> str:
    """Serialize a push-channel message carrying a device list."""
    return json.dumps({"type": message_type, "data": [dump(d) for d in devices]})
