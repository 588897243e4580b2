"""
Reading model - one sensor sample, append-only
"""

from datetime import datetime
from sqlalchemy import Integer, Float, Boolean, String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from app.core.clock import utcnow
from app.core.database import Base


class Reading(Base):
    """Sensor sample from a device. Never updated once stored."""

    __tablename__ = "readings"

    id: Mapped[int] = mapped_column(primary_key=True)
    # Logical reference to devices.device_id; unregistered devices may still report
    device_id: Mapped[str] = mapped_column(String(64), index=True)

    # Fitness sensors
    heart_rate: Mapped[int | None] = mapped_column(Integer, nullable=True)  # bpm
    cadence: Mapped[int | None] = mapped_column(Integer, nullable=True)  # rpm
    cadence_wheel: Mapped[int | None] = mapped_column(Integer, nullable=True)
    power: Mapped[int | None] = mapped_column(Integer, nullable=True)  # W
    speed: Mapped[float | None] = mapped_column(Float, nullable=True)  # km/h
    jumps: Mapped[int | None] = mapped_column(Integer, nullable=True)
    battery: Mapped[int | None] = mapped_column(Integer, nullable=True)  # %

    # Boxing sensors
    boxing_hand: Mapped[str | None] = mapped_column(String(16), nullable=True)
    boxing_punch_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    boxing_power: Mapped[int | None] = mapped_column(Integer, nullable=True)
    boxing_speed: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Wearables
    steps: Mapped[int | None] = mapped_column(Integer, nullable=True)
    calories: Mapped[float | None] = mapped_column(Float, nullable=True)  # kcal
    temperature: Mapped[float | None] = mapped_column(Float, nullable=True)  # Celsius
    oxygen: Mapped[int | None] = mapped_column(Integer, nullable=True)  # SpO2 %
    sos_alert: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    # Server-assigned on insert
    timestamp: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        index=True
    )

    def __repr__(self) -> str:
        return f"<Reading device={self.device_id} hr={self.heart_rate}>"
