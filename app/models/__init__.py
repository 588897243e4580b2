# Database models
from app.models.device import Device
from app.models.reading import Reading

__all__ = ["Device", "Reading"]
