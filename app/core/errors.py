"""
Hub Relay - Error taxonomy
"""


class RelayError(Exception):
    """Base class for relay errors."""


class ValidationError(RelayError):
    """Malformed or incomplete request to a mutating query operation."""


class DeviceNotFound(RelayError):
    """Data event for a device the presence registry does not know."""

    def __init__(self, device_id: str):
        super().__init__(f"Unknown device: {device_id}")
        self.device_id = device_id


class StoreUnavailable(RelayError):
    """Reading store operation failed or timed out."""


class ChannelClosed(RelayError):
    """Viewer channel closed while a message was being written."""
