"""Persistent device state model."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class DeviceState(BaseModel):
    """Persistent state at ./data/device.json.

    Survives restarts so the recorded firmware version and the last connected
    peripheral are known before the mat is reachable again.
    """

    firmware_version: Optional[str] = Field(
        None, description="Firmware version recorded after the last install"
    )
    last_peripheral_id: Optional[str] = Field(
        None, description="Peripheral id of the last successful radio connect"
    )
    updated_at: datetime = Field(
        default_factory=datetime.now, description="Last state update timestamp"
    )

    @field_validator("updated_at", mode="before")
    @classmethod
    def parse_iso8601(cls, v):
        """Parse ISO 8601 timestamp strings."""
        if isinstance(v, str):
            return datetime.fromisoformat(v.replace("Z", "+00:00"))
        return v
