"""Connectivity data models: peripherals, radio links and Wi-Fi networks."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from matlink.models.status import NetworkState, RadioEventKind, RadioState


class Advertisement(BaseModel):
    """A single discovery event reported by the radio transport."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Opaque stable peripheral id")
    name: Optional[str] = Field(None, description="Advertised local name")
    rssi: Optional[int] = Field(None, description="Received signal strength (dBm)")


class Peripheral(BaseModel):
    """A discovered peripheral, unique by id within one scan result set."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Opaque stable peripheral id")
    name: Optional[str] = Field(None, description="Display name if advertised")
    rssi: Optional[int] = Field(None, description="Signal strength at first sight")
    discovered_at: datetime = Field(
        default_factory=datetime.now, description="First-seen timestamp"
    )


class RadioLinkInfo(BaseModel):
    """Observable view of the single owned radio link."""

    peripheral_id: str = Field(..., description="Target peripheral id")
    state: RadioState = Field(..., description="Lifecycle state of the link")
    established_at: Optional[datetime] = Field(
        None, description="Set once capability discovery succeeded"
    )


class WifiNetwork(BaseModel):
    """A Wi-Fi network seen in one scan snapshot."""

    model_config = ConfigDict(frozen=True)

    ssid: str = Field(..., description="Network name")
    signal: Optional[int] = Field(
        None, ge=0, le=100, description="Signal quality percentage"
    )
    secured: bool = Field(True, description="True if the network needs a credential")


class NetworkSession(BaseModel):
    """The single owned Wi-Fi join attempt or connection."""

    ssid: str = Field(..., description="Target network name")
    state: NetworkState = Field(..., description="Lifecycle state of the session")
    connected_at: Optional[datetime] = Field(None, description="Join timestamp")


class RadioEvent(BaseModel):
    """Out-of-band notification from the radio scanner or connection manager."""

    kind: RadioEventKind = Field(..., description="What happened")
    state: Optional[RadioState] = Field(None, description="Manager state after the event")
    peripheral: Optional[Peripheral] = Field(
        None, description="Discovered peripheral (peripheralDiscovered)"
    )
    peripherals: List[Peripheral] = Field(
        default_factory=list, description="Discovery set when the scan stopped"
    )
    reason: Optional[str] = Field(None, description="Why a scan stopped or a link dropped")
