"""Global pytest fixtures and fake transports."""

import asyncio
import sys
from pathlib import Path
from typing import Callable, List, Optional

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from matlink.models.device import Advertisement, WifiNetwork  # noqa: E402
from matlink.models.release import FirmwareRelease  # noqa: E402
from matlink.models.status import RadioReadiness  # noqa: E402
from matlink.services.capabilities import CapabilityGate  # noqa: E402
from matlink.utils.clock import VirtualClock  # noqa: E402


class FakeRadioLink:
    """Link handle that records calls and can be dropped on demand."""

    def __init__(
        self,
        peripheral_id: str,
        discover_error: Optional[Exception] = None,
        drop_on_discover: bool = False,
    ):
        self.peripheral_id = peripheral_id
        self.discover_error = discover_error
        self.drop_on_discover = drop_on_discover
        self.disconnect_calls = 0
        self.dropped = False
        self._handlers: List[Callable[[], None]] = []

    async def discover_capabilities(self) -> None:
        if self.drop_on_discover:
            self.drop()
        if self.discover_error:
            raise self.discover_error

    def on_link_lost(self, handler: Callable[[], None]) -> None:
        self._handlers.append(handler)
        if self.dropped:
            handler()

    async def disconnect(self) -> None:
        self.disconnect_calls += 1

    def drop(self) -> None:
        self.dropped = True
        for handler in list(self._handlers):
            handler()


class FakeRadioTransport:
    """Radio transport driven by the test.

    ``connect`` resolves immediately unless ``pending`` is set, in which case
    it waits for the test to resolve that future. With ``ignore_cancel`` the
    attempt keeps waiting after cancellation, like a stack that delivers a
    link after the caller has given up.
    ``drop_at`` ("connect" or "discover") drops the link before it is handed
    over.
    """

    def __init__(self):
        self.readiness = RadioReadiness.READY
        self.start_error: Optional[Exception] = None
        self.connect_error: Optional[Exception] = None
        self.discover_error: Optional[Exception] = None
        self.drop_at: Optional[str] = None
        self.pending: Optional[asyncio.Future] = None
        self.ignore_cancel = False
        self.on_event: Optional[Callable[[Advertisement], None]] = None
        self.start_calls = 0
        self.stop_calls = 0
        self.connect_calls: List[dict] = []
        self.links: List[FakeRadioLink] = []

    async def state(self) -> RadioReadiness:
        return self.readiness

    async def start_discovery(self, on_event) -> None:
        self.start_calls += 1
        if self.start_error:
            raise self.start_error
        self.on_event = on_event

    async def stop_discovery(self) -> None:
        self.stop_calls += 1

    async def connect(self, peripheral_id: str, *, timeout: float, auto_reconnect: bool = True):
        self.connect_calls.append(
            {"id": peripheral_id, "timeout": timeout, "auto_reconnect": auto_reconnect}
        )
        if self.pending is not None:
            while True:
                try:
                    await asyncio.shield(self.pending)
                    break
                except asyncio.CancelledError:
                    if not self.ignore_cancel:
                        raise
        if self.connect_error:
            raise self.connect_error
        link = FakeRadioLink(
            peripheral_id, self.discover_error, drop_on_discover=self.drop_at == "discover"
        )
        self.links.append(link)
        if self.drop_at == "connect":
            link.drop()
        return link

    def advertise(self, peripheral_id: str, name: Optional[str] = None, rssi: Optional[int] = None):
        """Deliver an advertisement as the radio stack would."""
        if self.on_event is not None:
            self.on_event(Advertisement(id=peripheral_id, name=name, rssi=rssi))


class FakeNetworkTransport:
    """Network transport with canned scan results and join behavior."""

    def __init__(self, networks: Optional[List[WifiNetwork]] = None):
        self.networks = networks or []
        self.list_error: Optional[Exception] = None
        self.join_error: Optional[Exception] = None
        self.pending: Optional[asyncio.Future] = None
        self.joined: List[tuple] = []
        self.left: List[str] = []

    async def list_networks(self) -> List[WifiNetwork]:
        if self.list_error:
            raise self.list_error
        return list(self.networks)

    async def join_secured(self, ssid: str, credential: Optional[str]) -> None:
        self.joined.append((ssid, credential))
        if self.pending is not None:
            await self.pending
        if self.join_error:
            raise self.join_error

    async def leave(self, ssid: str) -> None:
        self.left.append(ssid)


@pytest.fixture
def virtual_clock():
    """Deterministic clock; advance() moves time."""
    return VirtualClock()


@pytest.fixture
def gate():
    """Capability gate granting everything."""
    return CapabilityGate()


@pytest.fixture
def radio_transport():
    return FakeRadioTransport()


@pytest.fixture
def network_transport():
    return FakeNetworkTransport(
        [
            WifiNetwork(ssid="HomeNet", signal=70, secured=True),
            WifiNetwork(ssid="CafeOpen", signal=40, secured=False),
        ]
    )


@pytest.fixture
def sample_release():
    """Release document as served by the catalog."""
    return FirmwareRelease(
        version="1.3.0",
        download_url="https://firmware.example.com/mat/1.3.0/mat-1.3.0.bin",
        release_notes="Improved pressure calibration",
        file_size_bytes=1024,
    )
