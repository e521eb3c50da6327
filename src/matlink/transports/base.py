"""Contracts of the external collaborators the services depend on."""

from pathlib import Path
from typing import Callable, List, Optional, Protocol, Union

from matlink.models.device import Advertisement, WifiNetwork
from matlink.models.release import (
    FirmwareHistoryRecord,
    FirmwareRelease,
    UsageSessionRecord,
)
from matlink.models.status import Capability, RadioReadiness

ProgressCallback = Callable[[float], None]
Locator = Union[str, Path]


class RadioLinkHandle(Protocol):
    """An established short-range radio link."""

    peripheral_id: str

    async def discover_capabilities(self) -> None:
        """Discover services/characteristics; raise on failure."""

    def on_link_lost(self, handler: Callable[[], None]) -> None:
        """Register a handler called once when the link drops unexpectedly.

        A handler registered after the drop is called immediately.
        """

    async def disconnect(self) -> None: ...


class RadioTransport(Protocol):
    async def state(self) -> RadioReadiness: ...

    async def start_discovery(self, on_event: Callable[[Advertisement], None]) -> None: ...

    async def stop_discovery(self) -> None: ...

    async def connect(
        self, peripheral_id: str, *, timeout: float, auto_reconnect: bool = True
    ) -> RadioLinkHandle: ...


class NetworkTransport(Protocol):
    async def list_networks(self) -> List[WifiNetwork]: ...

    async def join_secured(self, ssid: str, credential: Optional[str]) -> None:
        """Join a network; raise on authentication failure or unreachable AP."""

    async def leave(self, ssid: str) -> None: ...


class PermissionProvider(Protocol):
    async def request(self, capabilities: List[Capability]) -> dict:
        """Request all capabilities in one batch; map each to granted bool."""


class ReleaseCatalog(Protocol):
    async def query_newer(self, version: str, limit: int = 1) -> List[FirmwareRelease]:
        """Releases newer than ``version``, newest first, at most ``limit``."""


class SessionLedger(Protocol):
    async def append_firmware_history(self, record: FirmwareHistoryRecord) -> None: ...

    async def append_usage_session(self, record: UsageSessionRecord) -> None: ...


class FirmwareTransport(Protocol):
    """Moves a release image to the mat. The medium is opaque to callers."""

    async def download(
        self, release: FirmwareRelease, on_progress: ProgressCallback
    ) -> Locator: ...

    async def install(
        self, locator: Locator, release: FirmwareRelease, on_progress: ProgressCallback
    ) -> None: ...

