"""Wi-Fi network discovery and credentialed join."""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Union

from matlink.models.device import NetworkSession, WifiNetwork
from matlink.models.errors import (
    NetworkAuthFailed,
    NetworkScanFailed,
    NetworkSessionRejected,
)
from matlink.models.status import Capability, NetworkState
from matlink.services.capabilities import CapabilityGate
from matlink.transports.base import NetworkTransport


class NetworkConnector:
    """Scans for networks and owns at most one NetworkSession.

    Independent of the radio link: neither state machine waits on the other.
    """

    def __init__(self, transport: NetworkTransport, gate: CapabilityGate):
        self.logger = logging.getLogger("matlink.network")
        self.transport = transport
        self.gate = gate
        self._session: Optional[NetworkSession] = None
        self._networks: List[WifiNetwork] = []

    @property
    def session(self) -> Optional[NetworkSession]:
        return self._session

    @property
    def is_connected(self) -> bool:
        return self._session is not None and self._session.state == NetworkState.CONNECTED

    @property
    def networks(self) -> List[WifiNetwork]:
        """Snapshot returned by the last scan."""
        return list(self._networks)

    async def scan_networks(self) -> List[WifiNetwork]:
        """Return the currently visible networks, strongest first.

        Access points sharing an SSID collapse into one entry carrying the
        strongest signal. Hidden (empty) SSIDs are skipped.

        Raises:
            PermissionDenied: If the network-scan capability is denied
            NetworkScanFailed: If the transport cannot list networks
        """
        await self.gate.require([Capability.NETWORK_SCAN])

        self.logger.info("Scanning for Wi-Fi networks")
        try:
            found = await self.transport.list_networks()
        except Exception as e:
            self.logger.error(f"Wi-Fi scan failed: {e}", exc_info=True)
            raise NetworkScanFailed(f"Failed to find Wi-Fi networks: {e}") from e

        by_ssid: Dict[str, WifiNetwork] = {}
        for network in found:
            if not network.ssid:
                continue
            known = by_ssid.get(network.ssid)
            if known is None or (network.signal or 0) > (known.signal or 0):
                by_ssid[network.ssid] = network

        self._networks = sorted(by_ssid.values(), key=lambda n: n.signal or 0, reverse=True)
        self.logger.info(f"Found {len(self._networks)} Wi-Fi network(s)")
        return self.networks

    async def connect(
        self, network: Union[WifiNetwork, str], credential: Optional[str] = None
    ) -> NetworkSession:
        """Join a network.

        Args:
            network: Network from a scan snapshot, or a bare SSID (secured)
            credential: Shared credential; required for secured networks

        Returns:
            The connected session

        Raises:
            NetworkSessionRejected: If a session is connecting or connected
            NetworkAuthFailed: On a missing/rejected credential or unreachable network
        """
        if self._session is not None:
            raise NetworkSessionRejected(
                f"Already {self._session.state.value} to {self._session.ssid}"
            )
        if isinstance(network, str):
            network = WifiNetwork(ssid=network, secured=True)
        if network.secured and not credential:
            raise NetworkAuthFailed(f"A password is required for {network.ssid}")

        session = NetworkSession(ssid=network.ssid, state=NetworkState.CONNECTING)
        self._session = session
        self.logger.info(f"Joining Wi-Fi network {network.ssid}")

        try:
            await self.transport.join_secured(
                network.ssid, credential if network.secured else None
            )
        except Exception as e:
            if self._session is session:
                self._session = None
            self.logger.error(f"Could not join {network.ssid}: {e}")
            raise NetworkAuthFailed(f"Could not connect to {network.ssid}: {e}") from e

        if self._session is not session:
            # disconnect() was called while joining; a newer session may own this SSID
            current = self._session
            if current is None or current.ssid != network.ssid:
                await self._safe_leave(network.ssid)
            raise NetworkAuthFailed(f"Join of {network.ssid} was cancelled")

        session.state = NetworkState.CONNECTED
        session.connected_at = datetime.now()
        self.logger.info(f"Connected to Wi-Fi network {network.ssid}")
        return session

    async def disconnect(self) -> None:
        """Release the session. Idempotent."""
        session, self._session = self._session, None
        if session is None or session.state != NetworkState.CONNECTED:
            return
        await self._safe_leave(session.ssid)

    async def _safe_leave(self, ssid: str) -> None:
        try:
            await self.transport.leave(ssid)
            self.logger.info(f"Left Wi-Fi network {ssid}")
        except Exception as e:
            self.logger.warning(f"Failed to leave {ssid}: {e}")
