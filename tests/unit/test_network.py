"""Unit tests for NetworkConnector."""

import asyncio
import pytest

from matlink.models.device import WifiNetwork
from matlink.models.errors import (
    NetworkAuthFailed,
    NetworkScanFailed,
    NetworkSessionRejected,
    PermissionDenied,
)
from matlink.models.status import NetworkState
from matlink.services.capabilities import CapabilityGate, StaticPermissionProvider
from matlink.services.network import NetworkConnector


@pytest.mark.unit
class TestNetworkScan:

    @pytest.fixture
    def connector(self, network_transport, gate):
        return NetworkConnector(network_transport, gate)

    @pytest.mark.asyncio
    async def test_returns_snapshot_strongest_first(self, connector, network_transport):
        network_transport.networks.append(WifiNetwork(ssid="Attic", signal=90))

        networks = await connector.scan_networks()

        assert [n.ssid for n in networks] == ["Attic", "HomeNet", "CafeOpen"]
        assert connector.networks == networks

    @pytest.mark.asyncio
    async def test_collapses_duplicate_ssids(self, connector, network_transport):
        network_transport.networks = [
            WifiNetwork(ssid="HomeNet", signal=30),
            WifiNetwork(ssid="HomeNet", signal=80),
            WifiNetwork(ssid="", signal=99),
        ]

        networks = await connector.scan_networks()

        assert len(networks) == 1
        assert networks[0].signal == 80

    @pytest.mark.asyncio
    async def test_transport_failure(self, connector, network_transport):
        network_transport.list_error = OSError("nmcli missing")

        with pytest.raises(NetworkScanFailed, match="nmcli missing"):
            await connector.scan_networks()

    @pytest.mark.asyncio
    async def test_requires_capability(self, network_transport):
        connector = NetworkConnector(
            network_transport, CapabilityGate(StaticPermissionProvider(granted=[]))
        )

        with pytest.raises(PermissionDenied):
            await connector.scan_networks()


@pytest.mark.unit
class TestNetworkConnect:

    @pytest.fixture
    def connector(self, network_transport, gate):
        return NetworkConnector(network_transport, gate)

    @pytest.mark.asyncio
    async def test_secured_join(self, connector, network_transport):
        network = WifiNetwork(ssid="HomeNet", signal=70, secured=True)

        session = await connector.connect(network, "hunter22")

        assert session.state == NetworkState.CONNECTED
        assert session.connected_at is not None
        assert connector.is_connected
        assert network_transport.joined == [("HomeNet", "hunter22")]

    @pytest.mark.asyncio
    async def test_open_network_needs_no_credential(self, connector, network_transport):
        await connector.connect(WifiNetwork(ssid="CafeOpen", secured=False), "ignored")

        assert network_transport.joined == [("CafeOpen", None)]

    @pytest.mark.asyncio
    async def test_missing_credential(self, connector, network_transport):
        with pytest.raises(NetworkAuthFailed):
            await connector.connect("HomeNet")

        assert network_transport.joined == []
        assert connector.session is None

    @pytest.mark.asyncio
    async def test_auth_failure_clears_session(self, connector, network_transport):
        network_transport.join_error = RuntimeError("Secrets were required")

        with pytest.raises(NetworkAuthFailed) as exc_info:
            await connector.connect("HomeNet", "wrong")

        assert exc_info.value.code == "NETWORK_AUTH_FAILED"
        assert connector.session is None

        # Retry with a new credential is allowed
        network_transport.join_error = None
        await connector.connect("HomeNet", "right")
        assert connector.is_connected

    @pytest.mark.asyncio
    async def test_second_session_rejected(self, connector, network_transport):
        network_transport.pending = asyncio.get_running_loop().create_future()
        first = asyncio.ensure_future(connector.connect("HomeNet", "pw"))
        await asyncio.sleep(0)
        assert connector.session.state == NetworkState.CONNECTING

        with pytest.raises(NetworkSessionRejected):
            await connector.connect("CafeOpen", "pw")

        network_transport.pending.set_result(None)
        await first
        assert connector.session.ssid == "HomeNet"
        assert len(network_transport.joined) == 1

    @pytest.mark.asyncio
    async def test_disconnect_during_join(self, connector, network_transport):
        network_transport.pending = asyncio.get_running_loop().create_future()
        join = asyncio.ensure_future(connector.connect("HomeNet", "pw"))
        await asyncio.sleep(0)

        await connector.disconnect()
        network_transport.pending.set_result(None)

        with pytest.raises(NetworkAuthFailed, match="cancelled"):
            await join
        assert network_transport.left == ["HomeNet"]
        assert connector.session is None

    @pytest.mark.asyncio
    async def test_stale_join_keeps_newer_session_on_same_network(
        self, connector, network_transport
    ):
        loop = asyncio.get_running_loop()
        network_transport.pending = loop.create_future()
        stale_gate = network_transport.pending
        stale = asyncio.ensure_future(connector.connect("HomeNet", "pw"))
        await asyncio.sleep(0)
        await connector.disconnect()

        network_transport.pending = loop.create_future()
        fresh = asyncio.ensure_future(connector.connect("HomeNet", "pw"))
        await asyncio.sleep(0)
        network_transport.pending.set_result(None)
        session = await fresh

        stale_gate.set_result(None)
        with pytest.raises(NetworkAuthFailed, match="cancelled"):
            await stale

        assert network_transport.left == []
        assert connector.session is session
        assert connector.is_connected

    @pytest.mark.asyncio
    async def test_disconnect_leaves_network(self, connector, network_transport):
        await connector.connect("HomeNet", "pw")

        await connector.disconnect()
        await connector.disconnect()

        assert network_transport.left == ["HomeNet"]
        assert not connector.is_connected
