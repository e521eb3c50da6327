"""Companion wiring: builds the services with their collaborators."""

import logging
from pathlib import Path
from typing import Optional

from matlink.models.config import CompanionConfig
from matlink.models.release import UsageSessionRecord
from matlink.models.state import DeviceState
from matlink.services.capabilities import CapabilityGate
from matlink.services.coordinator import UpdateCoordinator
from matlink.services.firmware import HttpFirmwareTransport, SimulatedFirmwareTransport
from matlink.services.ledger import HttpSessionLedger, JsonFileSessionLedger
from matlink.services.network import NetworkConnector
from matlink.services.radio import RadioConnectionManager
from matlink.services.releases import HttpReleaseCatalog, InMemoryReleaseCatalog, ReleaseResolver
from matlink.services.state_manager import DeviceStateManager
from matlink.transports.base import (
    FirmwareTransport,
    NetworkTransport,
    PermissionProvider,
    RadioTransport,
    ReleaseCatalog,
    SessionLedger,
)
from matlink.transports.bleak_radio import BleakRadioTransport
from matlink.transports.nmcli import NmcliNetworkTransport
from matlink.utils.clock import Clock
from matlink.utils.logging import setup_logger


class Companion:
    """The assembled companion controller.

    Holds one instance of each service; nothing here is process-global, so
    several companions (e.g. in tests) can coexist.
    """

    def __init__(
        self,
        config: CompanionConfig,
        gate: CapabilityGate,
        radio: RadioConnectionManager,
        network: NetworkConnector,
        resolver: ReleaseResolver,
        updater: UpdateCoordinator,
        ledger: SessionLedger,
        state_manager: DeviceStateManager,
    ):
        self.logger = logging.getLogger("matlink")
        self.config = config
        self.gate = gate
        self.radio = radio
        self.network = network
        self.resolver = resolver
        self.updater = updater
        self.ledger = ledger
        self.state_manager = state_manager

    def startup(self) -> Optional[DeviceState]:
        """Configure logging, create data directories and load device state.

        Returns:
            The persisted DeviceState, or None on first run
        """
        setup_logger(
            "matlink",
            self.config.log_file,
            level=self.config.log_level,
        )
        self.logger.info("matlink companion starting up...")

        directories = [
            Path(self.config.ledger_path).parent,
            Path(self.config.state_path).parent,
            Path(self.config.download_dir),
            Path(self.config.log_file).parent,
        ]
        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)
            self.logger.debug(f"Ensured directory exists: {directory}")

        state = self.state_manager.load_state()
        if state and state.firmware_version:
            if self.updater.current_version is None:
                self.updater.current_version = state.firmware_version
            self.logger.info(
                f"Found device state: firmware={state.firmware_version}, "
                f"last peripheral={state.last_peripheral_id}"
            )
        else:
            self.logger.info("No device state found, starting fresh")
        return state

    async def shutdown(self) -> None:
        """Stop scanning and release the radio link and Wi-Fi session."""
        self.logger.info("matlink companion shutting down...")
        await self.radio.shutdown()
        await self.network.disconnect()

    async def record_usage_session(self, mode: str, duration_minutes: float) -> None:
        """Append a finished workout session to the Session Ledger.

        Raises:
            Whatever the ledger raises; usage records are not retried
        """
        await self.ledger.append_usage_session(
            UsageSessionRecord(mode=mode, duration_minutes=duration_minutes)
        )


def build_companion(
    config: Optional[CompanionConfig] = None,
    radio_transport: Optional[RadioTransport] = None,
    network_transport: Optional[NetworkTransport] = None,
    permission_provider: Optional[PermissionProvider] = None,
    catalog: Optional[ReleaseCatalog] = None,
    ledger: Optional[SessionLedger] = None,
    firmware_transport: Optional[FirmwareTransport] = None,
    clock: Optional[Clock] = None,
) -> Companion:
    """Assemble a Companion, filling in production defaults.

    Defaults: bleak for the radio, nmcli for Wi-Fi, an HTTP catalog and
    firmware download when ``catalog_url`` is set (an empty in-memory
    catalog and the simulated transport otherwise), an HTTP ledger when
    ``ledger_url`` is set (a JSON file otherwise).
    """
    config = config or CompanionConfig()
    clock = clock or Clock()

    if radio_transport is None:
        radio_transport = BleakRadioTransport()
    if network_transport is None:
        network_transport = NmcliNetworkTransport(interface=config.wifi_interface)

    if catalog is None:
        catalog = (
            HttpReleaseCatalog(config.catalog_url)
            if config.catalog_url
            else InMemoryReleaseCatalog()
        )
    if ledger is None:
        ledger = (
            HttpSessionLedger(config.ledger_url)
            if config.ledger_url
            else JsonFileSessionLedger(config.ledger_path)
        )

    simulated = SimulatedFirmwareTransport(
        clock=clock,
        step=config.progress_step,
        interval=config.progress_interval_seconds,
    )
    if firmware_transport is None:
        firmware_transport = (
            HttpFirmwareTransport(config.download_dir, installer=simulated)
            if config.catalog_url
            else simulated
        )

    state_manager = DeviceStateManager(config.state_path)
    gate = CapabilityGate(permission_provider)
    radio = RadioConnectionManager(
        radio_transport,
        gate,
        clock=clock,
        scan_window_seconds=config.scan_window_seconds,
        connect_timeout_seconds=config.connect_timeout_seconds,
        auto_reconnect=config.auto_reconnect,
        name_filter=config.name_filter,
        state_manager=state_manager,
    )
    network = NetworkConnector(network_transport, gate)
    resolver = ReleaseResolver(catalog)
    updater = UpdateCoordinator(
        resolver,
        firmware_transport,
        ledger=ledger,
        state_manager=state_manager,
    )
    return Companion(config, gate, radio, network, resolver, updater, ledger, state_manager)
