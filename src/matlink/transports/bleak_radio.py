"""Bluetooth LE radio transport built on bleak."""

import asyncio
import logging
from typing import Callable, List, Optional

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from matlink.models.device import Advertisement
from matlink.models.status import RadioReadiness


class BleakRadioLink:
    """A connected BleakClient plus its link-lost handlers."""

    def __init__(self, peripheral_id: str, client: Optional[BleakClient] = None):
        self.logger = logging.getLogger("matlink.bleak")
        self.peripheral_id = peripheral_id
        self.client = client
        self._handlers: List[Callable[[], None]] = []
        self._closing = False
        self._lost = False

    async def discover_capabilities(self) -> None:
        """Raises BleakError if the peripheral exposes no GATT services."""
        services = list(self.client.services) if self.client.services is not None else []
        if not services:
            raise BleakError(f"No GATT services found on {self.peripheral_id}")
        self.logger.debug(f"{self.peripheral_id} exposes {len(services)} service(s)")

    def on_link_lost(self, handler: Callable[[], None]) -> None:
        """Register a loss handler; called at once if the link already dropped."""
        self._handlers.append(handler)
        if self._lost:
            self._notify(handler)

    async def disconnect(self) -> None:
        self._closing = True
        if self.client.is_connected:
            await self.client.disconnect()

    def handle_disconnected(self, client: BleakClient) -> None:
        """Called by bleak on the event loop when the peripheral drops."""
        if self._closing or self._lost:
            return
        self._lost = True
        self.logger.warning(f"Peripheral {self.peripheral_id} disconnected")
        for handler in list(self._handlers):
            self._notify(handler)

    def _notify(self, handler: Callable[[], None]) -> None:
        try:
            handler()
        except Exception as e:
            self.logger.error(f"Link-lost handler failed: {e}", exc_info=True)


class BleakRadioTransport:
    """Discovery and connection through the host Bluetooth adapter.

    bleak has no transport-level reconnect, so ``auto_reconnect`` is
    accepted and ignored; a dropped link is always reported as lost.
    """

    def __init__(self, probe_timeout: float = 1.0):
        self.logger = logging.getLogger("matlink.bleak")
        self.probe_timeout = probe_timeout
        self._scanner: Optional[BleakScanner] = None

    async def state(self) -> RadioReadiness:
        if self._scanner is not None:
            return RadioReadiness.READY
        probe = BleakScanner()
        try:
            await asyncio.wait_for(probe.start(), timeout=self.probe_timeout)
            await probe.stop()
        except (BleakError, OSError, asyncio.TimeoutError) as e:
            self.logger.warning(f"Bluetooth adapter not ready: {e}")
            return RadioReadiness.NOT_READY
        return RadioReadiness.READY

    async def start_discovery(self, on_event: Callable[[Advertisement], None]) -> None:
        if self._scanner is not None:
            await self.stop_discovery()

        def detection_callback(device, advertisement_data) -> None:
            on_event(
                Advertisement(
                    id=device.address,
                    name=device.name or advertisement_data.local_name,
                    rssi=advertisement_data.rssi,
                )
            )

        scanner = BleakScanner(detection_callback=detection_callback)
        await scanner.start()
        self._scanner = scanner
        self.logger.debug("BLE discovery started")

    async def stop_discovery(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is not None:
            await scanner.stop()
            self.logger.debug("BLE discovery stopped")

    async def connect(
        self, peripheral_id: str, *, timeout: float, auto_reconnect: bool = True
    ) -> BleakRadioLink:
        link = BleakRadioLink(peripheral_id)
        client = BleakClient(
            peripheral_id, timeout=timeout, disconnected_callback=link.handle_disconnected
        )
        link.client = client
        try:
            await client.connect()
        except asyncio.CancelledError:
            link._closing = True
            await self._quiet_disconnect(client)
            raise
        return link

    async def _quiet_disconnect(self, client: BleakClient) -> None:
        try:
            await client.disconnect()
        except (BleakError, OSError) as e:
            self.logger.debug(f"Cleanup disconnect failed: {e}")
