"""Timed radio discovery with identity deduplication."""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set

from matlink.models.device import Advertisement, Peripheral, RadioEvent
from matlink.models.errors import ScanFailed
from matlink.models.status import Capability, RadioEventKind
from matlink.services.capabilities import CapabilityGate
from matlink.transports.base import RadioTransport
from matlink.utils.clock import Clock
from matlink.utils.events import EventStream


class RadioScanner:
    """Discovers advertising peripherals for a bounded window.

    The discovery set keeps one entry per peripheral id in first-seen order;
    later advertisements for a known id are ignored. The window timer stops
    discovery on its own, and advertisements arriving after the stop are
    dropped even if the transport is slow to quiesce.
    """

    def __init__(
        self,
        transport: RadioTransport,
        gate: CapabilityGate,
        clock: Optional[Clock] = None,
        window_seconds: float = 10.0,
        name_filter: Optional[str] = None,
        events: Optional[EventStream] = None,
        on_stopped: Optional[Callable[[str], None]] = None,
    ):
        self.logger = logging.getLogger("matlink.scanner")
        self.transport = transport
        self.gate = gate
        self.clock = clock or Clock()
        self.window_seconds = window_seconds
        self.name_filter = name_filter
        self.events: EventStream[RadioEvent] = events or EventStream("radio")
        self.on_stopped = on_stopped

        self._peripherals: Dict[str, Peripheral] = {}
        self._scanning = False
        self._generation = 0
        self._timer = None
        self._background: Set[asyncio.Task] = set()

    @property
    def scanning(self) -> bool:
        return self._scanning

    @property
    def peripherals(self) -> List[Peripheral]:
        """Discovery set of the current (or last) scan, first-seen order."""
        return list(self._peripherals.values())

    async def start(self) -> None:
        """Start a discovery window.

        Calling start while a window is open restarts the window timer and
        keeps the current discovery set.

        Raises:
            PermissionDenied: If the radio-scan capability is not granted
            ScanFailed: If the transport refuses to start discovery
        """
        await self.gate.require([Capability.RADIO_SCAN])

        if self._scanning:
            self._arm_window()
            self.logger.info(f"Scan already running, window reset to {self.window_seconds}s")
            return

        self._peripherals = {}
        self._generation += 1
        generation = self._generation
        self._scanning = True

        self.logger.info(f"Starting radio scan ({self.window_seconds}s window)")
        try:
            await self.transport.start_discovery(
                lambda advertisement: self._on_advertisement(generation, advertisement)
            )
        except Exception as e:
            self._scanning = False
            self.logger.error(f"Radio scan failed to start: {e}", exc_info=True)
            raise ScanFailed(f"Could not scan for the mat: {e}") from e

        if generation != self._generation:
            # stopped while the transport was starting
            return

        self._arm_window()
        self.events.emit(RadioEvent(kind=RadioEventKind.SCAN_STARTED))

    async def stop(self, reason: str = "stopped") -> None:
        """Stop discovery early. No-op if not scanning."""
        if not self._scanning:
            return
        self._finish(reason)
        await self._stop_transport()

    def _arm_window(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self.clock.call_later(
            self.window_seconds, self._on_window_expired, self._generation
        )

    def _on_advertisement(self, generation: int, advertisement: Advertisement) -> None:
        if not self._scanning or generation != self._generation:
            return
        if self.name_filter and (
            not advertisement.name
            or self.name_filter.lower() not in advertisement.name.lower()
        ):
            return
        if advertisement.id in self._peripherals:
            return

        peripheral = Peripheral(
            id=advertisement.id, name=advertisement.name, rssi=advertisement.rssi
        )
        self._peripherals[peripheral.id] = peripheral
        self.logger.debug(f"Discovered {peripheral.name or 'unnamed'} ({peripheral.id})")
        self.events.emit(
            RadioEvent(kind=RadioEventKind.PERIPHERAL_DISCOVERED, peripheral=peripheral)
        )

    def _on_window_expired(self, generation: int) -> None:
        if not self._scanning or generation != self._generation:
            return
        self.logger.info(
            f"Scan window elapsed, {len(self._peripherals)} peripheral(s) found"
        )
        self._finish("window elapsed")
        task = asyncio.ensure_future(self._stop_transport())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _finish(self, reason: str) -> None:
        self._scanning = False
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.events.emit(
            RadioEvent(
                kind=RadioEventKind.SCAN_STOPPED,
                peripherals=self.peripherals,
                reason=reason,
            )
        )
        if self.on_stopped:
            self.on_stopped(reason)

    async def _stop_transport(self) -> None:
        try:
            await self.transport.stop_discovery()
        except Exception as e:
            self.logger.warning(f"Failed to stop radio discovery: {e}")
