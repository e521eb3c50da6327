"""Lifecycle of the single short-range radio link to the mat."""

import asyncio
import logging
from datetime import datetime
from functools import partial
from typing import List, Optional, Set

from matlink.models.device import Peripheral, RadioEvent, RadioLinkInfo
from matlink.models.errors import (
    ConnectionFailed,
    ConnectionRejected,
    ConnectionTimeout,
    LinkLost,
    RadioUnavailable,
)
from matlink.models.status import Capability, RadioEventKind, RadioReadiness, RadioState
from matlink.services.capabilities import CapabilityGate
from matlink.services.scanner import RadioScanner
from matlink.services.state_manager import DeviceStateManager
from matlink.transports.base import RadioLinkHandle, RadioTransport
from matlink.utils.clock import Clock
from matlink.utils.events import EventStream

_BUSY_STATES = (RadioState.CONNECTING, RadioState.CONNECTED)


def _expire(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


class RadioConnectionManager:
    """Owns at most one RadioLink: scan, connect, monitor, disconnect.

    All notifications (discoveries, scan stop, state changes, link loss) are
    published in order on ``self.events``.
    """

    def __init__(
        self,
        transport: RadioTransport,
        gate: CapabilityGate,
        clock: Optional[Clock] = None,
        scan_window_seconds: float = 10.0,
        connect_timeout_seconds: float = 5.0,
        auto_reconnect: bool = True,
        name_filter: Optional[str] = None,
        state_manager: Optional[DeviceStateManager] = None,
    ):
        self.logger = logging.getLogger("matlink.radio")
        self.transport = transport
        self.gate = gate
        self.clock = clock or Clock()
        self.connect_timeout_seconds = connect_timeout_seconds
        self.auto_reconnect = auto_reconnect
        self.state_manager = state_manager
        self.events: EventStream[RadioEvent] = EventStream("radio")
        self.scanner = RadioScanner(
            transport,
            gate,
            clock=self.clock,
            window_seconds=scan_window_seconds,
            name_filter=name_filter,
            events=self.events,
            on_stopped=self._on_scan_stopped,
        )

        self._state = RadioState.IDLE
        self._selected: Optional[str] = None
        self._link: Optional[RadioLinkHandle] = None
        self._link_info: Optional[RadioLinkInfo] = None
        self._attempt = 0
        self._establishing: Optional[RadioLinkHandle] = None
        self._background: Set[asyncio.Task] = set()

    @property
    def state(self) -> RadioState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == RadioState.CONNECTED and self._link is not None

    @property
    def selected_device(self) -> Optional[str]:
        return self._selected

    @property
    def link(self) -> Optional[RadioLinkInfo]:
        return self._link_info

    @property
    def peripherals(self) -> List[Peripheral]:
        return self.scanner.peripherals

    async def scan(self) -> None:
        """Start (or re-arm) the discovery window.

        Raises:
            ConnectionRejected: While connecting or connected
            PermissionDenied: If the radio-scan capability is denied
            ScanFailed: If discovery cannot start
        """
        if self._state in _BUSY_STATES:
            raise ConnectionRejected(f"Cannot scan while {self._state.value}")

        await self.scanner.start()
        if self.scanner.scanning and self._state not in _BUSY_STATES:
            self._selected = None
            self._set_state(RadioState.SCANNING)

    async def stop_scan(self) -> None:
        await self.scanner.stop()

    def select(self, peripheral_id: str) -> None:
        """Mark the peripheral the UI picked as the connect target."""
        if self._state in _BUSY_STATES:
            raise ConnectionRejected(f"Cannot select a device while {self._state.value}")
        self._selected = peripheral_id
        self._set_state(RadioState.DEVICE_SELECTED)

    async def connect(self, peripheral_id: Optional[str] = None) -> RadioLinkInfo:
        """Connect to a peripheral and discover its capabilities.

        Args:
            peripheral_id: Target id; defaults to the selected device

        Returns:
            The established link

        Raises:
            ConnectionRejected: If a link exists or a connect is in flight
            PermissionDenied: If the radio-connect capability is denied
            RadioUnavailable: If the radio is not ready
            ConnectionTimeout: If the attempt does not resolve in time
            ConnectionFailed: If connecting or capability discovery fails
        """
        # Must run to completion before the first await
        if self._state in _BUSY_STATES:
            raise ConnectionRejected(
                f"Already {self._state.value} to {self._selected or 'a device'}"
            )
        target = peripheral_id or self._selected
        if not target:
            raise ConnectionFailed("No device selected")

        self._attempt += 1
        attempt = self._attempt
        self._selected = target
        self._set_state(RadioState.CONNECTING)

        try:
            link = await self._establish(target, attempt)
        except BaseException:
            if attempt == self._attempt and self._state == RadioState.CONNECTING:
                self._selected = None
                self._set_state(RadioState.IDLE)
            raise

        self._link = link
        self._link_info = RadioLinkInfo(
            peripheral_id=target,
            state=RadioState.CONNECTED,
            established_at=datetime.now(),
        )
        self._set_state(RadioState.CONNECTED)
        self.logger.info(f"Connected to {target}")

        if self.state_manager:
            try:
                self.state_manager.record_peripheral(target)
            except Exception as e:
                self.logger.warning(f"Failed to record peripheral {target}: {e}")
        return self._link_info

    async def disconnect(self) -> None:
        """Release the owned link. Always succeeds locally; idempotent."""
        link = self._link
        in_flight = self._state == RadioState.CONNECTING
        self._attempt += 1
        self._link = None
        self._link_info = None

        if link is None and not in_flight:
            self.logger.debug("Disconnect requested with no link")
            return

        self._selected = None
        self._set_state(RadioState.DISCONNECTED)
        if link is not None:
            self.logger.info(f"Disconnecting from {link.peripheral_id}")
            await self._safe_disconnect(link)

    async def shutdown(self) -> None:
        await self.scanner.stop("shutdown")
        await self.disconnect()

    async def _establish(self, target: str, attempt: int) -> RadioLinkHandle:
        if self.scanner.scanning:
            await self.scanner.stop("connecting")
        await self.gate.require([Capability.RADIO_CONNECT])

        try:
            readiness = await self.transport.state()
        except Exception as e:
            self.logger.warning(f"Radio state query failed: {e}")
            readiness = RadioReadiness.NOT_READY
        if readiness != RadioReadiness.READY:
            raise RadioUnavailable("Please enable Bluetooth to connect to the mat")

        self.logger.info(f"Connecting to {target} (timeout {self.connect_timeout_seconds}s)")
        link = await self._connect_with_timeout(target)

        if attempt != self._attempt:
            await self._safe_disconnect(link)
            raise ConnectionFailed("Connection attempt was cancelled")

        # Watch for loss from the moment the link exists
        self._establishing = link
        link.on_link_lost(partial(self._on_link_lost, link))
        try:
            try:
                await link.discover_capabilities()
            except Exception as e:
                self.logger.error(f"Capability discovery failed on {target}: {e}")
                await self._safe_disconnect(link)
                raise ConnectionFailed(f"Capability discovery failed: {e}") from e

            if self._establishing is not link:
                await self._safe_disconnect(link)
                raise ConnectionFailed(f"Connection to {target} was lost during setup")
            if attempt != self._attempt:
                await self._safe_disconnect(link)
                raise ConnectionFailed("Connection attempt was cancelled")
        finally:
            if self._establishing is link:
                self._establishing = None
        return link

    async def _connect_with_timeout(self, target: str) -> RadioLinkHandle:
        connect_task = asyncio.ensure_future(
            self.transport.connect(
                target,
                timeout=self.connect_timeout_seconds,
                auto_reconnect=self.auto_reconnect,
            )
        )
        expired = asyncio.get_running_loop().create_future()
        timer = self.clock.call_later(self.connect_timeout_seconds, _expire, expired)
        try:
            await asyncio.wait({connect_task, expired}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            self._abandon(connect_task)
            raise
        finally:
            timer.cancel()
            if not expired.done():
                expired.cancel()

        if not connect_task.done():
            self._abandon(connect_task)
            self.logger.error(f"Connection to {target} timed out")
            raise ConnectionTimeout(
                f"No response from {target} within {self.connect_timeout_seconds:g}s"
            )

        try:
            return connect_task.result()
        except Exception as e:
            self.logger.error(f"Connection to {target} failed: {e}")
            raise ConnectionFailed(f"Could not connect to the mat: {e}") from e

    def _abandon(self, connect_task: asyncio.Future) -> None:
        """Cancel a losing connect attempt and drop whatever it yields later."""
        connect_task.cancel()
        connect_task.add_done_callback(self._discard_late_link)

    def _discard_late_link(self, connect_task: asyncio.Future) -> None:
        if connect_task.cancelled() or connect_task.exception() is not None:
            return
        link = connect_task.result()
        self.logger.warning(f"Discarding late link to {link.peripheral_id}")
        task = asyncio.ensure_future(self._safe_disconnect(link))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _on_link_lost(self, link: RadioLinkHandle) -> None:
        if link is self._establishing:
            self.logger.warning(f"Link to {link.peripheral_id} dropped during setup")
            self._establishing = None
            return
        if link is not self._link:
            return
        self.logger.warning(f"Link to {link.peripheral_id} lost")
        self._attempt += 1
        self._link = None
        self._link_info = None
        self._selected = None
        self._set_state(RadioState.DISCONNECTED, emit=False)
        error = LinkLost(f"Connection to {link.peripheral_id} was lost")
        self.events.emit(
            RadioEvent(
                kind=RadioEventKind.LINK_LOST,
                state=self._state,
                reason=str(error),
            )
        )

    def _on_scan_stopped(self, reason: str) -> None:
        if self._state == RadioState.SCANNING:
            self._set_state(RadioState.IDLE)

    def _set_state(self, state: RadioState, emit: bool = True) -> None:
        if state == self._state:
            return
        self.logger.debug(f"Radio state: {self._state.value} -> {state.value}")
        self._state = state
        if emit:
            self.events.emit(RadioEvent(kind=RadioEventKind.STATE_CHANGED, state=state))

    async def _safe_disconnect(self, link: RadioLinkHandle) -> None:
        try:
            await link.disconnect()
        except Exception as e:
            self.logger.warning(f"Disconnect from {link.peripheral_id} failed: {e}")
