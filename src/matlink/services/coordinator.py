"""Firmware update pipeline: check, download, install."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Type

from matlink.models.errors import (
    DownloadFailed,
    InstallFailed,
    MatLinkError,
    UpdateCheckFailed,
    UpdateRejected,
)
from matlink.models.release import FirmwareHistoryRecord, FirmwareRelease, UpdateCheck
from matlink.models.session import ProgressEvent, UpdateResult, UpdateSession, UpdateStatus
from matlink.models.status import UpdateOutcome, UpdatePhase, UpdateStage
from matlink.services.releases import ReleaseResolver
from matlink.services.state_manager import DeviceStateManager
from matlink.transports.base import FirmwareTransport, ProgressCallback, SessionLedger
from matlink.utils.events import EventStream, Subscription


class UpdateCoordinator:
    """Drives one UpdateSession at a time through download and install.

    Progress is published on ``self.progress``: each phase starts at 0.0,
    only ever moves forward, and ends at exactly 1.0 when the phase
    succeeds. Reports that would move backwards, or that arrive after their
    phase ended, are dropped. Terminal outcomes go to ``self.results``.
    """

    def __init__(
        self,
        resolver: ReleaseResolver,
        transport: FirmwareTransport,
        ledger: Optional[SessionLedger] = None,
        state_manager: Optional[DeviceStateManager] = None,
        current_version: Optional[str] = None,
    ):
        self.logger = logging.getLogger("matlink.coordinator")
        self.resolver = resolver
        self.transport = transport
        self.ledger = ledger
        self.state_manager = state_manager
        self.progress: EventStream[ProgressEvent] = EventStream("update.progress")
        self.results: EventStream[UpdateResult] = EventStream("update.results")

        if current_version is None and state_manager is not None:
            current_version = state_manager.firmware_version
        self._current_version = current_version
        self._session: Optional[UpdateSession] = None
        self._available: Optional[FirmwareRelease] = None

        self._stage = UpdateStage.IDLE
        self._progress = 0.0
        self._message = "Updater ready"
        self._error: Optional[str] = None

    @property
    def current_version(self) -> Optional[str]:
        """Firmware version recorded for the device."""
        return self._current_version

    @current_version.setter
    def current_version(self, version: str) -> None:
        self._current_version = version

    @property
    def session(self) -> Optional[UpdateSession]:
        return self._session

    @property
    def stage(self) -> UpdateStage:
        return self._stage

    def get_status(self) -> UpdateStatus:
        return UpdateStatus(
            stage=self._stage,
            progress=self._progress,
            message=self._message,
            error=self._error,
            current_version=self._current_version,
            available_release=self._available,
        )

    async def check_for_update(self, current_version: Optional[str] = None) -> UpdateCheck:
        """Ask the resolver for a newer release. Never creates a session.

        Args:
            current_version: Device-reported version; defaults to the recorded one

        Raises:
            UpdateRejected: While a check or update is running
            UpdateCheckFailed: If the version is unknown or the catalog fails
        """
        if self._session is not None or self._stage.is_busy:
            raise UpdateRejected(f"Update already in progress: {self._stage.value}")
        version = current_version or self._current_version
        if not version:
            raise UpdateCheckFailed("Device firmware version is unknown")

        self._update_status(UpdateStage.CHECKING, f"Checking for updates to {version}...")
        try:
            check = await self.resolver.check_for_update(version)
        except UpdateCheckFailed as e:
            self._update_status(UpdateStage.FAILED, "Update check failed", error=str(e))
            raise
        except BaseException:
            self._update_status(UpdateStage.IDLE, "Update check was cancelled")
            raise

        self._current_version = version
        self._available = check.release
        if check.has_update:
            self._update_status(
                UpdateStage.UPDATE_AVAILABLE, f"Version {check.release.version} is available"
            )
        else:
            self._update_status(UpdateStage.NO_UPDATE, f"Version {version} is up to date")
        return check

    async def start_update(
        self,
        release: Optional[FirmwareRelease] = None,
        on_progress: Optional[Callable[[ProgressEvent], None]] = None,
    ) -> UpdateResult:
        """Download and install a release.

        Args:
            release: Release to install; defaults to the one found by the last check
            on_progress: Subscribed to the progress stream for this update only

        Returns:
            UpdateResult with outcome succeeded

        Raises:
            UpdateRejected: If an update is already active (the active
                session is left untouched) or there is nothing to install
            DownloadFailed: If the download phase fails
            InstallFailed: If the install phase fails
        """
        # Rejection must happen before the first await
        if self._session is not None or self._stage.is_busy:
            raise UpdateRejected(f"Update already in progress: {self._stage.value}")
        release = release or self._available
        if release is None:
            raise UpdateRejected("No update available to install")

        session = UpdateSession(release=release, phase=UpdatePhase.DOWNLOADING)
        self._session = session
        subscription: Optional[Subscription] = None
        if on_progress is not None:
            subscription = self.progress.subscribe(on_progress)

        self.logger.info(f"Starting update to {release.version}")
        try:
            locator = await self._run_phase(
                session,
                UpdatePhase.DOWNLOADING,
                f"Downloading version {release.version}...",
                lambda report: self.transport.download(release, report),
                DownloadFailed,
            )
            await self._run_phase(
                session,
                UpdatePhase.INSTALLING,
                f"Installing version {release.version}...",
                lambda report: self.transport.install(locator, release, report),
                InstallFailed,
            )
        except MatLinkError as e:
            self._fail(session, e)
            raise
        except asyncio.CancelledError:
            error_cls = (
                InstallFailed if session.phase == UpdatePhase.INSTALLING else DownloadFailed
            )
            self._fail(session, error_cls("Update was cancelled"))
            raise
        finally:
            if subscription is not None:
                subscription.cancel()

        return await self._succeed(session)

    async def _run_phase(
        self,
        session: UpdateSession,
        phase: UpdatePhase,
        message: str,
        action: Callable[[ProgressCallback], Awaitable],
        error_cls: Type[MatLinkError],
    ):
        session.phase = phase
        session.progress = 0.0
        self._update_status(UpdateStage(phase.value), message)
        self._publish(session, phase, 0.0)

        def report(value: float) -> None:
            if self._session is not session or session.phase != phase:
                return
            value = max(0.0, min(1.0, float(value)))
            if value <= session.progress:
                if value < session.progress:
                    self.logger.debug(
                        f"Dropped out-of-order {phase.value} progress {value:.3f} "
                        f"(at {session.progress:.3f})"
                    )
                return
            self._publish(session, phase, value)

        try:
            result = await action(report)
        except error_cls:
            raise
        except Exception as e:
            self.logger.error(f"{phase.value.capitalize()} failed: {e}", exc_info=True)
            raise error_cls(f"{phase.value.capitalize()} failed: {e}") from e

        if session.progress < 1.0:
            self._publish(session, phase, 1.0)
        self.logger.info(f"{phase.value.capitalize()} of {session.release.version} complete")
        return result

    async def _succeed(self, session: UpdateSession) -> UpdateResult:
        version = session.release.version
        previous = self._current_version
        self._current_version = version
        if self.state_manager is not None:
            try:
                self.state_manager.record_firmware_version(version)
            except Exception as e:
                self.logger.warning(f"Failed to persist firmware version {version}: {e}")

        session.outcome = UpdateOutcome.SUCCEEDED
        self._session = None
        self._available = None
        self._update_status(UpdateStage.IDLE, f"Updated from {previous} to {version}")
        self.logger.info(f"Update to {version} succeeded")

        result = UpdateResult(version=version, outcome=UpdateOutcome.SUCCEEDED)
        self.results.emit(result)

        if self.ledger is not None:
            try:
                await asyncio.shield(
                    self.ledger.append_firmware_history(FirmwareHistoryRecord(version=version))
                )
            except Exception as e:
                self.logger.error(f"Error logging update to {version}: {e}")
        return result

    def _fail(self, session: UpdateSession, error: MatLinkError) -> None:
        session.outcome = UpdateOutcome.FAILED
        session.reason = str(error)
        if self._session is session:
            self._session = None
        self._update_status(
            UpdateStage.FAILED, f"Update to {session.release.version} failed", error=str(error)
        )
        self.logger.error(f"Update to {session.release.version} failed: {error}")
        self.results.emit(
            UpdateResult(
                version=session.release.version,
                outcome=UpdateOutcome.FAILED,
                reason=str(error),
            )
        )

    def _publish(self, session: UpdateSession, phase: UpdatePhase, value: float) -> None:
        session.progress = value
        self._progress = value
        self.logger.debug(f"{phase.value} progress: {value:.0%}")
        self.progress.emit(ProgressEvent(phase=phase, progress=value))

    def _update_status(
        self, stage: UpdateStage, message: str, error: Optional[str] = None
    ) -> None:
        self._stage = stage
        self._message = message
        self._error = error
        if stage not in (UpdateStage.DOWNLOADING, UpdateStage.INSTALLING):
            self._progress = 0.0
        self.logger.debug(f"Status updated: stage={stage.value}, message={message}")
