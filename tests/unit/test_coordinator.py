"""Unit tests for UpdateCoordinator."""

import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from matlink.models.errors import (
    DownloadFailed,
    InstallFailed,
    UpdateCheckFailed,
    UpdateRejected,
)
from matlink.models.status import UpdateOutcome, UpdatePhase, UpdateStage
from matlink.services.coordinator import UpdateCoordinator
from matlink.services.releases import InMemoryReleaseCatalog, ReleaseResolver


class ScriptedFirmwareTransport:
    """Reports a fixed sequence of progress values per phase."""

    def __init__(self, download_steps=(0.5, 1.0), install_steps=(0.5, 1.0)):
        self.download_steps = download_steps
        self.install_steps = install_steps
        self.download_error = None
        self.install_error = None
        self.gate = None
        self.installed = []

    async def download(self, release, on_progress):
        for value in self.download_steps:
            on_progress(value)
        if self.gate is not None:
            await self.gate
        if self.download_error:
            raise self.download_error
        return f"/tmp/{release.version}.bin"

    async def install(self, locator, release, on_progress):
        for value in self.install_steps:
            on_progress(value)
        if self.install_error:
            raise self.install_error
        self.installed.append(locator)


class GatedCatalog:
    """In-memory catalog whose queries wait on ``gate`` when it is set."""

    def __init__(self, releases):
        self.inner = InMemoryReleaseCatalog(releases)
        self.gate = None

    async def query_newer(self, version, limit=1):
        if self.gate is not None:
            await self.gate
        return await self.inner.query_newer(version, limit)


@pytest.mark.unit
class TestUpdateCoordinator:

    @pytest.fixture
    def transport(self):
        return ScriptedFirmwareTransport()

    @pytest.fixture
    def ledger(self):
        ledger = MagicMock()
        ledger.append_firmware_history = AsyncMock()
        return ledger

    @pytest.fixture
    def coordinator(self, sample_release, transport, ledger):
        resolver = ReleaseResolver(InMemoryReleaseCatalog([sample_release]))
        return UpdateCoordinator(resolver, transport, ledger=ledger, current_version="1.2.3")

    @pytest.fixture
    def progress(self, coordinator):
        received = []
        coordinator.progress.subscribe(received.append)
        return received

    @pytest.mark.asyncio
    async def test_check_finds_update_without_session(self, coordinator):
        check = await coordinator.check_for_update()

        assert check.has_update
        assert coordinator.stage == UpdateStage.UPDATE_AVAILABLE
        assert coordinator.session is None
        assert coordinator.get_status().available_release.version == "1.3.0"

    @pytest.mark.asyncio
    async def test_check_no_update(self, coordinator):
        check = await coordinator.check_for_update("1.3.0")

        assert not check.has_update
        assert coordinator.stage == UpdateStage.NO_UPDATE
        assert coordinator.session is None
        with pytest.raises(UpdateRejected, match="No update available"):
            await coordinator.start_update()

    @pytest.mark.asyncio
    async def test_check_unknown_version(self, sample_release, transport):
        coordinator = UpdateCoordinator(
            ReleaseResolver(InMemoryReleaseCatalog([sample_release])), transport
        )

        with pytest.raises(UpdateCheckFailed):
            await coordinator.check_for_update()

    @pytest.mark.asyncio
    async def test_check_catalog_failure_sets_failed(self, transport):
        catalog = MagicMock()
        catalog.query_newer = AsyncMock(side_effect=OSError("offline"))
        coordinator = UpdateCoordinator(
            ReleaseResolver(catalog), transport, current_version="1.2.3"
        )

        with pytest.raises(UpdateCheckFailed):
            await coordinator.check_for_update()

        status = coordinator.get_status()
        assert status.stage == UpdateStage.FAILED
        assert status.error.startswith("UPDATE_CHECK_FAILED")

    @pytest.mark.asyncio
    async def test_successful_update(self, coordinator, transport, ledger, progress):
        results = []
        coordinator.results.subscribe(results.append)
        await coordinator.check_for_update()

        result = await coordinator.start_update()

        assert result.outcome == UpdateOutcome.SUCCEEDED
        assert result.version == "1.3.0"
        assert coordinator.current_version == "1.3.0"
        assert coordinator.session is None
        assert coordinator.stage == UpdateStage.IDLE
        assert transport.installed == ["/tmp/1.3.0.bin"]
        ledger.append_firmware_history.assert_awaited_once()
        record = ledger.append_firmware_history.await_args.args[0]
        assert record.version == "1.3.0"
        assert results == [result]
        assert [(e.phase, e.progress) for e in progress] == [
            (UpdatePhase.DOWNLOADING, 0.0),
            (UpdatePhase.DOWNLOADING, 0.5),
            (UpdatePhase.DOWNLOADING, 1.0),
            (UpdatePhase.INSTALLING, 0.0),
            (UpdatePhase.INSTALLING, 0.5),
            (UpdatePhase.INSTALLING, 1.0),
        ]

    @pytest.mark.asyncio
    async def test_progress_is_monotonic_and_completes(
        self, coordinator, transport, sample_release, progress
    ):
        transport.download_steps = (0.3, 0.2, 0.3, 0.7, 0.6)
        transport.install_steps = (0.4, -1.0, 2.0)

        await coordinator.start_update(sample_release)

        for phase in (UpdatePhase.DOWNLOADING, UpdatePhase.INSTALLING):
            values = [e.progress for e in progress if e.phase == phase]
            assert values[0] == 0.0
            assert values[-1] == 1.0
            assert all(a < b for a, b in zip(values, values[1:]))
        downloading = [e.progress for e in progress if e.phase == UpdatePhase.DOWNLOADING]
        assert downloading == [0.0, 0.3, 0.7, 1.0]

    @pytest.mark.asyncio
    async def test_on_progress_is_scoped_to_the_update(self, coordinator, sample_release):
        seen = []

        await coordinator.start_update(sample_release, on_progress=seen.append)

        assert seen
        assert coordinator.progress.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_concurrent_update_rejected(self, coordinator, transport, sample_release):
        transport.gate = asyncio.get_running_loop().create_future()
        first = asyncio.ensure_future(coordinator.start_update(sample_release))
        await asyncio.sleep(0)
        session = coordinator.session
        assert session is not None

        with pytest.raises(UpdateRejected):
            await coordinator.start_update(sample_release)
        with pytest.raises(UpdateRejected):
            await coordinator.check_for_update()

        assert coordinator.session is session
        assert session.phase == UpdatePhase.DOWNLOADING
        transport.gate.set_result(None)
        result = await first
        assert result.outcome == UpdateOutcome.SUCCEEDED

    @pytest.mark.asyncio
    async def test_download_failure(self, coordinator, transport, sample_release, ledger):
        transport.download_error = OSError("connection reset")
        results = []
        coordinator.results.subscribe(results.append)

        with pytest.raises(DownloadFailed, match="connection reset"):
            await coordinator.start_update(sample_release)

        assert coordinator.session is None
        assert coordinator.current_version == "1.2.3"
        assert coordinator.stage == UpdateStage.FAILED
        assert results[0].outcome == UpdateOutcome.FAILED
        assert results[0].reason.startswith("DOWNLOAD_FAILED")
        assert transport.installed == []
        ledger.append_firmware_history.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_install_failure(self, coordinator, transport, sample_release):
        transport.install_error = RuntimeError("flash write failed")

        with pytest.raises(InstallFailed, match="flash write failed"):
            await coordinator.start_update(sample_release)

        assert coordinator.session is None
        assert coordinator.current_version == "1.2.3"
        assert coordinator.get_status().error.startswith("INSTALL_FAILED")

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, coordinator, transport, sample_release):
        transport.download_error = OSError("flaky")
        with pytest.raises(DownloadFailed):
            await coordinator.start_update(sample_release)

        transport.download_error = None
        result = await coordinator.start_update(sample_release)

        assert result.outcome == UpdateOutcome.SUCCEEDED

    @pytest.mark.asyncio
    async def test_ledger_failure_does_not_revert(self, coordinator, ledger, sample_release):
        ledger.append_firmware_history.side_effect = OSError("ledger offline")

        result = await coordinator.start_update(sample_release)

        assert result.outcome == UpdateOutcome.SUCCEEDED
        assert coordinator.current_version == "1.3.0"

    @pytest.mark.asyncio
    async def test_persists_new_version(self, sample_release, transport):
        state_manager = MagicMock()
        state_manager.firmware_version = "1.2.3"
        coordinator = UpdateCoordinator(
            ReleaseResolver(InMemoryReleaseCatalog([sample_release])),
            transport,
            state_manager=state_manager,
        )
        assert coordinator.current_version == "1.2.3"

        await coordinator.start_update(sample_release)

        state_manager.record_firmware_version.assert_called_once_with("1.3.0")

    @pytest.mark.asyncio
    async def test_cancellation_fails_session(self, coordinator, transport, sample_release):
        transport.gate = asyncio.get_running_loop().create_future()
        task = asyncio.ensure_future(coordinator.start_update(sample_release))
        await asyncio.sleep(0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert coordinator.session is None
        assert coordinator.stage == UpdateStage.FAILED
        assert "cancelled" in coordinator.get_status().error

    @pytest.mark.asyncio
    async def test_cancelled_check_allows_another(self, sample_release, transport):
        catalog = GatedCatalog([sample_release])
        catalog.gate = asyncio.get_running_loop().create_future()
        coordinator = UpdateCoordinator(
            ReleaseResolver(catalog), transport, current_version="1.2.3"
        )
        task = asyncio.ensure_future(coordinator.check_for_update())
        await asyncio.sleep(0)
        assert coordinator.stage == UpdateStage.CHECKING

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert coordinator.stage == UpdateStage.IDLE
        catalog.gate = None
        check = await coordinator.check_for_update()
        assert check.has_update
        assert coordinator.stage == UpdateStage.UPDATE_AVAILABLE

    @pytest.mark.asyncio
    async def test_invalid_version_keeps_recorded_one(self, coordinator):
        with pytest.raises(UpdateCheckFailed):
            await coordinator.check_for_update("abc")

        assert coordinator.current_version == "1.2.3"
        assert coordinator.stage == UpdateStage.FAILED

    @pytest.mark.asyncio
    async def test_checked_version_becomes_current(self, coordinator):
        await coordinator.check_for_update("1.2.4")

        assert coordinator.current_version == "1.2.4"

    @pytest.mark.asyncio
    async def test_cancel_during_ledger_append_still_publishes(
        self, coordinator, ledger, sample_release
    ):
        gate = asyncio.get_running_loop().create_future()

        async def slow_append(record):
            await gate

        ledger.append_firmware_history.side_effect = slow_append
        results = []
        coordinator.results.subscribe(results.append)
        task = asyncio.ensure_future(coordinator.start_update(sample_release))
        await asyncio.sleep(0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert [r.outcome for r in results] == [UpdateOutcome.SUCCEEDED]
        assert coordinator.current_version == "1.3.0"

        # The shielded append still completes
        gate.set_result(None)
        for _ in range(3):
            await asyncio.sleep(0)
        ledger.append_firmware_history.assert_awaited_once()
