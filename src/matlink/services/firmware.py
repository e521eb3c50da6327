"""Firmware transports: how release images reach the mat."""

import logging
import math
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

import aiofiles
import httpx

from matlink.models.release import FirmwareRelease
from matlink.transports.base import FirmwareTransport, Locator, ProgressCallback
from matlink.utils.clock import Clock
from matlink.utils.verification import verify_firmware_or_raise


class SimulatedFirmwareTransport:
    """Transport that only advances progress on a timer.

    Each phase reports ``step`` increments every ``interval`` seconds until
    it reaches exactly 1.0. Used for demo devices and as the install medium
    for mats without a flashing channel.
    """

    def __init__(self, clock: Optional[Clock] = None, step: float = 0.1, interval: float = 0.1):
        if not 0 < step <= 1:
            raise ValueError(f"step must be in (0, 1], got {step}")
        self.logger = logging.getLogger("matlink.firmware.simulated")
        self.clock = clock or Clock()
        self.step = step
        self.interval = interval

    async def download(self, release: FirmwareRelease, on_progress: ProgressCallback) -> Locator:
        self.logger.info(f"Simulating download of {release.version}")
        await self._tick(on_progress)
        return release.download_url

    async def install(
        self, locator: Locator, release: FirmwareRelease, on_progress: ProgressCallback
    ) -> None:
        self.logger.info(f"Simulating install of {release.version}")
        await self._tick(on_progress)

    async def _tick(self, on_progress: ProgressCallback) -> None:
        steps = math.ceil(round(1.0 / self.step, 9))
        for i in range(1, steps + 1):
            await self.clock.sleep(self.interval)
            on_progress(min(1.0, i * self.step))


class HttpFirmwareTransport:
    """Downloads images over HTTP(S) and hands them to an installer.

    The image is streamed to ``download_dir`` and checked against the
    release size (and MD5 when present). A failed or corrupt download is
    deleted; there is no resume.
    """

    def __init__(
        self,
        download_dir: Union[str, Path] = "./tmp",
        installer: Optional[FirmwareTransport] = None,
        timeout: float = 30.0,
    ):
        self.logger = logging.getLogger("matlink.firmware.http")
        self.download_dir = Path(download_dir)
        self.installer = installer or SimulatedFirmwareTransport()
        self.timeout = timeout
        self.chunk_size = 64 * 1024  # 64KB chunks for progress granularity

    def target_path(self, release: FirmwareRelease) -> Path:
        name = Path(urlparse(release.download_url).path).name
        return self.download_dir / (name or f"firmware-{release.version}.bin")

    async def download(self, release: FirmwareRelease, on_progress: ProgressCallback) -> Locator:
        """Stream the release image to disk.

        Raises:
            httpx.HTTPError: If the transfer fails
            ValueError: If size or MD5 verification fails
        """
        target_path = self.target_path(release)
        target_path.parent.mkdir(parents=True, exist_ok=True)
        self.logger.info(
            f"Starting download: version={release.version}, url={release.download_url}, "
            f"size={release.file_size_bytes} bytes"
        )

        try:
            await self._stream_to_file(release, target_path, on_progress)
            verify_firmware_or_raise(target_path, release.file_size_bytes, release.md5)
        except Exception:
            target_path.unlink(missing_ok=True)
            raise

        self.logger.info(f"Downloaded {release.version} to {target_path}")
        return target_path

    async def install(
        self, locator: Locator, release: FirmwareRelease, on_progress: ProgressCallback
    ) -> None:
        await self.installer.install(locator, release, on_progress)

    async def _stream_to_file(
        self, release: FirmwareRelease, target_path: Path, on_progress: ProgressCallback
    ) -> None:
        bytes_downloaded = 0
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            async with client.stream("GET", release.download_url) as response:
                response.raise_for_status()
                async with aiofiles.open(target_path, "wb") as f:
                    async for chunk in response.aiter_bytes(chunk_size=self.chunk_size):
                        await f.write(chunk)
                        bytes_downloaded += len(chunk)
                        on_progress(min(1.0, bytes_downloaded / release.file_size_bytes))
        self.logger.debug(f"Received {bytes_downloaded} bytes")
