"""Release Catalog clients and the release resolver."""

import logging
from typing import Iterable, List, Optional, Union

import httpx
from pydantic import ValidationError

from matlink.models.errors import UpdateCheckFailed
from matlink.models.release import FirmwareRelease, UpdateCheck
from matlink.transports.base import ReleaseCatalog
from matlink.utils.versions import is_newer, parse_firmware_version


def _newest_first(releases: Iterable[FirmwareRelease], version: str, limit: int) -> List[FirmwareRelease]:
    newer = [r for r in releases if is_newer(r.version, version)]
    newer.sort(key=lambda r: parse_firmware_version(r.version), reverse=True)
    return newer[:limit]


class InMemoryReleaseCatalog:
    """Catalog backed by a fixed list of release records."""

    def __init__(self, releases: Iterable[Union[FirmwareRelease, dict]] = ()):
        self.releases: List[FirmwareRelease] = [
            r if isinstance(r, FirmwareRelease) else FirmwareRelease(**r) for r in releases
        ]

    def add(self, release: FirmwareRelease) -> None:
        self.releases.append(release)

    async def query_newer(self, version: str, limit: int = 1) -> List[FirmwareRelease]:
        return _newest_first(self.releases, version, limit)


class HttpReleaseCatalog:
    """Catalog served over HTTP at ``{base_url}/firmware_versions``.

    The response is a JSON list of release documents (or an object with a
    ``releases`` list). The ``newer_than``/``limit`` query parameters are
    sent as hints; ordering and filtering are always re-applied locally
    with numeric version comparison.
    """

    def __init__(self, base_url: str, timeout: float = 10.0):
        self.logger = logging.getLogger("matlink.catalog")
        self.base_url = base_url.rstrip("/")
        self.endpoint = f"{self.base_url}/firmware_versions"
        self.timeout = timeout

    async def query_newer(self, version: str, limit: int = 1) -> List[FirmwareRelease]:
        """Fetch releases newer than ``version``.

        Raises:
            httpx.HTTPError: If the request fails
            ValueError: If the payload is not a list of release documents
        """
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(
                self.endpoint, params={"newer_than": version, "limit": limit}
            )
            response.raise_for_status()
            payload = response.json()

        documents = payload.get("releases", []) if isinstance(payload, dict) else payload
        if not isinstance(documents, list):
            raise ValueError("Release catalog returned an unexpected payload")

        releases = []
        for document in documents:
            try:
                releases.append(FirmwareRelease(**document))
            except (ValidationError, TypeError) as e:
                self.logger.warning(f"Skipping malformed release document: {e}")
        self.logger.debug(f"Catalog returned {len(releases)} release(s)")
        return _newest_first(releases, version, limit)


class ReleaseResolver:
    """Finds the single newest release strictly newer than a device version."""

    def __init__(self, catalog: ReleaseCatalog):
        self.logger = logging.getLogger("matlink.releases")
        self.catalog = catalog

    async def check_for_update(self, current_version: str) -> UpdateCheck:
        """Query the catalog for a newer release.

        Returns:
            UpdateCheck; has_update=False is a normal outcome

        Raises:
            UpdateCheckFailed: If the version is invalid or the catalog fails
        """
        try:
            parse_firmware_version(current_version)
        except ValueError as e:
            raise UpdateCheckFailed(str(e)) from e

        self.logger.info(f"Checking for firmware newer than {current_version}")
        try:
            releases = await self.catalog.query_newer(current_version, limit=1)
        except Exception as e:
            self.logger.error(f"Error checking for updates: {e}", exc_info=True)
            raise UpdateCheckFailed(f"Failed to check for updates: {e}") from e

        latest: Optional[FirmwareRelease] = None
        for release in releases:
            if not is_newer(release.version, current_version):
                self.logger.warning(
                    f"Catalog returned {release.version}, not newer than {current_version}"
                )
                continue
            if latest is None or is_newer(release.version, latest.version):
                latest = release

        if latest is None:
            self.logger.info(f"Firmware {current_version} is up to date")
            return UpdateCheck(has_update=False)

        self.logger.info(f"Update available: {current_version} -> {latest.version}")
        return UpdateCheck(has_update=True, release=latest)
