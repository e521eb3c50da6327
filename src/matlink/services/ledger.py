"""Session Ledger clients: firmware history and usage session records."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Union

import aiofiles
import httpx

from matlink.models.release import FirmwareHistoryRecord, UsageSessionRecord


class JsonFileSessionLedger:
    """Ledger kept in a local JSON document.

    Layout::

        {"firmwareHistory": [{"version": ..., "timestamp": ...}],
         "sessions": [{"timestamp": ..., "mode": ..., "durationMinutes": ...}]}
    """

    def __init__(self, path: Union[str, Path] = "./data/ledger.json"):
        self.logger = logging.getLogger("matlink.ledger")
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def append_firmware_history(self, record: FirmwareHistoryRecord) -> None:
        await self._append(
            "firmwareHistory",
            {"version": record.version, "timestamp": record.timestamp.isoformat()},
        )
        self.logger.info(f"Logged firmware update to {record.version}")

    async def append_usage_session(self, record: UsageSessionRecord) -> None:
        await self._append(
            "sessions",
            {
                "timestamp": record.timestamp.isoformat(),
                "mode": record.mode,
                "durationMinutes": record.duration_minutes,
            },
        )
        self.logger.debug(f"Logged {record.mode} session ({record.duration_minutes} min)")

    async def read(self) -> dict:
        """Return the whole ledger document (empty lists if absent)."""
        async with self._lock:
            return await self._read_unlocked()

    async def _append(self, key: str, entry: dict) -> None:
        async with self._lock:
            document = await self._read_unlocked()
            document.setdefault(key, []).append(entry)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(document, indent=2))
            tmp_path.replace(self.path)

    async def _read_unlocked(self) -> dict:
        document = {"firmwareHistory": [], "sessions": []}
        if not self.path.exists():
            return document
        async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
            content = await f.read()
        try:
            loaded = json.loads(content) if content.strip() else {}
        except json.JSONDecodeError as e:
            raise ValueError(f"Corrupted ledger file {self.path}: {e}") from e
        document.update(loaded)
        return document


class HttpSessionLedger:
    """Ledger exposed by a remote service.

    Posts to ``{base_url}/ledger/firmware-history`` and
    ``{base_url}/ledger/sessions``.
    """

    def __init__(self, base_url: str, timeout: float = 5.0):
        self.logger = logging.getLogger("matlink.ledger")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def append_firmware_history(self, record: FirmwareHistoryRecord) -> None:
        await self._post("firmware-history", record.model_dump(mode="json"))
        self.logger.info(f"Logged firmware update to {record.version}")

    async def append_usage_session(self, record: UsageSessionRecord) -> None:
        payload = record.model_dump(mode="json")
        payload["durationMinutes"] = payload.pop("duration_minutes")
        await self._post("sessions", payload)

    async def _post(self, path: str, payload: dict) -> None:
        """Raises httpx.HTTPError if the ledger rejects the record."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(f"{self.base_url}/ledger/{path}", json=payload)
            response.raise_for_status()
