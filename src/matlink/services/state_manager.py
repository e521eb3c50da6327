"""Persistent device state (recorded firmware version, last peripheral)."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from matlink.models.state import DeviceState


class DeviceStateManager:
    """Owns the device state file at ./data/device.json.

    One instance is created per companion and injected into the services
    that record state; there is no process-wide instance.
    """

    def __init__(self, state_file_path: Union[str, Path] = "./data/device.json"):
        self.logger = logging.getLogger("matlink.state_manager")
        self.state_file_path = Path(state_file_path)
        self._state: Optional[DeviceState] = None

    def load_state(self) -> Optional[DeviceState]:
        """Load persistent state from disk.

        Returns:
            DeviceState if the file exists and is valid, None otherwise
        """
        if not self.state_file_path.exists():
            self.logger.debug("No device state file found")
            return None

        try:
            with open(self.state_file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            state = DeviceState(**data)
        except Exception as e:
            self.logger.error(f"Failed to load device state: {e}", exc_info=True)
            # Corrupted state file is discarded
            self.state_file_path.unlink(missing_ok=True)
            return None

        self._state = state
        self.logger.info(
            f"Loaded device state: firmware={state.firmware_version}, "
            f"peripheral={state.last_peripheral_id}"
        )
        return state

    def save_state(self, state: DeviceState) -> None:
        """Write state to disk and cache it.

        Raises:
            OSError: If the file cannot be written
        """
        try:
            self.state_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.state_file_path, "w", encoding="utf-8") as f:
                json.dump(state.model_dump(mode="json"), f, indent=2)
        except Exception as e:
            self.logger.error(f"Failed to save device state: {e}", exc_info=True)
            raise
        self._state = state
        self.logger.debug(f"Saved device state: firmware={state.firmware_version}")

    def get_state(self) -> DeviceState:
        """Current state, loading from disk on first access."""
        if self._state is None:
            self._state = self.load_state() or DeviceState()
        return self._state

    @property
    def firmware_version(self) -> Optional[str]:
        return self.get_state().firmware_version

    def record_firmware_version(self, version: str) -> None:
        """Persist the firmware version reported after a successful install."""
        state = self.get_state().model_copy(
            update={"firmware_version": version, "updated_at": datetime.now()}
        )
        self.save_state(state)
        self.logger.info(f"Recorded firmware version {version}")

    def record_peripheral(self, peripheral_id: str) -> None:
        """Remember the last successfully connected peripheral."""
        state = self.get_state().model_copy(
            update={"last_peripheral_id": peripheral_id, "updated_at": datetime.now()}
        )
        self.save_state(state)

    def delete_state(self) -> None:
        """Forget everything recorded about the device."""
        if self.state_file_path.exists():
            self.state_file_path.unlink()
            self.logger.info("Deleted device state file")
        self._state = None
