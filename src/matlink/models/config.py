"""Library configuration."""

import json
import logging
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator


class CompanionConfig(BaseModel):
    """Tunables for the companion controller.

    Defaults reproduce the mat app's behavior: a 10 second discovery window,
    a 5 second connect timeout and firmware progress in 10% steps.
    """

    scan_window_seconds: float = Field(
        10.0, gt=0, description="Radio discovery auto-stop window"
    )
    connect_timeout_seconds: float = Field(
        5.0, gt=0, description="Bound on a single radio connect attempt"
    )
    auto_reconnect: bool = Field(
        True, description="Ask the radio transport to re-establish dropped links"
    )
    name_filter: Optional[str] = Field(
        None, description="Only report peripherals whose name contains this text"
    )
    progress_step: float = Field(
        0.1, gt=0, le=1.0, description="Simulated transport progress increment"
    )
    progress_interval_seconds: float = Field(
        0.1, gt=0, description="Delay between simulated progress increments"
    )
    catalog_url: Optional[str] = Field(
        None, pattern=r"^https?://.+", description="Release Catalog base URL"
    )
    ledger_url: Optional[str] = Field(
        None, pattern=r"^https?://.+", description="Remote Session Ledger base URL"
    )
    ledger_path: str = Field(
        "./data/ledger.json", description="Local Session Ledger file"
    )
    state_path: str = Field(
        "./data/device.json", description="Persistent device state file"
    )
    download_dir: str = Field("./tmp", description="Firmware download directory")
    wifi_interface: Optional[str] = Field(
        None, description="Wi-Fi interface for nmcli (auto-detected if None)"
    )
    log_file: str = Field("./logs/matlink.log", description="Rotating log file")
    log_level: str = Field("INFO", description="DEBUG/INFO/WARNING/ERROR")

    @field_validator("log_level")
    @classmethod
    def known_log_level(cls, v: str) -> str:
        """Normalize and validate the log level name."""
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return v


def load_config(path: Union[str, Path, None] = None) -> CompanionConfig:
    """Load configuration from a JSON file.

    Args:
        path: JSON file path; None or a missing file yields defaults

    Returns:
        Validated CompanionConfig

    Raises:
        ValueError: If the file is not valid JSON or fails validation
    """
    logger = logging.getLogger("matlink.config")
    if path is None:
        return CompanionConfig()

    config_path = Path(path)
    if not config_path.exists():
        logger.info(f"No config file at {config_path}, using defaults")
        return CompanionConfig()

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        config = CompanionConfig(**data)
    except (json.JSONDecodeError, ValidationError, TypeError) as e:
        raise ValueError(f"Invalid config file {config_path}: {e}") from e

    logger.info(f"Loaded config from {config_path}")
    return config
