"""Firmware release and ledger record models."""

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from matlink.utils.versions import parse_firmware_version


class FirmwareRelease(BaseModel):
    """Release record fetched from the Release Catalog.

    Accepts both the catalog's camelCase documents
    (``downloadUrl``, ``releaseNotes``, ``fileSizeBytes``/``fileSize``) and
    snake_case field names. Immutable once built.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    version: str = Field(..., description="Firmware version (e.g., 1.3.0)")
    download_url: str = Field(
        ...,
        pattern=r"^[a-zA-Z][a-zA-Z0-9+.-]*://.+",
        validation_alias=AliasChoices("download_url", "downloadUrl"),
        description="Locator handed to the firmware transport",
    )
    release_notes: str = Field(
        "",
        validation_alias=AliasChoices("release_notes", "releaseNotes"),
        description="Human-readable notes",
    )
    file_size_bytes: int = Field(
        ...,
        gt=0,
        validation_alias=AliasChoices("file_size_bytes", "fileSizeBytes", "fileSize"),
        description="Payload size in bytes",
    )
    md5: Optional[str] = Field(
        None, pattern=r"^[a-f0-9]{32}$", description="Optional payload MD5 hash"
    )

    @field_validator("version")
    @classmethod
    def version_is_parseable(cls, v: str) -> str:
        """Reject versions that cannot be ordered."""
        parse_firmware_version(v)
        return v


class UpdateCheck(BaseModel):
    """Result of a version check against the catalog."""

    has_update: bool = Field(..., description="True if a newer release exists")
    release: Optional[FirmwareRelease] = Field(
        None, description="The newest release, when has_update is True"
    )


class FirmwareHistoryRecord(BaseModel):
    """Ledger entry appended after a successful install."""

    version: str = Field(..., description="Installed firmware version")
    timestamp: datetime = Field(
        default_factory=datetime.now, description="Install completion time"
    )


class UsageSessionRecord(BaseModel):
    """Ledger entry for a completed mat session (consumed by analytics)."""

    timestamp: datetime = Field(default_factory=datetime.now)
    mode: str = Field(..., min_length=1, description="Exercise mode identifier")
    duration_minutes: float = Field(..., ge=0, description="Session length")
