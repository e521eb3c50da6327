"""Update session and progress event models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from matlink.models.release import FirmwareRelease
from matlink.models.status import UpdateOutcome, UpdatePhase, UpdateStage


class UpdateSession(BaseModel):
    """The single in-flight firmware update.

    Exists only between ``start_update`` and its terminal outcome.
    """

    release: FirmwareRelease = Field(..., description="Target release")
    phase: UpdatePhase = Field(..., description="Current phase")
    progress: float = Field(0.0, ge=0.0, le=1.0, description="Phase progress")
    outcome: UpdateOutcome = Field(UpdateOutcome.PENDING)
    reason: Optional[str] = Field(None, description="Failure reason")
    started_at: datetime = Field(default_factory=datetime.now)


class ProgressEvent(BaseModel):
    """One progress observation inside a phase."""

    phase: UpdatePhase = Field(..., description="Phase the value belongs to")
    progress: float = Field(..., ge=0.0, le=1.0, description="Fraction complete")


class UpdateStatus(BaseModel):
    """Snapshot of the coordinator for UI polling."""

    stage: UpdateStage = Field(..., description="Current lifecycle stage")
    progress: float = Field(..., ge=0.0, le=1.0, description="Phase progress")
    message: str = Field(..., description="Human-readable description")
    error: Optional[str] = Field(None, description="Error code and reason if failed")
    current_version: Optional[str] = Field(None, description="Recorded device version")
    available_release: Optional[FirmwareRelease] = Field(
        None, description="Newest release found by the last check"
    )


class UpdateResult(BaseModel):
    """Terminal report of a finished update session."""

    version: str = Field(..., description="Target release version")
    outcome: UpdateOutcome = Field(..., description="succeeded or failed")
    reason: Optional[str] = Field(None, description="Failure reason")
    finished_at: datetime = Field(default_factory=datetime.now)
