"""System timezone state and cycle outcome models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from tzsync.models.connectivity import LookupTrigger


class ApplyOutcome(StrEnum):
    CHANGED = "changed"
    NO_CHANGE = "no_change"


class CycleOutcome(StrEnum):
    CHANGED = "changed"
    NO_CHANGE = "no_change"
    RESOLUTION_FAILED = "resolution_failed"
    APPLY_FAILED = "apply_failed"
    SKIPPED = "skipped"
    ABANDONED = "abandoned"


class SystemTimezoneState(BaseModel):
    """Timezone currently configured in the operating system."""

    model_config = ConfigDict(frozen=True)

    timezone: str


@dataclass(frozen=True)
class CycleReport:
    """What one resolve-and-apply cycle did."""

    trigger: LookupTrigger
    outcome: CycleOutcome
    timezone: str | None = None
    error: Exception | None = None
