"""Per-candidate outcomes and the per-run batch summary."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class CandidateOutcome(str, Enum):
    """Terminal states of the per-candidate state machine."""

    EXCLUDED = "excluded"
    SKIPPED_MISSING_EMAIL = "skipped_missing_email"
    SKIPPED_UNKNOWN_OWNER = "skipped_unknown_owner"
    SKIPPED_NO_DESTINATION = "skipped_no_destination"
    SKIPPED_ALREADY_PROCESSED = "skipped_already_processed"
    DUPLICATE = "duplicate"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_skip(self) -> bool:
        return self.value.startswith("skipped")


class RecordError(BaseModel):
    """A failed candidate and the error that ended it."""

    model_config = ConfigDict(frozen=True)

    record_id: str
    error: str


class BatchResult(BaseModel):
    """Aggregate result of one pipeline run. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    run_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    duration_ms: int = 0

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    excluded: int = 0
    duplicate: int = 0

    errors: list[RecordError] = Field(default_factory=list)
    errors_truncated: int = Field(default=0, description="Failures beyond the error list bound")

    # Run-level conditions
    skipped_run: bool = Field(default=False, description="True when the run was refused by the in-flight guard")
    reason: Optional[str] = None
    cancelled: bool = False
    error: Optional[str] = Field(default=None, description="Run-level error (e.g. the source fetch failed)")

    @classmethod
    def already_running(cls) -> "BatchResult":
        return cls(skipped_run=True, reason="already_running")

    @property
    def outcome_counts(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "excluded": self.excluded,
            "duplicate": self.duplicate,
        }


@dataclass
class BatchResultBuilder:
    """Mutable accumulator used while a run is in flight."""

    max_errors: int = 100
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    excluded: int = 0
    duplicate: int = 0
    errors: list[RecordError] = field(default_factory=list)
    errors_truncated: int = 0
    cancelled: bool = False
    error: Optional[str] = None

    def record(self, outcome: CandidateOutcome, record_id: str, error: Optional[str] = None):
        """Count one candidate's terminal state."""
        self.processed += 1

        if outcome is CandidateOutcome.EXCLUDED:
            self.excluded += 1
        elif outcome.is_skip:
            self.skipped += 1
        elif outcome is CandidateOutcome.DUPLICATE:
            self.duplicate += 1
        elif outcome is CandidateOutcome.SUCCEEDED:
            self.succeeded += 1
        elif outcome is CandidateOutcome.FAILED:
            self.failed += 1
            if len(self.errors) < self.max_errors:
                self.errors.append(RecordError(record_id=record_id, error=error or "unknown error"))
            else:
                self.errors_truncated += 1

    def build(self) -> BatchResult:
        completed_at = datetime.now(timezone.utc)
        return BatchResult(
            run_id=self.run_id,
            started_at=self.started_at,
            completed_at=completed_at,
            duration_ms=int((completed_at - self.started_at).total_seconds() * 1000),
            processed=self.processed,
            succeeded=self.succeeded,
            failed=self.failed,
            skipped=self.skipped,
            excluded=self.excluded,
            duplicate=self.duplicate,
            errors=list(self.errors),
            errors_truncated=self.errors_truncated,
            cancelled=self.cancelled,
            error=self.error,
        )
