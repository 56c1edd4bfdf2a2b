"""Candidate record and enrichment job models."""

from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Lower-case and trim an email; empty values become None."""
    if not email:
        return None
    email = email.strip().lower()
    return email or None


def mask_email(email: Optional[str]) -> str:
    """Mask an email for log output: jane.doe@acme.com -> j***@acme.com."""
    if not email:
        return "<none>"
    local, _, domain = email.partition("@")
    if not domain:
        return "***"
    return f"{local[:1]}***@{domain}"


class Candidate(BaseModel):
    """A source record selected for sync because its trigger attribute matched."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Source-assigned, stable record id")
    email: Optional[str] = Field(default=None, description="Contact email (case-insensitive identity key)")
    owner_id: Optional[str] = Field(default=None, description="Source owner id")
    attributes: dict[str, str] = Field(
        default_factory=dict,
        description="Source properties: lifecycle/opt-out flags and free-form context",
    )

    @property
    def normalized_email(self) -> Optional[str]:
        return normalize_email(self.email)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Return an attribute value, treating empty strings as missing."""
        value = self.attributes.get(name)
        if value is None or value == "":
            return default
        return value


class EnrichmentStatus(str, Enum):
    """Lifecycle of an asynchronous enrichment job."""

    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"
    TIMEOUT = "timeout"

    @classmethod
    def from_provider(cls, raw: Optional[str]) -> "EnrichmentStatus":
        """Map a provider status string onto the job lifecycle."""
        value = (raw or "").lower()
        if value in ("done", "completed", "complete", "success"):
            return cls.DONE
        if value in ("failed", "error"):
            return cls.FAILED
        return cls.PENDING

    @property
    def is_terminal(self) -> bool:
        return self is not EnrichmentStatus.PENDING


class EnrichmentJob(BaseModel):
    """An enrichment job as reported by the provider on each poll."""

    id: str
    status: EnrichmentStatus = EnrichmentStatus.PENDING
    data: dict[str, Any] = Field(default_factory=dict)
