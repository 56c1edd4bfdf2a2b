"""Read/write shapes for the idempotency ledger."""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class LedgerMetadata(BaseModel):
    """Metadata stored alongside a processed record id."""

    email: Optional[str] = None
    owner: Optional[str] = None
    destination: Optional[str] = Field(default=None, description="Destination campaign id")
    lead_source: Optional[str] = None


class LedgerEntry(BaseModel):
    """One row of the processed-records ledger."""

    model_config = ConfigDict(from_attributes=True)

    record_id: str
    email: Optional[str] = None
    owner: Optional[str] = None
    destination: Optional[str] = None
    lead_source: Optional[str] = None
    processed_at: datetime


class LedgerStats(BaseModel):
    """Ledger totals for status reporting."""

    total: int = 0
    by_owner: dict[str, int] = Field(default_factory=dict)
    today: int = 0
