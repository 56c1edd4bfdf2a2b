"""Data models for the CRM -> campaign sync pipeline."""

from .routing import (
    RoutingConfig,
    FieldMappings,
    ExclusionRules,
)
from .candidate import (
    Candidate,
    EnrichmentJob,
    EnrichmentStatus,
    normalize_email,
    mask_email,
)
from .batch import (
    BatchResult,
    BatchResultBuilder,
    CandidateOutcome,
    RecordError,
)
from .ledger import (
    LedgerEntry,
    LedgerMetadata,
    LedgerStats,
)

__all__ = [
    "RoutingConfig",
    "FieldMappings",
    "ExclusionRules",
    "Candidate",
    "EnrichmentJob",
    "EnrichmentStatus",
    "normalize_email",
    "mask_email",
    "BatchResult",
    "BatchResultBuilder",
    "CandidateOutcome",
    "RecordError",
    "LedgerEntry",
    "LedgerMetadata",
    "LedgerStats",
]
