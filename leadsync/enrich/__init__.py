"""Best-effort lead enrichment."""

from .poller import (
    EnrichmentOptions,
    EnrichmentPoller,
    MergeStrategy,
    PollOutcome,
    merge_enrichment,
)

__all__ = ["EnrichmentOptions", "EnrichmentPoller", "MergeStrategy", "PollOutcome", "merge_enrichment"]
