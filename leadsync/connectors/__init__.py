"""Connectors for the contact source, campaign sink and enrichment provider."""

from .base import ContactSource, CampaignSink, EnrichmentProvider
from .hubspot import HubSpotContactSource
from .lemlist import LemlistClient
from .mock import MockContactSource, MockCampaignSink, MockEnrichmentProvider, mock_routing

__all__ = [
    "ContactSource",
    "CampaignSink",
    "EnrichmentProvider",
    "HubSpotContactSource",
    "LemlistClient",
    "MockContactSource",
    "MockCampaignSink",
    "MockEnrichmentProvider",
    "mock_routing",
]
