"""Wire settings, routing and collaborators into a PipelineOrchestrator."""

import logging
from typing import Optional

from leadsync.alerts import AlertManager
from leadsync.connectors import (
    HubSpotContactSource,
    LemlistClient,
    MockCampaignSink,
    MockContactSource,
    MockEnrichmentProvider,
)
from leadsync.enrich import EnrichmentPoller
from leadsync.models import RoutingConfig
from leadsync.resilience import RetryExecutor, RetryPolicy, build_limiters
from leadsync.store import StateStore
from .orchestrator import PipelineOptions, PipelineOrchestrator, RunGuard

logger = logging.getLogger(__name__)


def build_pipeline(
    settings,
    routing: RoutingConfig,
    use_mock: bool = False,
    store: Optional[StateStore] = None,
    run_guard: Optional[RunGuard] = None,
) -> PipelineOrchestrator:
    """Build an orchestrator for live APIs, or in-memory fakes with ``use_mock``."""
    limiters = build_limiters(settings)
    retry = RetryExecutor(RetryPolicy.from_settings(settings))
    store = store or StateStore.from_url(settings.database_url)

    if use_mock:
        logger.info("Using mock source, sink and enrichment provider")
        source = MockContactSource()
        sink = MockCampaignSink()
        provider = MockEnrichmentProvider()
    else:
        settings.validate_credentials()
        source = HubSpotContactSource(
            limiters.hubspot,
            retry,
            email_field=routing.field_mappings.email,
            owner_field=routing.owner_field,
        )
        sink = provider = LemlistClient()

    enrichment = EnrichmentPoller(provider, limiters.lemlist, retry)

    return PipelineOrchestrator(
        source=source,
        sink=sink,
        enrichment=enrichment,
        store=store,
        routing=routing,
        limiters=limiters,
        retry=retry,
        options=PipelineOptions.from_settings(settings),
        alerts=AlertManager.from_settings(settings),
        run_guard=run_guard,
    )


async def preflight(orchestrator: PipelineOrchestrator) -> bool:
    """Check API connectivity and campaign ids before the first run."""
    routing = orchestrator.routing

    placeholders = routing.placeholder_campaigns()
    if placeholders:
        logger.warning(
            f"Placeholder campaign ids in routing config, those owners will be skipped: {placeholders}"
        )

    source_ok = await orchestrator.source.verify_connection()
    sink_ok = await orchestrator.sink.verify_connection()
    if not (source_ok and sink_ok):
        return False

    real = [c for c in routing.campaign_ids() if c not in placeholders]
    if real:
        _, invalid = await orchestrator.sink.validate_destinations(real)
        if invalid:
            logger.warning(f"{len(invalid)} configured campaign id(s) were not found")
    return True
