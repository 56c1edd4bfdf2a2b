"""Shared fixtures: fake time, an in-memory ledger and a wired orchestrator."""

import pytest

from leadsync.connectors import MockCampaignSink, MockContactSource, MockEnrichmentProvider
from leadsync.enrich import EnrichmentPoller
from leadsync.models import Candidate, RoutingConfig
from leadsync.pipeline import PipelineOptions, PipelineOrchestrator
from leadsync.resilience import LimiterSet, RateLimiter, RetryExecutor, RetryPolicy
from leadsync.store import StateStore


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


def make_candidate(id: str = "c1", email="a@x.com", owner_id="owner-1", **attributes) -> Candidate:
    """Create a test candidate with defaults."""
    return Candidate(id=id, email=email, owner_id=owner_id, attributes=attributes)


def make_routing(**kwargs) -> RoutingConfig:
    """Create a routing config with two owners and one campaign each."""
    defaults = {
        "owners": {"owner-1": "alice", "owner-2": "bob"},
        "campaigns": {"alice": "cam_alice", "bob": "cam_bob"},
        "exclusion_rules": {"exclude_lifecycle_stages": ["customer"]},
    }
    defaults.update(kwargs)
    return RoutingConfig(**defaults)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    store = StateStore.from_url("sqlite://")
    yield store
    store.close()


@pytest.fixture
def make_orchestrator(store, clock):
    """Factory wiring mocks, fake-time limiters and a fast retry policy."""

    def factory(
        candidates=None,
        sink=None,
        provider=None,
        routing=None,
        enrichment_enabled=True,
        concurrency=1,
        **kwargs,
    ):
        limiters = LimiterSet(
            hubspot=RateLimiter("hubspot", 100, 10_000, clock=clock, sleep=clock.sleep),
            lemlist=RateLimiter("lemlist", 100, 60_000, clock=clock, sleep=clock.sleep),
        )
        retry = RetryExecutor(
            RetryPolicy(max_attempts=3, base_delay=0.01, max_delay=0.05),
            sleep=clock.sleep,
        )
        provider = provider or MockEnrichmentProvider()
        enrichment = EnrichmentPoller(provider, limiters.lemlist, retry, clock=clock, sleep=clock.sleep)
        return PipelineOrchestrator(
            source=MockContactSource(candidates if candidates is not None else [make_candidate()]),
            sink=sink if sink is not None else MockCampaignSink(),
            enrichment=enrichment,
            store=store,
            routing=routing or make_routing(),
            limiters=limiters,
            retry=retry,
            options=PipelineOptions(enrichment_enabled=enrichment_enabled, concurrency=concurrency),
            **kwargs,
        )

    return factory
