"""Tests for the pipeline orchestrator."""

import pytest

from conftest import make_candidate, make_routing
from leadsync.connectors import ContactSource, MockCampaignSink
from leadsync.errors import ConfigurationError, RemoteAPIError, RunCancelled
from leadsync.models import CandidateOutcome
from leadsync.pipeline import RunGuard


class BrokenSource(ContactSource):
    async def search_triggered(self, filter_field, filter_value, extra_fields=None, cancel_event=None):
        raise RemoteAPIError("search failed", status_code=401)


class CancellingSink(MockCampaignSink):
    """Requests cancellation right after its first successful add."""

    orchestrator = None

    async def add(self, destination, payload):
        result = await super().add(destination, payload)
        self.orchestrator.cancel()
        return result


class TestHappyPath:
    """Tests for successful syncs."""

    @pytest.mark.asyncio
    async def test_new_candidate_is_added_and_recorded(self, make_orchestrator, store):
        sink = MockCampaignSink()
        orchestrator = make_orchestrator(sink=sink)

        result = await orchestrator.run()

        assert result.processed == 1
        assert result.succeeded == 1
        assert result.failed == 0
        assert len(sink.add_calls) == 1
        destination, payload = sink.add_calls[0]
        assert destination == "cam_alice"
        assert payload["email"] == "a@x.com"
        assert await store.count() == 1
        entry = await store.get_entry("c1")
        assert entry.owner == "alice"
        assert entry.destination == "cam_alice"

    @pytest.mark.asyncio
    async def test_second_run_never_writes_again(self, make_orchestrator):
        sink = MockCampaignSink()
        candidates = [
            make_candidate("c1", "a@x.com"),
            make_candidate("c2", "b@x.com", owner_id="owner-2"),
        ]
        orchestrator = make_orchestrator(candidates=candidates, sink=sink)

        first = await orchestrator.run()
        second = await orchestrator.run()

        assert first.succeeded == 2
        assert second.succeeded == 0
        assert second.skipped + second.duplicate == 2
        assert len(sink.add_calls) == 2

    @pytest.mark.asyncio
    async def test_present_remotely_but_not_in_ledger_is_duplicate(self, make_orchestrator, store):
        sink = MockCampaignSink(existing={"cam_alice": {"A@x.com"}})
        orchestrator = make_orchestrator(sink=sink)

        result = await orchestrator.run()

        assert result.duplicate == 1
        assert result.succeeded == 0
        assert sink.add_calls == []
        assert await store.is_processed("c1")

        rerun = await orchestrator.run()
        assert rerun.skipped == 1
        assert sink.add_calls == []

    @pytest.mark.asyncio
    async def test_same_email_different_record_is_skipped(self, make_orchestrator):
        sink = MockCampaignSink()
        candidates = [make_candidate("c1", "a@x.com"), make_candidate("c9", "A@X.com")]
        orchestrator = make_orchestrator(candidates=candidates, sink=sink)

        result = await orchestrator.run()

        assert result.succeeded == 1
        assert result.skipped == 1
        assert len(sink.add_calls) == 1

    @pytest.mark.asyncio
    async def test_payload_carries_mapped_and_context_fields(self, make_orchestrator):
        sink = MockCampaignSink()
        routing = make_routing(ai_context_fields={"leadSource": "lead_source", "pain": "pain_point"})
        candidate = make_candidate(
            firstname="Ada", lastname="Lovelace", company="Engines", lead_source="webinar",
        )
        orchestrator = make_orchestrator(
            candidates=[candidate], sink=sink, routing=routing, enrichment_enabled=False,
        )

        await orchestrator.run()

        _, payload = sink.add_calls[0]
        assert payload == {
            "email": "a@x.com",
            "firstName": "Ada",
            "lastName": "Lovelace",
            "companyName": "Engines",
            "leadSource": "webinar",
        }

    @pytest.mark.asyncio
    async def test_enriched_payload_is_sent(self, make_orchestrator):
        sink = MockCampaignSink()
        orchestrator = make_orchestrator(sink=sink, candidates=[make_candidate(firstname="Ada")])

        await orchestrator.run()

        _, payload = sink.add_calls[0]
        assert payload["enriched"] is True
        assert payload["firstName"] == "Ada"
        assert payload["linkedinUrl"] == "https://www.linkedin.com/in/enriched"

    @pytest.mark.asyncio
    async def test_enrichment_keeps_candidate_job_title(self, make_orchestrator):
        sink = MockCampaignSink()
        routing = make_routing(ai_context_fields={"jobTitle": "jobtitle"})
        orchestrator = make_orchestrator(
            candidates=[make_candidate(jobtitle="Founder")], sink=sink, routing=routing,
        )

        await orchestrator.run()

        _, payload = sink.add_calls[0]
        assert payload["enriched"] is True
        assert payload["jobTitle"] == "Founder"


class TestSkipsAndExclusions:
    """Tests for terminal states reached without a write."""

    @pytest.mark.asyncio
    async def test_missing_email_never_reaches_existence_check(self, make_orchestrator):
        sink = MockCampaignSink()
        candidate = make_candidate(email=None, lifecyclestage="customer")
        orchestrator = make_orchestrator(candidates=[candidate], sink=sink)

        result = await orchestrator.run()

        assert result.skipped == 1
        assert result.excluded == 0
        assert sink.exists_calls == []

    @pytest.mark.asyncio
    async def test_excluded_before_any_network_call(self, make_orchestrator):
        sink = MockCampaignSink()
        candidates = [
            make_candidate("c1", lifecyclestage="customer"),
            make_candidate("c2", "b@x.com", hs_email_optout="true"),
        ]
        orchestrator = make_orchestrator(candidates=candidates, sink=sink)

        result = await orchestrator.run()

        assert result.excluded == 2
        assert sink.exists_calls == []

    @pytest.mark.asyncio
    async def test_unknown_owner_and_missing_campaign(self, make_orchestrator):
        sink = MockCampaignSink()
        routing = make_routing(
            owners={"owner-1": "alice", "owner-2": "bob", "owner-3": "carol"},
            campaigns={"alice": "cam_alice", "bob": "PLACEHOLDER"},
        )
        candidates = [
            make_candidate("c1", "a@x.com", owner_id="nobody"),
            make_candidate("c2", "b@x.com", owner_id="owner-2"),
            make_candidate("c3", "c@x.com", owner_id="owner-3"),
        ]
        orchestrator = make_orchestrator(candidates=candidates, sink=sink, routing=routing)

        outcomes = [await orchestrator.process_candidate(c) for c in candidates]

        assert outcomes == [
            CandidateOutcome.SKIPPED_UNKNOWN_OWNER,
            CandidateOutcome.SKIPPED_NO_DESTINATION,
            CandidateOutcome.SKIPPED_NO_DESTINATION,
        ]
        assert sink.exists_calls == []


class TestFailures:
    """Tests for per-candidate failure isolation."""

    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_batch(self, make_orchestrator, store):
        sink = MockCampaignSink(failures={"a@x.com": [RemoteAPIError("invalid lead", status_code=400)]})
        candidates = [make_candidate("c1", "a@x.com"), make_candidate("c2", "b@x.com")]
        orchestrator = make_orchestrator(candidates=candidates, sink=sink)

        result = await orchestrator.run()

        assert result.failed == 1
        assert result.succeeded == 1
        assert [e.record_id for e in result.errors] == ["c1"]
        assert "invalid lead" in result.errors[0].error
        assert not await store.is_processed("c1")
        assert await store.is_processed("c2")

    @pytest.mark.asyncio
    async def test_transient_add_failure_is_retried(self, make_orchestrator):
        sink = MockCampaignSink(failures={"a@x.com": [RemoteAPIError("busy", status_code=503)]})
        orchestrator = make_orchestrator(sink=sink)

        result = await orchestrator.run()

        assert result.succeeded == 1
        assert len(sink.add_calls) == 2

    @pytest.mark.asyncio
    async def test_source_failure_is_reported_not_raised(self, make_orchestrator):
        orchestrator = make_orchestrator()
        orchestrator.source = BrokenSource()

        result = await orchestrator.run()

        assert result.error == "search failed"
        assert result.processed == 0
        assert not orchestrator.is_active()

    @pytest.mark.asyncio
    async def test_error_list_is_bounded(self, make_orchestrator):
        emails = [f"user{i}@x.com" for i in range(5)]
        sink = MockCampaignSink(failures={e: [RemoteAPIError("nope", 400)] for e in emails})
        candidates = [make_candidate(f"c{i}", e) for i, e in enumerate(emails)]
        orchestrator = make_orchestrator(candidates=candidates, sink=sink)
        orchestrator.options.max_errors = 2

        result = await orchestrator.run()

        assert result.failed == 5
        assert len(result.errors) == 2
        assert result.errors_truncated == 3

    def test_invalid_routing_is_fatal(self, make_orchestrator):
        with pytest.raises(ConfigurationError):
            make_orchestrator(routing=make_routing(owners={}))


class TestRunControl:
    """Tests for the in-flight guard, cancellation and concurrency."""

    @pytest.mark.asyncio
    async def test_overlapping_run_is_refused(self, make_orchestrator):
        guard = RunGuard()
        sink = MockCampaignSink()
        orchestrator = make_orchestrator(sink=sink, run_guard=guard)

        assert guard.try_enter()
        assert orchestrator.is_active()
        result = await orchestrator.run()
        guard.exit()

        assert result.skipped_run
        assert result.reason == "already_running"
        assert sink.add_calls == []
        assert not orchestrator.is_active()

    @pytest.mark.asyncio
    async def test_cancel_stops_before_next_candidate(self, make_orchestrator):
        sink = CancellingSink()
        candidates = [make_candidate("c1", "a@x.com"), make_candidate("c2", "b@x.com")]
        orchestrator = make_orchestrator(candidates=candidates, sink=sink)
        sink.orchestrator = orchestrator

        result = await orchestrator.run()

        assert result.cancelled
        assert result.processed == 1
        assert len(sink.add_calls) == 1

    def test_cancel_when_idle(self, make_orchestrator):
        assert not make_orchestrator().cancel()

    @pytest.mark.asyncio
    async def test_concurrent_workers_keep_one_write_per_email(self, make_orchestrator):
        sink = MockCampaignSink()
        candidates = [
            make_candidate("c1", "a@x.com"),
            make_candidate("c2", "b@x.com"),
            make_candidate("c3", "a@x.com"),
            make_candidate("c4", "c@x.com", owner_id="owner-2"),
        ]
        orchestrator = make_orchestrator(candidates=candidates, sink=sink, concurrency=3)

        result = await orchestrator.run()

        assert result.processed == 4
        assert result.succeeded == 3
        assert result.skipped == 1
        assert sorted(p["email"] for _, p in sink.add_calls) == ["a@x.com", "b@x.com", "c@x.com"]

    @pytest.mark.asyncio
    async def test_cancel_reaches_source_fetch(self, make_orchestrator):
        sink = MockCampaignSink()
        orchestrator = make_orchestrator(sink=sink)

        class SlowSource(ContactSource):
            async def search_triggered(self, filter_field, filter_value, extra_fields=None, cancel_event=None):
                orchestrator.cancel()
                if cancel_event is not None and cancel_event.is_set():
                    raise RunCancelled("Cancelled while fetching contacts")
                return [make_candidate()]

        orchestrator.source = SlowSource()
        result = await orchestrator.run()

        assert result.cancelled
        assert result.processed == 0
        assert sink.add_calls == []
