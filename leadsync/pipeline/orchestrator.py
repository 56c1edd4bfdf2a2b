"""Per-candidate sync state machine and batch run."""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from leadsync.alerts import AlertManager
from leadsync.connectors.base import CampaignSink, ContactSource
from leadsync.enrich.poller import EnrichmentOptions, EnrichmentPoller, enriched_fields
from leadsync.errors import ConfigurationError, RunCancelled
from leadsync.models import (
    BatchResult,
    BatchResultBuilder,
    Candidate,
    CandidateOutcome,
    LedgerMetadata,
    LedgerStats,
    RoutingConfig,
    mask_email,
)
from leadsync.resilience import LimiterSet, RetryAttempt, RetryExecutor
from leadsync.store import StateStore
from .exclusions import ExclusionChecker

logger = logging.getLogger(__name__)

PIPELINE_NAME = "lead"


class RunGuard:
    """In-flight flag for a single process. Entering never blocks."""

    def __init__(self):
        self._lock = threading.Lock()

    def try_enter(self) -> bool:
        return self._lock.acquire(blocking=False)

    def exit(self):
        self._lock.release()

    @property
    def active(self) -> bool:
        return self._lock.locked()


@dataclass
class PipelineOptions:
    enrichment_enabled: bool = True
    enrichment: EnrichmentOptions = field(default_factory=EnrichmentOptions)
    concurrency: int = 1
    max_errors: int = 100
    default_lead_source: str = "trigger"

    @classmethod
    def from_settings(cls, settings) -> "PipelineOptions":
        return cls(
            enrichment_enabled=settings.enrichment_enabled,
            enrichment=EnrichmentOptions.from_settings(settings),
            concurrency=max(1, settings.pipeline_concurrency),
            max_errors=settings.max_batch_errors,
        )


class PipelineOrchestrator:
    """Move triggered CRM contacts into their owner's campaign, exactly once.

    Every candidate ends in one terminal ``CandidateOutcome``. A failure
    is recorded against that candidate only; the batch carries on.
    """

    def __init__(
        self,
        source: ContactSource,
        sink: CampaignSink,
        enrichment: Optional[EnrichmentPoller],
        store: StateStore,
        routing: RoutingConfig,
        limiters: LimiterSet,
        retry: RetryExecutor,
        options: Optional[PipelineOptions] = None,
        alerts: Optional[AlertManager] = None,
        run_guard: Optional[RunGuard] = None,
    ):
        self.source = source
        self.sink = sink
        self.enrichment = enrichment
        self.store = store
        self.routing = routing
        self.limiters = limiters
        self.retry = retry
        self.options = options or PipelineOptions()
        self.alerts = alerts
        self.run_guard = run_guard or RunGuard()
        self.exclusions = ExclusionChecker(routing.exclusion_rules)
        self.last_result: Optional[BatchResult] = None
        self._cancel_event = asyncio.Event()

        self._validate_config()

    def _validate_config(self):
        if not self.routing.trigger_field or not self.routing.trigger_value:
            raise ConfigurationError("Routing config must define trigger_field and trigger_value")
        if not self.routing.owners:
            raise ConfigurationError("Routing config defines no owners")

    def is_active(self) -> bool:
        return self.run_guard.active

    def cancel(self) -> bool:
        """Ask the in-flight run to stop. Returns False when nothing is running."""
        if not self.is_active():
            return False
        logger.warning("Cancellation requested for the running pipeline")
        self._cancel_event.set()
        return True

    async def get_stats(self) -> LedgerStats:
        return await self.store.stats()

    async def run(self) -> BatchResult:
        """Run one batch. Only configuration errors are raised."""
        if not self.run_guard.try_enter():
            logger.warning("Pipeline already running, skipping")
            return BatchResult.already_running()

        try:
            self._cancel_event.clear()
            self._validate_config()
            result = await self._run_batch()
            self.last_result = result
            return result
        finally:
            self.run_guard.exit()

    async def _run_batch(self) -> BatchResult:
        builder = BatchResultBuilder(max_errors=self.options.max_errors)
        prefix = f"[{builder.run_id[:8]}]"
        routing = self.routing

        logger.info(f"{prefix} Starting pipeline run")

        try:
            candidates = await self.source.search_triggered(
                routing.trigger_field,
                routing.trigger_value,
                routing.source_properties(),
                cancel_event=self._cancel_event,
            )
        except RunCancelled:
            builder.cancelled = True
            return builder.build()
        except Exception as e:
            builder.error = str(e)
            logger.error(f"{prefix} Failed to fetch triggered contacts: {e}")
            self._alert_failure(e, {"run_id": builder.run_id, "stage": "fetch"})
            return builder.build()

        logger.info(
            f"{prefix} Found {len(candidates)} contacts with "
            f"{routing.trigger_field}={routing.trigger_value}"
        )

        if self.options.concurrency > 1 and len(candidates) > 1:
            await self._process_concurrently(candidates, builder, prefix)
        else:
            await self._process_sequentially(candidates, builder, prefix)

        result = builder.build()
        logger.info(
            f"{prefix} Pipeline run complete: processed={result.processed} "
            f"succeeded={result.succeeded} failed={result.failed} skipped={result.skipped} "
            f"excluded={result.excluded} duplicate={result.duplicate} "
            f"({result.duration_ms}ms){' [cancelled]' if result.cancelled else ''}"
        )

        if self.alerts is not None and result.failed == 0 and not result.cancelled:
            self.alerts.record_success(PIPELINE_NAME)

        return result

    async def _process_sequentially(
        self,
        candidates: list[Candidate],
        builder: BatchResultBuilder,
        prefix: str,
    ):
        for candidate in candidates:
            if self._cancel_event.is_set():
                builder.cancelled = True
                break

            outcome, error = await self._process_safely(candidate, prefix)
            if outcome is None:
                builder.cancelled = True
                break
            builder.record(outcome, candidate.id, error)

    async def _process_concurrently(
        self,
        candidates: list[Candidate],
        builder: BatchResultBuilder,
        prefix: str,
    ):
        """Bounded worker pool; outcomes are still recorded in fetch order."""
        semaphore = asyncio.Semaphore(self.options.concurrency)
        # One in-flight candidate per email, so the ledger check sees earlier writes
        email_locks: dict[str, asyncio.Lock] = {}

        async def worker(candidate: Candidate):
            async with semaphore:
                if self._cancel_event.is_set():
                    return None, None
                lock = email_locks.setdefault(candidate.normalized_email or candidate.id, asyncio.Lock())
                async with lock:
                    return await self._process_safely(candidate, prefix)

        results = await asyncio.gather(*(worker(c) for c in candidates))

        for candidate, (outcome, error) in zip(candidates, results):
            if outcome is None:
                builder.cancelled = True
                continue
            builder.record(outcome, candidate.id, error)

    async def _process_safely(
        self,
        candidate: Candidate,
        prefix: str,
    ) -> tuple[Optional[CandidateOutcome], Optional[str]]:
        """Process one candidate; (None, None) means the run was cancelled."""
        try:
            return await self.process_candidate(candidate, prefix), None
        except RunCancelled:
            logger.warning(f"{prefix} Run cancelled while processing contact {candidate.id}")
            return None, None
        except Exception as e:
            logger.error(f"{prefix} Failed to process contact {candidate.id}: {e}")
            self._alert_failure(e, {"record_id": candidate.id})
            return CandidateOutcome.FAILED, str(e) or type(e).__name__

    async def process_candidate(self, candidate: Candidate, prefix: str = "") -> CandidateOutcome:
        """Walk one candidate through the state machine to a terminal outcome."""
        routing = self.routing
        email = candidate.email.strip() if candidate.email else None

        if not email:
            logger.warning(f"{prefix} Contact {candidate.id} has no email, skipping")
            return CandidateOutcome.SKIPPED_MISSING_EMAIL

        exclusion = self.exclusions.check(candidate)
        if exclusion.excluded:
            logger.info(f"{prefix} Contact {candidate.id} excluded by rule: {exclusion.reason}")
            return CandidateOutcome.EXCLUDED

        owner_name = routing.owner_name(candidate.owner_id)
        if not owner_name:
            logger.warning(
                f"{prefix} Unknown owner id {candidate.owner_id} for contact {candidate.id}, skipping"
            )
            return CandidateOutcome.SKIPPED_UNKNOWN_OWNER

        destination = routing.campaign_for(owner_name)
        if not destination:
            logger.warning(f"{prefix} No campaign configured for owner {owner_name}, skipping")
            return CandidateOutcome.SKIPPED_NO_DESTINATION

        context = f"contact {candidate.id} ({mask_email(email)}, {owner_name} -> {destination})"

        if await self.store.is_processed(candidate.id):
            logger.debug(f"{prefix} Already processed {context}")
            return CandidateOutcome.SKIPPED_ALREADY_PROCESSED

        if await self.store.is_email_processed(email):
            logger.debug(f"{prefix} Email already processed for {context}")
            return CandidateOutcome.SKIPPED_ALREADY_PROCESSED

        metadata = LedgerMetadata(
            email=email,
            owner=owner_name,
            destination=destination,
            lead_source=candidate.get(routing.lead_source_field, self.options.default_lead_source),
        )

        exists = await self._call_sink(
            lambda: self.sink.exists(destination, email),
            "checkLeadExists",
        )
        if exists:
            logger.info(f"{prefix} Lead already in campaign, marking processed: {context}")
            await self.store.mark_processed(candidate.id, metadata)
            return CandidateOutcome.DUPLICATE

        payload = self.build_payload(candidate)

        if self.enrichment is not None and self.options.enrichment_enabled:
            logger.debug(f"{prefix} Enriching {context}")
            payload = await self.enrichment.enrich(
                payload,
                self.options.enrichment,
                cancel_event=self._cancel_event,
            )
            if payload.get("enriched"):
                logger.info(f"{prefix} Enriched {context}: {', '.join(enriched_fields(payload)) or 'no new fields'}")

        def on_retry(attempt: RetryAttempt):
            logger.warning(
                f"{prefix} Retrying add for {context} "
                f"(attempt {attempt.attempt}, delay {attempt.delay:.2f}s)"
            )

        await self._call_sink(
            lambda: self.sink.add(destination, payload),
            "addLeadToCampaign",
            on_retry=on_retry,
        )
        await self.store.mark_processed(candidate.id, metadata)

        logger.info(f"{prefix} Added {context}")
        return CandidateOutcome.SUCCEEDED

    async def _call_sink(
        self,
        operation: Callable[[], Awaitable[Any]],
        operation_name: str,
        on_retry: Optional[Callable[[RetryAttempt], None]] = None,
    ) -> Any:
        """Rate limiting gates entry; retry governs the admitted call."""
        await self.limiters.lemlist.acquire(self._cancel_event)
        return await self.retry.with_retry(
            operation,
            operation_name=operation_name,
            on_retry=on_retry,
            cancel_event=self._cancel_event,
        )

    def build_payload(self, candidate: Candidate) -> dict[str, Any]:
        """Build the campaign payload from mapped fields and AI context variables."""
        mappings = self.routing.field_mappings
        payload: dict[str, Any] = {
            "email": candidate.email.strip() if candidate.email else None,
            "firstName": candidate.get(mappings.firstName, ""),
            "lastName": candidate.get(mappings.lastName, ""),
            "companyName": candidate.get(mappings.companyName, ""),
        }

        # Become {{variable}} placeholders in the campaign's templates
        for variable, prop in self.routing.ai_context_fields.items():
            value = candidate.get(prop)
            if value is not None:
                payload[variable] = value

        return payload

    def _alert_failure(self, error: BaseException, context: dict):
        if self.alerts is None:
            return
        try:
            self.alerts.record_failure(PIPELINE_NAME, error, context)
        except Exception as e:
            logger.error(f"Alert manager failed: {e}")

    async def aclose(self):
        """Close collaborators that hold network resources."""
        closed = set()
        for collaborator in (self.source, self.sink, getattr(self.enrichment, "provider", None)):
            if collaborator is None or id(collaborator) in closed:
                continue
            closed.add(id(collaborator))
            aclose = getattr(collaborator, "aclose", None)
            if aclose is not None:
                await aclose()
