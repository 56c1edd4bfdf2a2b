"""Best-effort asynchronous enrichment: submit a job, poll, merge.

Enrichment never decides whether a lead is synced. ``enrich`` always hands
back a payload (enriched, or the original untouched) and only lets
cancellation escape.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from leadsync.connectors.base import EnrichmentProvider
from leadsync.errors import RunCancelled
from leadsync.models import EnrichmentJob, EnrichmentStatus, mask_email
from leadsync.resilience import RateLimiter, RetryExecutor, RetryPolicy

logger = logging.getLogger(__name__)


class PollOutcome(Enum):
    """Result of a single poll iteration."""

    CONTINUING = "continuing"
    DONE = "done"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class MergeStrategy(Enum):
    FILL_IF_ABSENT = "fill_if_absent"
    ALWAYS_OVERWRITE = "always_overwrite"


# payload field -> (provider data section, provider key, strategy)
MERGE_STRATEGIES: dict[str, tuple[str, str, MergeStrategy]] = {
    "firstName": ("linkedin", "firstName", MergeStrategy.FILL_IF_ABSENT),
    "lastName": ("linkedin", "lastName", MergeStrategy.FILL_IF_ABSENT),
    "companyName": ("linkedin", "companyName", MergeStrategy.FILL_IF_ABSENT),
    "linkedinUrl": ("linkedin", "linkedinUrl", MergeStrategy.ALWAYS_OVERWRITE),
    "jobTitle": ("linkedin", "jobTitle", MergeStrategy.FILL_IF_ABSENT),
    "phone": ("phone", "phone", MergeStrategy.ALWAYS_OVERWRITE),
}

VERIFIED_EMAIL_STATUSES = frozenset({"valid", "deliverable"})


@dataclass
class EnrichmentOptions:
    max_wait_ms: int = 30_000
    poll_interval_ms: int = 2_000

    @classmethod
    def from_settings(cls, settings) -> "EnrichmentOptions":
        return cls(
            max_wait_ms=settings.enrichment_max_wait_ms,
            poll_interval_ms=settings.enrichment_poll_interval_ms,
        )


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def merge_enrichment(payload: dict[str, Any], job: EnrichmentJob) -> dict[str, Any]:
    """Merge a finished job's data into a copy of the payload."""
    merged = dict(payload)
    data = job.data or {}

    for field, (section, key, strategy) in MERGE_STRATEGIES.items():
        value = (data.get(section) or {}).get(key)
        if _is_empty(value):
            continue
        if strategy is MergeStrategy.FILL_IF_ABSENT and not _is_empty(merged.get(field)):
            continue
        merged[field] = value

    email_status = (data.get("email") or {}).get("status")
    if email_status:
        merged["emailVerificationStatus"] = email_status
        merged["emailVerified"] = email_status in VERIFIED_EMAIL_STATUSES

    merged["enriched"] = True
    merged["enrichedAt"] = datetime.now(timezone.utc).isoformat()
    merged["enrichmentId"] = job.id
    return merged


def enriched_fields(payload: dict[str, Any]) -> list[str]:
    """Names of the enrichment-derived fields present on a payload."""
    fields = [f for f in ("linkedinUrl", "jobTitle", "phone") if payload.get(f)]
    if payload.get("emailVerified"):
        fields.append("verified")
    return fields


class EnrichmentPoller:
    """Submit an enrichment job and poll it within a hard time budget."""

    def __init__(
        self,
        provider: EnrichmentProvider,
        limiter: RateLimiter,
        retry: RetryExecutor,
        policy: Optional[RetryPolicy] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.provider = provider
        self.limiter = limiter
        self.retry = retry
        self.policy = policy
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep

    async def _call(self, operation, operation_name: str, cancel_event: Optional[asyncio.Event]):
        await self.limiter.acquire(cancel_event)
        return await self.retry.with_retry(
            operation,
            policy=self.policy,
            operation_name=operation_name,
            cancel_event=cancel_event,
        )

    async def enrich(
        self,
        payload: dict[str, Any],
        options: Optional[EnrichmentOptions] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> dict[str, Any]:
        """Return the payload enriched, or the original payload on any failure or timeout."""
        options = options or EnrichmentOptions()
        email = payload.get("email")
        max_wait = options.max_wait_ms / 1000.0
        interval = options.poll_interval_ms / 1000.0
        deadline = self._clock() + max_wait

        params = {
            "email": email,
            "firstName": payload.get("firstName"),
            "lastName": payload.get("lastName"),
            "companyName": payload.get("companyName"),
            "verifyEmail": True,
            "linkedinEnrichment": True,
            "findPhone": True,
        }

        try:
            job_id = await asyncio.wait_for(
                self._call(lambda: self.provider.submit(params), "submitEnrichment", cancel_event),
                timeout=max_wait + interval,
            )
        except RunCancelled:
            raise
        except Exception as e:
            logger.warning(f"Enrichment submission failed for {mask_email(email)}: {e}")
            return payload

        if not job_id:
            logger.warning(f"No enrichment id returned for {mask_email(email)}")
            return payload

        while True:
            outcome, job = await self._poll_once(job_id, deadline, interval, cancel_event)

            if outcome is PollOutcome.DONE:
                logger.info(f"Enrichment {job_id} completed for {mask_email(email)}")
                return merge_enrichment(payload, job)

            if outcome is PollOutcome.FAILED:
                logger.warning(f"Enrichment {job_id} failed for {mask_email(email)}")
                return payload

            if outcome is PollOutcome.TIMED_OUT:
                logger.warning(
                    f"Enrichment {job_id} timed out after {options.max_wait_ms}ms for {mask_email(email)}"
                )
                return payload

    async def _poll_once(
        self,
        job_id: str,
        deadline: float,
        interval: float,
        cancel_event: Optional[asyncio.Event],
    ) -> tuple[PollOutcome, Optional[EnrichmentJob]]:
        """Sleep one interval (clipped to the budget), then poll once."""
        remaining = deadline - self._clock()
        if remaining <= 0:
            return PollOutcome.TIMED_OUT, None

        await self._sleep(min(interval, remaining))
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelled(f"Cancelled while polling enrichment {job_id}")

        try:
            job = await asyncio.wait_for(
                self._call(lambda: self.provider.poll(job_id), "getEnrichmentResult", cancel_event),
                timeout=max(0.0, deadline - self._clock()) + interval,
            )
        except RunCancelled:
            raise
        except Exception as e:
            # Poll failures are tolerated until the budget runs out
            logger.warning(f"Error checking enrichment {job_id}: {e!r}")
            return PollOutcome.CONTINUING, None

        if job.status is EnrichmentStatus.DONE:
            return PollOutcome.DONE, job
        if job.status in (EnrichmentStatus.FAILED, EnrichmentStatus.TIMEOUT):
            return PollOutcome.FAILED, job

        logger.debug(f"Enrichment {job_id} still {job.status.value}")
        return PollOutcome.CONTINUING, job
