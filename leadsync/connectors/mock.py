"""In-memory collaborators for dry runs and testing."""

import asyncio
import itertools
from typing import Any, Optional

from leadsync.models import Candidate, EnrichmentJob, EnrichmentStatus, RoutingConfig, normalize_email
from .base import CampaignSink, ContactSource, EnrichmentProvider


class MockContactSource(ContactSource):
    """Contact source that returns predefined candidates."""

    name = "mock"

    def __init__(self, candidates: Optional[list[Candidate]] = None):
        self._candidates = candidates if candidates is not None else self._default_candidates()
        self.search_calls = 0

    async def search_triggered(
        self,
        filter_field: str,
        filter_value: str,
        extra_fields: Optional[list[str]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> list[Candidate]:
        """Return the candidates whose trigger attribute matches."""
        self.search_calls += 1
        return [
            c for c in self._candidates
            if c.attributes.get(filter_field, filter_value) == filter_value
        ]

    def _default_candidates(self) -> list[Candidate]:
        """Generate default test contacts."""
        return [
            Candidate(
                id="1001",
                email="ada@analytical.io",
                owner_id="owner-1",
                attributes={
                    "firstname": "Ada",
                    "lastname": "Lovelace",
                    "company": "Analytical Engines",
                    "lifecyclestage": "lead",
                    "add_to_lemlist": "true",
                    "lead_source": "webinar",
                },
            ),
            Candidate(
                id="1002",
                email="grace@cobol.dev",
                owner_id="owner-2",
                attributes={
                    "firstname": "Grace",
                    "company": "Compiler Corp",
                    "lifecyclestage": "marketingqualifiedlead",
                    "add_to_lemlist": "true",
                },
            ),
            Candidate(
                id="1003",
                email="linus@kernel.org",
                owner_id="owner-1",
                attributes={
                    "firstname": "Linus",
                    "lifecyclestage": "customer",
                    "add_to_lemlist": "true",
                },
            ),
            Candidate(
                id="1004",
                email=None,
                owner_id="owner-1",
                attributes={"firstname": "Nameless", "add_to_lemlist": "true"},
            ),
            Candidate(
                id="1005",
                email="margaret@apollo.space",
                owner_id="owner-unknown",
                attributes={"firstname": "Margaret", "add_to_lemlist": "true"},
            ),
        ]


class MockCampaignSink(CampaignSink):
    """Campaign sink backed by a dict of destination -> email -> payload.

    ``failures`` maps an email to exceptions raised by successive ``add``
    calls for it, to simulate flaky or rejecting destinations.
    """

    name = "mock"

    def __init__(
        self,
        existing: Optional[dict[str, set[str]]] = None,
        failures: Optional[dict[str, list[BaseException]]] = None,
    ):
        self.leads: dict[str, dict[str, dict[str, Any]]] = {}
        for destination, emails in (existing or {}).items():
            for email in emails:
                self.leads.setdefault(destination, {})[normalize_email(email)] = {"email": email}
        self._failures = {normalize_email(k): list(v) for k, v in (failures or {}).items()}
        self.add_calls: list[tuple[str, dict[str, Any]]] = []
        self.exists_calls: list[tuple[str, str]] = []

    async def exists(self, destination: str, email: str) -> bool:
        self.exists_calls.append((destination, email))
        return normalize_email(email) in self.leads.get(destination, {})

    async def add(self, destination: str, payload: dict[str, Any]) -> dict[str, Any]:
        email = normalize_email(payload.get("email"))
        self.add_calls.append((destination, dict(payload)))

        pending = self._failures.get(email)
        if pending:
            raise pending.pop(0)

        self.leads.setdefault(destination, {})[email] = dict(payload)
        return {"_id": f"lead_{len(self.add_calls)}", "email": email}

    def total_leads(self) -> int:
        return sum(len(v) for v in self.leads.values())


class MockEnrichmentProvider(EnrichmentProvider):
    """Enrichment provider that replays a scripted sequence of poll results."""

    name = "mock"

    def __init__(
        self,
        statuses: Optional[list[EnrichmentStatus]] = None,
        data: Optional[dict[str, Any]] = None,
        job_id: Optional[str] = "enrich_1",
        poll_errors: Optional[list[Optional[BaseException]]] = None,
    ):
        self._statuses = statuses if statuses is not None else [EnrichmentStatus.PENDING, EnrichmentStatus.DONE]
        self._data = data if data is not None else self._default_data()
        self._job_id = job_id
        self._poll_errors = list(poll_errors or [])
        self._counter = itertools.count(1)
        self.submitted: list[dict[str, Any]] = []
        self.poll_count = 0

    async def submit(self, params: dict[str, Any]) -> Optional[str]:
        self.submitted.append(dict(params))
        if self._job_id is None:
            return None
        return f"{self._job_id}_{next(self._counter)}"

    async def poll(self, job_id: str) -> EnrichmentJob:
        self.poll_count += 1

        if self._poll_errors:
            error = self._poll_errors.pop(0)
            if error is not None:
                raise error

        # Repeat the last scripted status once the script runs out
        index = min(self.poll_count, len(self._statuses)) - 1
        status = self._statuses[index] if self._statuses else EnrichmentStatus.PENDING
        data = self._data if status is EnrichmentStatus.DONE else {}
        return EnrichmentJob(id=job_id, status=status, data=data)

    def _default_data(self) -> dict[str, Any]:
        return {
            "linkedin": {
                "firstName": "Enriched",
                "lastName": "Person",
                "companyName": "Enriched Co",
                "linkedinUrl": "https://www.linkedin.com/in/enriched",
                "jobTitle": "Head of Operations",
            },
            "phone": {"phone": "+1 555 0100"},
            "email": {"status": "deliverable"},
        }


def mock_routing() -> RoutingConfig:
    """Routing profile matching the default mock contacts."""
    return RoutingConfig(
        owners={"owner-1": "alice", "owner-2": "bob"},
        campaigns={"alice": "cam_alice", "bob": "cam_bob"},
        ai_context_fields={"leadSource": "lead_source"},
        exclusion_rules={"exclude_lifecycle_stages": ["customer", "evangelist"]},
    )
