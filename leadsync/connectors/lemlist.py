"""Lemlist campaign sink and enrichment provider."""

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from leadsync.config import settings
from leadsync.models import EnrichmentJob, EnrichmentStatus
from .base import CampaignSink, EnrichmentProvider

logger = logging.getLogger(__name__)


class LemlistClient(CampaignSink, EnrichmentProvider):
    """Thin Lemlist API client.

    Methods make exactly one HTTP request and raise ``httpx.HTTPStatusError``
    on non-2xx responses; rate limiting and retries are applied by the
    caller so every call site goes through the same limiter and policy.
    """

    name = "lemlist"

    # Payload keys that are sent as-is rather than as custom variables
    STANDARD_FIELDS = ("email", "firstName", "lastName", "companyName", "linkedinUrl", "phone", "jobTitle")

    # Enrichment bookkeeping, never sent to the campaign
    INTERNAL_FIELDS = frozenset({
        "enriched",
        "enrichedAt",
        "enrichmentId",
        "emailVerificationStatus",
        "emailVerified",
        "customVariables",
    })

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or settings.lemlist_api_key
        self.base_url = base_url or settings.lemlist_base_url
        # Basic auth with an empty username and the API key as password
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=httpx.BasicAuth("", self.api_key),
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(settings.read_timeout, connect=settings.connect_timeout),
            transport=transport,
        )

    async def exists(self, destination: str, email: str) -> bool:
        """Check if a lead exists in a campaign (404 means it does not)."""
        response = await self._client.get(
            f"/campaigns/{destination}/leads/{quote(email, safe='')}"
        )
        if response.status_code == 404:
            logger.debug(f"Lead does not exist in campaign {destination}")
            return False
        response.raise_for_status()
        logger.debug(f"Lead exists in campaign {destination}")
        return True

    async def add(self, destination: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Add a lead to a campaign."""
        body = self.build_lead_body(payload)
        response = await self._client.post(f"/campaigns/{destination}/leads", json=body)
        response.raise_for_status()
        logger.info(f"Added lead to campaign {destination}")
        return response.json() if response.content else {}

    @classmethod
    def build_lead_body(cls, payload: dict[str, Any]) -> dict[str, Any]:
        """Build the request body: standard fields, then custom variables at root level."""
        body: dict[str, Any] = {"email": payload.get("email")}

        for key in cls.STANDARD_FIELDS[1:]:
            if payload.get(key):
                body[key] = payload[key]

        for key, value in payload.items():
            if key in cls.STANDARD_FIELDS or key in cls.INTERNAL_FIELDS:
                continue
            if value is not None and value != "":
                body[key] = value

        custom = payload.get("customVariables") or {}
        for key, value in custom.items():
            if value is not None and value != "":
                body[key] = value

        return body

    async def submit(self, params: dict[str, Any]) -> Optional[str]:
        """Submit a lead for enrichment. Returns the enrichment job id."""
        query: dict[str, Any] = {}

        for key in ("email", "firstName", "lastName", "companyName", "companyDomain", "linkedinUrl"):
            if params.get(key):
                query[key] = params[key]

        # Enrichment flags travel as query params
        if params.get("verifyEmail", True):
            query["verifyEmail"] = "true"
        if params.get("linkedinEnrichment", True):
            query["linkedinEnrichment"] = "true"
        if params.get("findEmail"):
            query["findEmail"] = "true"
        if params.get("findPhone"):
            query["findPhone"] = "true"

        response = await self._client.post("/enrich", params=query)
        response.raise_for_status()
        data = response.json() if response.content else {}
        job_id = data.get("id") if isinstance(data, dict) else None
        logger.debug(f"Submitted enrichment request (id={job_id})")
        return job_id

    async def poll(self, job_id: str) -> EnrichmentJob:
        """Get the current state of an enrichment job."""
        response = await self._client.get(f"/enrich/{job_id}")
        response.raise_for_status()
        data = response.json()
        status = EnrichmentStatus.from_provider(data.get("enrichmentStatus") or data.get("status"))
        return EnrichmentJob(
            id=data.get("enrichmentId") or job_id,
            status=status,
            data=data.get("data") or {},
        )

    async def get_campaigns(self) -> list[dict]:
        response = await self._client.get("/campaigns")
        response.raise_for_status()
        campaigns = response.json() or []
        logger.debug(f"Fetched {len(campaigns)} Lemlist campaigns")
        return campaigns

    async def verify_connection(self) -> bool:
        try:
            await self.get_campaigns()
            logger.info("Lemlist API connection verified")
            return True
        except httpx.HTTPError as e:
            logger.error(f"Failed to verify Lemlist connection: {e}")
            return False

    async def validate_destinations(self, destinations: list[str]) -> tuple[list[str], list[str]]:
        """Check configured campaign ids against the campaigns Lemlist knows."""
        existing = {c.get("_id") for c in await self.get_campaigns()}
        valid = [d for d in destinations if d in existing]
        invalid = [d for d in destinations if d not in existing]
        if invalid:
            logger.warning(f"Campaign ids not found in Lemlist: {invalid}")
        return valid, invalid

    async def aclose(self):
        await self._client.aclose()
