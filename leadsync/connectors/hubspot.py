"""HubSpot CRM contact source (read-only)."""

import asyncio
import logging
from typing import Any, Optional

import httpx

from leadsync.config import settings
from leadsync.models import Candidate
from leadsync.resilience import RateLimiter, RetryExecutor
from .base import ContactSource

logger = logging.getLogger(__name__)


class HubSpotContactSource(ContactSource):
    """Search HubSpot for contacts whose trigger property is set."""

    name = "hubspot"
    SEARCH_PATH = "/crm/v3/objects/contacts/search"
    PAGE_SIZE = 100

    # Always fetched: identity, routing and exclusion properties
    BASE_PROPERTIES = [
        "firstname",
        "lastname",
        "email",
        "company",
        "hubspot_owner_id",
        "lifecyclestage",
        "hs_email_optout",
    ]

    def __init__(
        self,
        limiter: RateLimiter,
        retry: RetryExecutor,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        email_field: str = "email",
        owner_field: str = "hubspot_owner_id",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token or settings.hubspot_access_token
        self.base_url = base_url or settings.hubspot_base_url
        self.limiter = limiter
        self.retry = retry
        self.email_field = email_field
        self.owner_field = owner_field
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(settings.read_timeout, connect=settings.connect_timeout),
            transport=transport,
        )

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        response = await self._client.post(path, json=body)
        response.raise_for_status()
        return response.json()

    async def search_triggered(
        self,
        filter_field: str,
        filter_value: str,
        extra_fields: Optional[list[str]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> list[Candidate]:
        """Search all pages of contacts where ``filter_field == filter_value``."""
        properties = list(dict.fromkeys(
            [*self.BASE_PROPERTIES, filter_field, *(extra_fields or [])]
        ))
        candidates: list[Candidate] = []
        after: Optional[str] = None
        page = 0

        while True:
            body: dict[str, Any] = {
                "filterGroups": [{
                    "filters": [{
                        "propertyName": filter_field,
                        "operator": "EQ",
                        "value": filter_value,
                    }]
                }],
                "properties": properties,
                "limit": self.PAGE_SIZE,
            }
            if after:
                body["after"] = after

            await self.limiter.acquire(cancel_event)
            data = await self.retry.with_retry(
                lambda: self._post(self.SEARCH_PATH, body),
                operation_name="searchTriggeredContacts",
                cancel_event=cancel_event,
            )
            page += 1

            for result in data.get("results") or []:
                candidates.append(self._parse_contact(result))

            after = ((data.get("paging") or {}).get("next") or {}).get("after")
            if not after:
                break

        logger.debug(
            f"Searched triggered contacts {filter_field}={filter_value}: "
            f"{len(candidates)} contacts over {page} page(s)"
        )
        return candidates

    def _parse_contact(self, data: dict) -> Candidate:
        """Parse a HubSpot contact object into a Candidate."""
        props = data.get("properties") or {}
        attributes = {k: str(v) for k, v in props.items() if v is not None}
        return Candidate(
            id=str(data["id"]),
            email=props.get(self.email_field) or None,
            owner_id=props.get(self.owner_field) or None,
            attributes=attributes,
        )

    async def verify_connection(self) -> bool:
        """Check the access token by reading a single contact."""
        try:
            await self.limiter.acquire()
            response = await self._client.get("/crm/v3/objects/contacts", params={"limit": 1})
            response.raise_for_status()
            logger.info("HubSpot API connection verified")
            return True
        except httpx.HTTPError as e:
            logger.error(f"Failed to verify HubSpot connection: {e}")
            return False

    async def aclose(self):
        await self._client.aclose()
