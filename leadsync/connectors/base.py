"""Abstract interfaces for the remote collaborators the pipeline talks to."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Optional

from leadsync.models import Candidate, EnrichmentJob


class ContactSource(ABC):
    """Source-of-record that holds triggered contacts."""

    name: str = "source"

    @abstractmethod
    async def search_triggered(
        self,
        filter_field: str,
        filter_value: str,
        extra_fields: Optional[list[str]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> list[Candidate]:
        """
        Return every contact whose ``filter_field`` equals ``filter_value``.

        Implementations paginate internally and must exhaust all pages
        before returning.

        Args:
            filter_field: Trigger property name
            filter_value: Value the property must equal
            extra_fields: Additional properties to include in each candidate
            cancel_event: Stops pagination with RunCancelled when set

        Returns:
            Candidates in source order
        """
        pass

    async def verify_connection(self) -> bool:
        return True


class CampaignSink(ABC):
    """Destination campaign system."""

    name: str = "sink"

    @abstractmethod
    async def exists(self, destination: str, email: str) -> bool:
        """
        Check whether a lead with this email is already in the destination.

        Args:
            destination: Campaign id
            email: Lead email

        Returns:
            True if the destination already holds the lead
        """
        pass

    @abstractmethod
    async def add(self, destination: str, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Add a lead to a destination. Called at most once per deduped candidate.

        Args:
            destination: Campaign id
            payload: Lead payload (email, names, custom variables)

        Returns:
            The created lead as reported by the destination
        """
        pass

    async def verify_connection(self) -> bool:
        return True

    async def validate_destinations(self, destinations: list[str]) -> tuple[list[str], list[str]]:
        """Split destination ids into (valid, invalid). Default: all valid."""
        return list(destinations), []


class EnrichmentProvider(ABC):
    """Asynchronous contact enrichment service."""

    name: str = "enrichment"

    @abstractmethod
    async def submit(self, params: dict[str, Any]) -> Optional[str]:
        """Submit an enrichment job; returns the job id, or None if none was created."""
        pass

    @abstractmethod
    async def poll(self, job_id: str) -> EnrichmentJob:
        """Fetch the current status (and data, once done) of a job."""
        pass
