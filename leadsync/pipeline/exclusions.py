"""Exclusion rules: pure predicates over candidate attributes."""

import logging
from dataclasses import dataclass
from typing import Optional

from leadsync.models import Candidate, ExclusionRules

logger = logging.getLogger(__name__)


@dataclass
class ExclusionResult:
    """Result of checking a candidate against the exclusion rules."""

    excluded: bool
    reason: Optional[str] = None


NOT_EXCLUDED = ExclusionResult(excluded=False)


class ExclusionChecker:
    """Apply exclusion rules. Never touches the network."""

    def __init__(self, rules: ExclusionRules):
        self.rules = rules
        self._blocked_stages = {s.lower() for s in rules.exclude_lifecycle_stages}

    def check(self, candidate: Candidate) -> ExclusionResult:
        """Return the first matching exclusion, if any."""
        result = self._check_lifecycle(candidate)
        if result.excluded:
            return result
        return self._check_optout(candidate)

    def _check_lifecycle(self, candidate: Candidate) -> ExclusionResult:
        if not self._blocked_stages:
            return NOT_EXCLUDED

        lifecycle = (candidate.get(self.rules.lifecycle_field) or "").lower()
        if lifecycle and lifecycle in self._blocked_stages:
            return ExclusionResult(excluded=True, reason=f"lifecyclestage_{lifecycle}")
        return NOT_EXCLUDED

    def _check_optout(self, candidate: Candidate) -> ExclusionResult:
        if not self.rules.exclude_if_email_optout:
            return NOT_EXCLUDED

        if is_truthy(candidate.attributes.get(self.rules.optout_field)):
            return ExclusionResult(excluded=True, reason="email_optout")
        return NOT_EXCLUDED


def is_truthy(value) -> bool:
    """Opt-out flags arrive as strings from the CRM ("true") or as booleans."""
    if isinstance(value, bool):
        return value
    return isinstance(value, str) and value.strip().lower() == "true"
