"""Tests for exclusion rules."""

from conftest import make_candidate
from leadsync.models import ExclusionRules
from leadsync.pipeline import ExclusionChecker


def make_checker(**kwargs) -> ExclusionChecker:
    """Create a checker; customers are excluded unless overridden."""
    defaults = {"exclude_lifecycle_stages": ["customer", "evangelist"]}
    defaults.update(kwargs)
    return ExclusionChecker(ExclusionRules(**defaults))


class TestExclusionChecker:
    """Tests for lifecycle and opt-out predicates."""

    def test_passes_ordinary_lead(self):
        result = make_checker().check(make_candidate(lifecyclestage="lead"))
        assert not result.excluded
        assert result.reason is None

    def test_excludes_blocked_lifecycle_stage(self):
        result = make_checker().check(make_candidate(lifecyclestage="customer"))
        assert result.excluded
        assert result.reason == "lifecyclestage_customer"

    def test_lifecycle_match_is_case_insensitive(self):
        checker = make_checker(exclude_lifecycle_stages=["Customer"])
        result = checker.check(make_candidate(lifecyclestage="CUSTOMER"))
        assert result.excluded
        assert result.reason == "lifecyclestage_customer"

    def test_excludes_email_optout(self):
        result = make_checker().check(make_candidate(hs_email_optout="true"))
        assert result.excluded
        assert result.reason == "email_optout"

    def test_optout_false_passes(self):
        assert not make_checker().check(make_candidate(hs_email_optout="false")).excluded

    def test_optout_rule_can_be_disabled(self):
        checker = make_checker(exclude_if_email_optout=False)
        assert not checker.check(make_candidate(hs_email_optout="true")).excluded

    def test_no_rules_never_excludes(self):
        checker = make_checker(exclude_lifecycle_stages=[], exclude_if_email_optout=False)
        candidate = make_candidate(lifecyclestage="customer", hs_email_optout="true")
        assert not checker.check(candidate).excluded

    def test_lifecycle_checked_before_optout(self):
        candidate = make_candidate(lifecyclestage="evangelist", hs_email_optout="true")
        assert make_checker().check(candidate).reason == "lifecyclestage_evangelist"

    def test_custom_property_names(self):
        checker = make_checker(lifecycle_field="stage", optout_field="unsubscribed")
        assert checker.check(make_candidate(stage="customer")).excluded
        assert checker.check(make_candidate(unsubscribed="TRUE")).excluded
