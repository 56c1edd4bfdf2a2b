"""Routing configuration schema (owner -> campaign mapping, exclusions)."""

from typing import Optional
from pydantic import BaseModel, Field

PLACEHOLDER_PREFIX = "PLACEHOLDER"


class FieldMappings(BaseModel):
    """Source property names used to build the campaign payload."""

    email: str = Field(default="email", description="Property holding the contact email")
    firstName: str = Field(default="firstname", description="Property holding the first name")
    lastName: str = Field(default="lastname", description="Property holding the last name")
    companyName: str = Field(default="company", description="Property holding the company name")


class ExclusionRules(BaseModel):
    """Policy predicates evaluated before any network call."""

    exclude_lifecycle_stages: list[str] = Field(
        default_factory=list,
        description="Lifecycle stages that must never be sequenced (e.g. 'customer')",
    )
    exclude_if_email_optout: bool = Field(
        default=True,
        description="Skip contacts that opted out of email",
    )
    lifecycle_field: str = Field(default="lifecyclestage")
    optout_field: str = Field(default="hs_email_optout")


class RoutingConfig(BaseModel):
    """Complete routing profile loaded from routing.json."""

    trigger_field: str = Field(default="add_to_lemlist", description="Source property that marks a record for sync")
    trigger_value: str = Field(default="true", description="Value the trigger property must equal")

    owners: dict[str, str] = Field(
        default_factory=dict,
        description="Source owner id -> owner name",
    )
    campaigns: dict[str, str] = Field(
        default_factory=dict,
        description="Owner name -> destination campaign id",
    )

    field_mappings: FieldMappings = Field(default_factory=FieldMappings)
    ai_context_fields: dict[str, str] = Field(
        default_factory=dict,
        description="Payload variable -> source property copied as a custom variable",
    )
    exclusion_rules: ExclusionRules = Field(default_factory=ExclusionRules)

    owner_field: str = Field(default="hubspot_owner_id")
    lead_source_field: str = Field(default="lead_source")

    def owner_name(self, owner_id: Optional[str]) -> Optional[str]:
        """Resolve a source owner id to its configured name."""
        if not owner_id:
            return None
        return self.owners.get(owner_id)

    def campaign_for(self, owner_name: str) -> Optional[str]:
        """Return the destination campaign for an owner, or None if unmapped or a placeholder."""
        campaign_id = self.campaigns.get(owner_name)
        if not campaign_id or campaign_id.startswith(PLACEHOLDER_PREFIX):
            return None
        return campaign_id

    def campaign_ids(self) -> list[str]:
        """All distinct campaign ids, placeholders included."""
        return sorted({c for c in self.campaigns.values() if c})

    def placeholder_campaigns(self) -> list[str]:
        return [c for c in self.campaign_ids() if c.startswith(PLACEHOLDER_PREFIX)]

    def source_properties(self) -> list[str]:
        """Properties the contact source must return for the pipeline to work."""
        mappings = self.field_mappings
        props = [
            mappings.email,
            mappings.firstName,
            mappings.lastName,
            mappings.companyName,
            self.owner_field,
            self.lead_source_field,
            self.trigger_field,
            self.exclusion_rules.lifecycle_field,
            self.exclusion_rules.optout_field,
            *self.ai_context_fields.values(),
        ]
        # Preserve order, drop duplicates
        return list(dict.fromkeys(props))
