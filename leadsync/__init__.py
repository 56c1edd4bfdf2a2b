"""leadsync: resilient CRM -> campaign lead sync."""

__version__ = "0.1.0"
