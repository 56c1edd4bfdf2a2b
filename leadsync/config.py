"""Configuration settings for the CRM -> campaign sync service."""

import json
from pathlib import Path
from typing import Optional
from pydantic import ValidationError
from pydantic_settings import BaseSettings

from leadsync.errors import ConfigurationError
from leadsync.models.routing import RoutingConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Paths
    base_dir: Path = Path(__file__).parent.parent
    data_dir: Path = base_dir / "data"
    db_path: Path = data_dir / "leadsync.db"
    routing_config_path: Path = base_dir / "routing.json"

    # Overrides db_path when set (e.g. a shared Postgres ledger)
    ledger_database_url: str = ""

    # Source CRM (HubSpot)
    hubspot_access_token: str = ""
    hubspot_portal_id: str = ""
    hubspot_base_url: str = "https://api.hubapi.com"
    hubspot_rate_limit_requests: int = 100
    hubspot_rate_limit_window_ms: int = 10_000  # 100 requests per 10 seconds

    # Destination campaign system (Lemlist)
    lemlist_api_key: str = ""
    lemlist_base_url: str = "https://api.lemlist.com/api"
    lemlist_rate_limit_requests: int = 100
    lemlist_rate_limit_window_ms: int = 60_000  # 100 requests per minute

    # HTTP Client Settings
    connect_timeout: float = 10.0
    read_timeout: float = 30.0

    # Retry Settings
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0  # seconds
    retry_max_delay: float = 30.0  # seconds

    # Enrichment Settings
    enrichment_enabled: bool = True
    enrichment_max_wait_ms: int = 30_000
    enrichment_poll_interval_ms: int = 2_000

    # Pipeline Settings
    polling_interval_seconds: int = 300
    pipeline_concurrency: int = 1
    max_batch_errors: int = 100

    # Alert Settings
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_use_tls: bool = False
    smtp_user: str = ""
    smtp_password: str = ""
    alert_email_to: str = ""
    alert_email_from: str = "leadsync@localhost"
    alert_failure_threshold: int = 3
    alert_cooldown_minutes: int = 15

    # Database URL
    @property
    def database_url(self) -> str:
        if self.ledger_database_url:
            return self.ledger_database_url
        return f"sqlite:///{self.db_path}"

    @property
    def alerts_enabled(self) -> bool:
        return bool(self.smtp_host)

    def validate_credentials(self):
        """Raise ConfigurationError if anything required for a live run is missing."""
        required = {
            "HUBSPOT_ACCESS_TOKEN": self.hubspot_access_token,
            "LEMLIST_API_KEY": self.lemlist_api_key,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}. "
                "Check your .env file or environment configuration."
            )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


def load_routing(path: Optional[Path] = None) -> RoutingConfig:
    """Load routing configuration from a JSON file."""
    path = path or settings.routing_config_path
    if not path.exists():
        raise ConfigurationError(f"Routing config not found: {path}")

    try:
        with open(path, "r") as f:
            data = json.load(f)
        return RoutingConfig(**data)
    except (json.JSONDecodeError, ValidationError) as e:
        raise ConfigurationError(f"Invalid routing config {path}: {e}") from e


settings = Settings()

# Ensure data directory exists
settings.data_dir.mkdir(parents=True, exist_ok=True)
