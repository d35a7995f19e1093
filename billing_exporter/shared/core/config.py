import re
from functools import lru_cache
from typing import Dict, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# BigQuery resource ids: alphanumeric plus hyphens/underscores/dots
BIGQUERY_TABLE_PATTERN = re.compile(r"^[a-zA-Z0-9\-_]+\.[a-zA-Z0-9_]+\.[a-zA-Z0-9_\-]+$")


def parse_account_map(value: Optional[str]) -> Dict[str, str]:
    """
    Parse a manual account mapping of the form "1200000=acme-dev,120001=acme-prod".
    Entries that are not exactly "id=name" are ignored.
    """
    mapping: Dict[str, str] = {}
    if not value:
        return mapping
    for entry in value.split(","):
        parts = entry.split("=")
        if len(parts) != 2:
            continue
        mapping[parts[0].strip()] = parts[1].strip()
    return mapping


class Settings(BaseSettings):
    """
    Configuration for the cloud billing exporter.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """
    APP_NAME: str = "cloud_billing_exporter"
    APP_NAME_LONG: str = "Cloud Billing Exporter"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    TESTING: bool = False

    # Web
    LISTEN_HOST: str = "0.0.0.0"  # nosec: B104
    LISTEN_PORT: int = 9660
    METRICS_PATH: str = "/metrics"

    # AWS billing (Cost and Usage Reports in S3)
    AWS_BILLING_BUCKET_NAME: Optional[str] = None
    AWS_BILLING_REGION: str = "eu-west-1"
    AWS_ROOT_ACCOUNT_ID: Optional[str] = None
    AWS_ACCOUNT_MAP: str = ""  # e.g. "1200000=acme-dev,120001=acme-prod"
    AWS_OWNER_TAG: str = "owner"
    AWS_NAME_TAG: str = "project-id"
    AWS_ENDPOINT_URL: Optional[str] = None  # MotoServer/LocalStack

    # GCP billing (JSON export in GCS, or BigQuery export)
    GCP_BILLING_BUCKET_NAME: Optional[str] = None
    GCP_REPORT_PREFIX: str = "my-billing"
    GCP_OWNER_LABEL: str = "owner-base32"
    GCP_BIGQUERY_TABLE: Optional[str] = None  # project.dataset.table
    GCP_BIGQUERY_PROJECT: Optional[str] = None

    # Caching
    DIRECTORY_CACHE_TTL_SECONDS: int = 3600
    REPORTS_PER_MONTH: int = 32

    SOURCE_QUERY_TIMEOUT_SECONDS: int = 300

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True
    )

    @model_validator(mode="after")
    def validate_billing_config(self) -> "Settings":
        """Reject settings that cannot produce a working billing source."""
        if self.GCP_BIGQUERY_TABLE and not BIGQUERY_TABLE_PATTERN.match(self.GCP_BIGQUERY_TABLE):
            raise ValueError(
                f"GCP_BIGQUERY_TABLE must be of the form 'project.dataset.table', got '{self.GCP_BIGQUERY_TABLE}'"
            )

        if self.AWS_ROOT_ACCOUNT_ID and not self.AWS_ROOT_ACCOUNT_ID.isdigit():
            raise ValueError(f"AWS_ROOT_ACCOUNT_ID must be numeric, got '{self.AWS_ROOT_ACCOUNT_ID}'")

        if self.DIRECTORY_CACHE_TTL_SECONDS < 0:
            raise ValueError("DIRECTORY_CACHE_TTL_SECONDS must not be negative.")

        if not 1 <= self.REPORTS_PER_MONTH <= 99:
            raise ValueError("REPORTS_PER_MONTH must be between 1 and 99.")

        return self

    @property
    def aws_account_map(self) -> Dict[str, str]:
        return parse_account_map(self.AWS_ACCOUNT_MAP)

    @property
    def is_production(self) -> bool:
        return not self.DEBUG


@lru_cache
def get_settings():
    """Returns a singleton instance of the application settings."""
    return Settings()
