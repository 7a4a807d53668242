"""
Application settings for the LTCF bridge.

- Defaults are intended for development use.
- For testing, override via pyproject.toml [tool.pytest.ini_options].
- For production, set environment variables to override fields.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """LTCF bridge configuration."""

    # CIHI IRRS submission API
    irrs_submission_url: str = Field(
        default="https://localhost:8443/irrs/fhir",
        description="URL of the CIHI IRRS transaction endpoint",
    )
    irrs_timeout: float = Field(
        default=120.0,
        description="Timeout for IRRS submission requests in seconds",
    )

    # OAuth2 client-credentials with a signed JWT assertion
    auth_token_url: str = Field(
        default="https://localhost:8443/oauth2/token",
        description="Token endpoint used to exchange the JWT assertion",
    )
    auth_private_key_path: str | None = Field(
        default=None,
        description="Path to the PEM private key used to sign assertions",
    )
    auth_system_identifier: str = Field(
        default="",
        description="Vendor system identifier issued by CIHI",
    )
    auth_audience: str = Field(
        default="",
        description="Audience claim for the JWT assertion",
    )
    auth_scope: str = Field(
        default="irrs/submission",
        description="Scope requested for the access token",
    )
    auth_assertion_lifetime: int = Field(
        default=300,
        description="Lifetime of the signed assertion in seconds",
    )

    # Element catalog
    element_mapping_path: str | None = Field(
        default=None,
        description="Path to the element mapping workbook (.xlsx) or CSV export",
    )

    # Queue processing
    transmit_root: str = Field(
        default="./transmit",
        description="Root folder holding Queued, RunLogs and fiscal/quarter folders",
    )
    queue_pattern: str = Field(
        default="*.dat",
        description="Glob pattern for queued flat files",
    )

    # Outcome classification
    empty_response_passes: bool = Field(
        default=True,
        description="Classify an empty submission response as PASS",
    )

    log_level: str = Field(default="INFO", description="Root log level for the CLI")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def model_post_init(self, __context: object) -> None:
        """Normalize derived settings after model construction."""
        if self.element_mapping_path == "":
            self.element_mapping_path = None


settings = Settings()
