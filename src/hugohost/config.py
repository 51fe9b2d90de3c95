"""Pipeline configuration using pydantic-settings.

This module defines the PipelineSettings class that reads configuration
from environment variables with the HUGOHOST_ prefix. Every field has a
default, so the service starts with in-memory stores and no assistant
when nothing is configured. Per-owner credentials are not configuration:
they live in the credential store.
"""

from typing import Any, Dict, List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hugohost.events.emitter import EventSinkType


class PipelineSettings(BaseSettings):
    """Deployment pipeline configuration from environment variables.

    All environment variables are prefixed with HUGOHOST_ (e.g.,
    HUGOHOST_DATABASE_URL).
    """

    model_config = SettingsConfigDict(
        env_prefix="HUGOHOST_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # GitHub Configuration
    # -------------------------------------------------------------------------
    # Base URL for GitHub API (supports GitHub Enterprise)
    github_base_url: str = "https://api.github.com"

    # Transport-level retries per request; the pipeline itself never retries
    github_max_retries: int = 0

    # -------------------------------------------------------------------------
    # Hosting Configuration
    # -------------------------------------------------------------------------
    cloudflare_base_url: str = "https://api.cloudflare.com/client/v4"

    # Suffix of project URLs: https://<project>.<pages_domain>
    pages_domain: str = "pages.dev"

    # HUGO_VERSION pinned in the production build environment
    hugo_version: str = "0.121.1"

    # Per-request timeout for GitHub and Cloudflare calls, in seconds
    http_timeout: float = 30.0

    # -------------------------------------------------------------------------
    # Database Configuration
    # -------------------------------------------------------------------------
    # PostgreSQL connection string; in-memory stores are used when unset
    database_url: Optional[str] = None

    # -------------------------------------------------------------------------
    # LLM Configuration
    # -------------------------------------------------------------------------
    # OpenAI-compatible endpoint for the config assistant; disabled when unset
    llm_url: Optional[str] = None

    llm_model: str = "gpt-4o-mini"

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------
    # Comma-separated event sinks: logging, metrics
    event_sinks: str = "logging,metrics"

    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"

    port: int = 8080

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("github_base_url", "cloudflare_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Validate that API base URLs are http(s) URLs."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("API base URLs must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("llm_url")
    @classmethod
    def validate_llm_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate that LLM URL, when set, is a valid URL."""
        if v is None or not v.strip():
            return None
        if not v.startswith(("http://", "https://")):
            raise ValueError("llm_url must start with http:// or https://")
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate that database URL, when set, is a PostgreSQL URL."""
        if v is None or not v.strip():
            return None
        if not v.startswith(("postgresql://", "postgres://")):
            raise ValueError(
                "database_url must start with postgresql:// or postgres://"
            )
        return v

    @field_validator("github_max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("github_max_retries cannot be negative")
        return v

    @field_validator("http_timeout")
    @classmethod
    def validate_http_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("http_timeout must be positive")
        return v

    @field_validator("event_sinks")
    @classmethod
    def validate_event_sinks(cls, v: str) -> str:
        """Validate that every listed sink is known."""
        for name in (part.strip().lower() for part in v.split(",")):
            if name and name not in {sink.value for sink in EventSinkType}:
                raise ValueError(f"Unknown event sink: {name}")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @property
    def event_sink_types(self) -> List[EventSinkType]:
        return [
            EventSinkType(part.strip().lower())
            for part in self.event_sinks.split(",")
            if part.strip()
        ]

    def redacted(self) -> Dict[str, Any]:
        """Settings safe to log: the database URL password is masked."""
        values = self.model_dump()
        url = values.get("database_url")
        if url and "@" in url:
            scheme, _, rest = url.partition("://")
            credentials, _, host = rest.rpartition("@")
            user = credentials.split(":", 1)[0]
            values["database_url"] = f"{scheme}://{user}:****@{host}"
        return values


def get_settings() -> PipelineSettings:
    """Create and return PipelineSettings instance.

    Raises:
        pydantic.ValidationError: If a field is invalid.
    """
    return PipelineSettings()
