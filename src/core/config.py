"""Configuration models and YAML loader for the pipeline extractor."""

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator


class SessionConfig(BaseModel):
    """Where the authenticated session lives between runs."""

    path: str = ".ashby-session.json"
    auth_cookie_names: list[str] = Field(
        default_factory=lambda: ["ashby_session_token", "authenticated"],
    )

    @field_validator("auth_cookie_names")
    @classmethod
    def at_least_one_cookie(cls, v: list[str]) -> list[str]:
        names = [n.strip() for n in v if n.strip()]
        if not names:
            msg = "at least one auth cookie name must be configured"
            raise ValueError(msg)
        return names


class HttpConfig(BaseModel):
    """Transport, timeout and retry policy for every remote call."""

    base_url: str = "https://app.ashbyhq.com"
    timeout_s: float = Field(default=30.0, gt=0.0)
    max_retries: int = Field(default=2, ge=0, le=10)
    backoff_base_s: float = Field(default=0.5, ge=0.0)
    backoff_max_s: float = Field(default=8.0, ge=0.0)
    switch_settle_s: float = Field(default=0.5, ge=0.0)

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        if not v.strip():
            msg = "base_url must not be empty"
            raise ValueError(msg)
        return v.strip().rstrip("/")


class ExtractionConfig(BaseModel):
    """Tenant iteration and listing options."""

    max_tenants: int | None = Field(default=None, ge=1)
    tenant_filter: str | None = None
    tenant_delay_s: float = Field(default=0.5, ge=0.0)
    page_size: int = Field(default=100, ge=1, le=1000)
    max_pages: int = Field(default=500, ge=1)
    # Product decision left open: creation time vs. status due date.
    days_in_stage_source: Literal["created_at", "status_due_at"] = "created_at"

    @field_validator("tenant_filter")
    @classmethod
    def blank_filter_is_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()


class SchedulingConfig(BaseModel):
    """Keyword + day-threshold policy for the needs-scheduling flag."""

    stage_keywords: list[str] = Field(
        default_factory=lambda: ["interview", "onsite", "technical", "screening", "call"],
    )
    threshold_days: int = Field(default=7, ge=0)


class EnrichmentConfig(BaseModel):
    """Per-record detail fetching."""

    enabled: bool = True
    max_concurrent: int = Field(default=5, ge=1, le=50)
    only_if_flagged: bool = False


class CatalogConfig(BaseModel):
    """Source of captured query documents."""

    recon_log_path: str = "ashby-recon-log.json"


class OutputConfig(BaseModel):
    """Export destinations. None means a timestamped default under output/."""

    json_path: str | None = None
    csv_path: str | None = None


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    session: SessionConfig = Field(default_factory=SessionConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    scheduling: SchedulingConfig = Field(default_factory=SchedulingConfig)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
