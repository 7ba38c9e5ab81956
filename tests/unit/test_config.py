"""Tests for configuration models and YAML loading."""

from pathlib import Path
from textwrap import dedent

import pytest
from pydantic import ValidationError

from src.core.config import (
    EnrichmentConfig,
    ExtractionConfig,
    HttpConfig,
    SchedulingConfig,
    SessionConfig,
    Settings,
)


class TestSessionConfig:
    def test_defaults(self) -> None:
        c = SessionConfig()
        assert c.path == ".ashby-session.json"
        assert c.auth_cookie_names == ["ashby_session_token", "authenticated"]

    def test_blank_cookie_names_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SessionConfig(auth_cookie_names=["", "  "])

    def test_cookie_names_stripped(self) -> None:
        c = SessionConfig(auth_cookie_names=[" sid ", ""])
        assert c.auth_cookie_names == ["sid"]


class TestHttpConfig:
    def test_defaults(self) -> None:
        c = HttpConfig()
        assert c.base_url == "https://app.ashbyhq.com"
        assert c.max_retries == 2
        assert c.timeout_s == 30.0

    def test_trailing_slash_stripped(self) -> None:
        assert HttpConfig(base_url="https://example.test/").base_url == "https://example.test"

    def test_empty_base_url_rejected(self) -> None:
        with pytest.raises(ValidationError):
            HttpConfig(base_url="  ")

    def test_retry_bounds(self) -> None:
        with pytest.raises(ValidationError):
            HttpConfig(max_retries=-1)
        with pytest.raises(ValidationError):
            HttpConfig(max_retries=11)

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            HttpConfig(timeout_s=0)


class TestExtractionConfig:
    def test_defaults(self) -> None:
        c = ExtractionConfig()
        assert c.max_tenants is None
        assert c.tenant_filter is None
        assert c.page_size == 100
        assert c.days_in_stage_source == "created_at"

    def test_blank_filter_is_none(self) -> None:
        assert ExtractionConfig(tenant_filter="   ").tenant_filter is None

    def test_filter_stripped(self) -> None:
        assert ExtractionConfig(tenant_filter=" acme ").tenant_filter == "acme"

    def test_max_tenants_at_least_one(self) -> None:
        with pytest.raises(ValidationError):
            ExtractionConfig(max_tenants=0)

    def test_page_size_bounds(self) -> None:
        with pytest.raises(ValidationError):
            ExtractionConfig(page_size=0)
        with pytest.raises(ValidationError):
            ExtractionConfig(page_size=1001)

    def test_unknown_days_source_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ExtractionConfig(days_in_stage_source="updated_at")


class TestSchedulingAndEnrichment:
    def test_scheduling_defaults(self) -> None:
        c = SchedulingConfig()
        assert c.threshold_days == 7
        assert "interview" in c.stage_keywords

    def test_enrichment_concurrency_bounds(self) -> None:
        with pytest.raises(ValidationError):
            EnrichmentConfig(max_concurrent=0)
        assert EnrichmentConfig(max_concurrent=1).max_concurrent == 1


class TestSettingsFromYaml:
    def test_full_config(self, tmp_path: Path) -> None:
        cfg = tmp_path / "settings.yaml"
        cfg.write_text(dedent("""\
            session:
              path: /tmp/s.json
            http:
              base_url: https://ashby.example/
              max_retries: 0
            extraction:
              max_tenants: 3
              tenant_filter: acme
              days_in_stage_source: status_due_at
            scheduling:
              threshold_days: 10
            enrichment:
              enabled: false
              max_concurrent: 2
        """))
        s = Settings.from_yaml(cfg)
        assert s.session.path == "/tmp/s.json"
        assert s.http.base_url == "https://ashby.example"
        assert s.http.max_retries == 0
        assert s.extraction.max_tenants == 3
        assert s.extraction.tenant_filter == "acme"
        assert s.extraction.days_in_stage_source == "status_due_at"
        assert s.scheduling.threshold_days == 10
        assert s.enrichment.enabled is False
        assert s.enrichment.max_concurrent == 2

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        cfg = tmp_path / "settings.yaml"
        cfg.write_text("")
        s = Settings.from_yaml(cfg)
        assert s == Settings()

    def test_missing_file(self) -> None:
        with pytest.raises(FileNotFoundError):
            Settings.from_yaml("/nonexistent/settings.yaml")

    def test_invalid_value(self, tmp_path: Path) -> None:
        cfg = tmp_path / "settings.yaml"
        cfg.write_text("enrichment:\n  max_concurrent: 0\n")
        with pytest.raises(ValidationError):
            Settings.from_yaml(cfg)

    def test_example_config_loads(self) -> None:
        example = Path(__file__).resolve().parents[2] / "config" / "settings.example.yaml"
        s = Settings.from_yaml(example)
        assert s.http.base_url == "https://app.ashbyhq.com"
        assert s.enrichment.max_concurrent == 5
