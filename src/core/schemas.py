"""Core data models for the pipeline extractor.

Records are keyed by (tenant_id, remote id): remote ids are only unique
inside one tenant, so nothing here deduplicates across tenants.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

UNKNOWN_NAME = "unknown"


class TenantDescriptor(BaseModel):
    """One organization the identity can access. Immutable for the run."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    name: str | None = None
    user_id: str | None = None
    # True when derived from the implicitly bound tenant, not from discovery.
    synthetic: bool = False

    @property
    def display_name(self) -> str:
        return self.name or self.tenant_id

    @property
    def known_name(self) -> str:
        return self.name or UNKNOWN_NAME


class QueryOperation(BaseModel):
    """A named GraphQL document plus the variables it declares."""

    model_config = ConfigDict(frozen=True)

    name: str
    document: str
    variables: dict[str, Any] = Field(default_factory=dict)
    source: str = "builtin"

    def build_variables(self, overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """Declared defaults overlaid with call-site values."""
        merged = dict(self.variables)
        if overrides:
            merged.update(overrides)
        return merged


class PageCursor(BaseModel):
    """Continuation marker for one paginated call sequence."""

    model_config = ConfigDict(frozen=True)

    token: str | None = None
    more: bool = True


# ---------------------------------------------------------------------------
# Extracted records
# ---------------------------------------------------------------------------


class CompanyRecord(BaseModel):
    """The tenant organization as an exported company."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    id: str
    name: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.tenant_id, self.id)


class JobRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    tenant_id: str
    id: str
    title: str
    company_id: str
    location: str | None = None
    requisition_id: str | None = None
    application_count: int | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.tenant_id, self.id)


class Interviewer(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    email: str | None = None
    overall_recommendation: str | None = None
    is_feedback_submitted: bool = False


class InterviewEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    interview_title: str
    start_time: str | None = None
    end_time: str | None = None
    interviewers: list[Interviewer] = Field(default_factory=list)


class FeedbackEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    interview_title: str
    interviewer: str
    interviewer_email: str | None = None
    submitted_at: str | None = None
    overall_recommendation: str | None = None
    feedback_text: str | None = None
    is_feedback_submitted: bool = True


class Enrichment(BaseModel):
    """Detail block filled in by the enrichment pipeline only."""

    model_config = ConfigDict(frozen=True)

    interview_events: list[InterviewEvent] = Field(default_factory=list)
    feedback: list[FeedbackEntry] = Field(default_factory=list)
    latest_recommendation: str | None = None
    latest_feedback_author: str | None = None
    latest_feedback_date: str | None = None
    current_stage_index: int | None = None
    total_stages: int | None = None

    @property
    def feedback_count(self) -> int:
        return len(self.feedback)

    @property
    def stage_progress(self) -> str | None:
        if self.current_stage_index is None or self.total_stages is None:
            return None
        return f"{self.current_stage_index}/{self.total_stages}"


class CandidateRecord(BaseModel):
    """One active application, normalized.

    Frozen. Enrichment produces a copy via ``model_copy(update=...)``.
    """

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    tenant_name: str | None = None
    id: str
    application_id: str
    name: str
    job_id: str
    company_id: str
    current_stage: str = "Unknown"
    pipeline_stage: str | None = None
    stage_type: str | None = None
    decision_status: str | None = None
    status_priority: int | None = None
    status_due_at: str | None = None
    created_at: str | None = None
    last_activity_at: str | None = None
    days_in_stage: int = Field(default=0, ge=0)
    needs_scheduling: bool = False
    credited_to: str | None = None
    source: str | None = None
    current_company: str | None = None
    linkedin_url: str | None = None
    github_url: str | None = None
    website_url: str | None = None
    enrichment: Enrichment | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.tenant_id, self.application_id)


# ---------------------------------------------------------------------------
# Run outcome
# ---------------------------------------------------------------------------


class TenantFailure(BaseModel):
    """A tenant that produced no records, and why."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    tenant_name: str | None = None
    reason: str
    detail: str = ""


class TenantExtraction(BaseModel):
    """Records from one successfully processed tenant."""

    tenant: TenantDescriptor
    company: CompanyRecord
    jobs: list[JobRecord] = Field(default_factory=list)
    candidates: list[CandidateRecord] = Field(default_factory=list)


class RunStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    COMPLETE_FAILURE = "complete_failure"


class ExtractionResult(BaseModel):
    """Union of all successful tenants plus the failure report."""

    companies: list[CompanyRecord] = Field(default_factory=list)
    jobs: list[JobRecord] = Field(default_factory=list)
    candidates: list[CandidateRecord] = Field(default_factory=list)
    failures: list[TenantFailure] = Field(default_factory=list)
    succeeded_tenants: list[str] = Field(default_factory=list)
    skipped_tenants: list[str] = Field(default_factory=list)
    aborted_reason: str | None = None
    cancelled: bool = False
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: datetime | None = None

    def add(self, extraction: TenantExtraction) -> None:
        self.companies.append(extraction.company)
        self.jobs.extend(extraction.jobs)
        self.candidates.extend(extraction.candidates)
        self.succeeded_tenants.append(extraction.tenant.tenant_id)

    @property
    def status(self) -> RunStatus:
        if not self.succeeded_tenants:
            return RunStatus.COMPLETE_FAILURE
        if self.failures or self.skipped_tenants or self.aborted_reason or self.cancelled:
            return RunStatus.PARTIAL
        return RunStatus.COMPLETE

    def failure_report(self) -> list[dict[str, str]]:
        return [{"tenant_id": f.tenant_id, "reason": f.reason} for f in self.failures]
