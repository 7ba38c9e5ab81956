"""Map raw listing rows to CompanyRecord / JobRecord / CandidateRecord."""

import logging
from datetime import datetime, timezone
from typing import Any

from src.core.schemas import (
    CandidateRecord,
    CompanyRecord,
    JobRecord,
    TenantDescriptor,
    TenantExtraction,
)
from src.pipeline.scheduling import SchedulingPolicy

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 24 * 60 * 60


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed). Naive values are UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable timestamp: %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def compute_days_in_stage(since: str | None, now: datetime) -> int:
    """Whole days between ``since`` and ``now``, floored, never negative."""
    start = parse_timestamp(since)
    if start is None:
        return 0
    elapsed = (now - start).total_seconds()
    return max(0, int(elapsed // _SECONDS_PER_DAY))


def activity_timestamp(app: dict[str, Any], source: str) -> str | None:
    """Timestamp the days-in-stage clock starts from.

    ``created_at`` uses the application's creation time. ``status_due_at``
    uses the status due date and falls back to creation time.
    """
    created = app.get("createdAt")
    if source == "status_due_at":
        status = app.get("applicationStatus") or {}
        return status.get("dueAt") or created
    return created


def company_for(tenant: TenantDescriptor) -> CompanyRecord:
    return CompanyRecord(tenant_id=tenant.tenant_id, id=tenant.tenant_id, name=tenant.display_name)


def normalize_jobs(
    tenant: TenantDescriptor,
    company: CompanyRecord,
    jobs_pipelines: list[dict[str, Any]],
) -> list[JobRecord]:
    jobs: list[JobRecord] = []
    seen: set[str] = set()
    for row in jobs_pipelines:
        job_id = row.get("jobId")
        if not job_id or job_id in seen:
            continue
        seen.add(job_id)
        jobs.append(JobRecord(
            tenant_id=tenant.tenant_id,
            id=str(job_id),
            title=row.get("jobTitle") or "",
            company_id=company.id,
            location=row.get("jobLocationName"),
            requisition_id=row.get("customRequisitionId"),
            application_count=row.get("applicationCount"),
        ))
    return jobs


def normalize_application(
    tenant: TenantDescriptor,
    company: CompanyRecord,
    app: dict[str, Any],
    policy: SchedulingPolicy,
    *,
    days_source: str = "created_at",
    now: datetime | None = None,
) -> CandidateRecord:
    """Flatten one active-application row into a CandidateRecord."""
    now = now or datetime.now(timezone.utc)
    job = app.get("job") or {}
    candidate = app.get("candidate") or {}
    status = app.get("applicationStatus") or {}
    stage = app.get("currentInterviewStage") or {}

    stage_type = stage.get("stageType") or None
    last_activity_at = activity_timestamp(app, days_source)
    days_in_stage = compute_days_in_stage(last_activity_at, now)
    links = _social_links(candidate.get("socialLinks"))

    return CandidateRecord(
        tenant_id=tenant.tenant_id,
        tenant_name=tenant.name,
        id=str(candidate.get("id") or ""),
        application_id=str(app.get("id") or ""),
        name=candidate.get("name") or "",
        job_id=str(job.get("id") or ""),
        company_id=company.id,
        current_stage=status.get("description") or stage_type or "Unknown",
        pipeline_stage=stage.get("title") or None,
        stage_type=stage_type,
        decision_status=status.get("description") or None,
        status_priority=status.get("priority"),
        status_due_at=status.get("dueAt") or None,
        created_at=app.get("createdAt"),
        last_activity_at=last_activity_at,
        days_in_stage=days_in_stage,
        needs_scheduling=policy.needs_scheduling(stage_type, days_in_stage),
        credited_to=_credited_to(app.get("creditedToUser")),
        source=(app.get("source") or {}).get("title") or None,
        current_company=candidate.get("company") or None,
        linkedin_url=links.get("linkedin"),
        github_url=links.get("github"),
        website_url=links.get("website"),
    )


def normalize_tenant(
    tenant: TenantDescriptor,
    jobs_pipelines: list[dict[str, Any]],
    applications: list[dict[str, Any]],
    policy: SchedulingPolicy,
    *,
    days_source: str = "created_at",
    now: datetime | None = None,
) -> TenantExtraction:
    """Build the per-tenant extraction from the two base listings."""
    now = now or datetime.now(timezone.utc)
    company = company_for(tenant)
    jobs = normalize_jobs(tenant, company, jobs_pipelines)
    known_jobs = {j.id for j in jobs}

    candidates: list[CandidateRecord] = []
    for app in applications:
        if not isinstance(app, dict) or not app.get("id"):
            logger.debug("Skipping application row without id")
            continue
        record = normalize_application(
            tenant, company, app, policy, days_source=days_source, now=now,
        )
        candidates.append(record)
        job = app.get("job") or {}
        if record.job_id and record.job_id not in known_jobs:
            known_jobs.add(record.job_id)
            jobs.append(JobRecord(
                tenant_id=tenant.tenant_id,
                id=record.job_id,
                title=job.get("title") or "",
                company_id=company.id,
            ))

    return TenantExtraction(tenant=tenant, company=company, jobs=jobs, candidates=candidates)


def _credited_to(user: Any) -> str | None:
    if not isinstance(user, dict):
        return None
    full_name = f"{user.get('firstName') or ''} {user.get('lastName') or ''}".strip()
    return full_name or user.get("email") or None


def _social_links(links: Any) -> dict[str, str]:
    result: dict[str, str] = {}
    if not isinstance(links, list):
        return result
    for link in links:
        if not isinstance(link, dict) or not link.get("url"):
            continue
        kind = str(link.get("type") or "").lower()
        if "linkedin" in kind:
            result.setdefault("linkedin", link["url"])
        elif "github" in kind:
            result.setdefault("github", link["url"])
        elif kind:
            result.setdefault("website", link["url"])
    return result
