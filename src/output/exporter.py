"""JSON and CSV export of an extraction result."""

import csv
import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from src.core.schemas import CandidateRecord, ExtractionResult, InterviewEvent
from src.pipeline.normalize import parse_timestamp

logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    "company_name",
    "job_title",
    "job_id",
    "candidate_name",
    "candidate_id",
    "pipeline_stage",
    "decision_status",
    "stage_type",
    "current_stage_index",
    "total_stages",
    "stage_progress",
    "last_activity_at",
    "days_in_stage",
    "needs_scheduling",
    "credited_to",
    "source",
    "feedback_count",
    "latest_recommendation",
    "latest_feedback_author",
    "latest_feedback_date",
    "current_stage_interviews",
    "current_stage_avg_score",
    "current_stage_date",
    "interview_history_summary",
]

# Interviews this close to the most recent one count as the current stage.
CURRENT_STAGE_WINDOW = timedelta(days=1)


def default_output_path(suffix: str, now: datetime | None = None) -> Path:
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    return Path("output") / f"ashby-pipeline-{stamp}.{suffix}"


def result_to_dict(result: ExtractionResult) -> dict[str, Any]:
    """Serializable view: records, failure report, run status."""
    return {
        "status": result.status.value,
        "started_at": result.started_at.isoformat(),
        "finished_at": result.finished_at.isoformat() if result.finished_at else None,
        "companies": [c.model_dump() for c in result.companies],
        "jobs": [j.model_dump() for j in result.jobs],
        "candidates": [c.model_dump() for c in result.candidates],
        "failures": result.failure_report(),
        "skipped_tenants": list(result.skipped_tenants),
        "aborted_reason": result.aborted_reason,
        "cancelled": result.cancelled,
    }


def export_json(result: ExtractionResult, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(result_to_dict(result), indent=2))
    logger.info("Wrote JSON to %s", path)
    return path


def export_csv(result: ExtractionResult, path: str | Path) -> Path:
    """One row per candidate, with interview summaries when enriched."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    companies = {c.key: c for c in result.companies}
    jobs = {j.key: j for j in result.jobs}

    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        for candidate in result.candidates:
            company = companies.get((candidate.tenant_id, candidate.company_id))
            job = jobs.get((candidate.tenant_id, candidate.job_id))
            writer.writerow(candidate_row(
                candidate,
                company_name=candidate.tenant_name or (company.name if company else ""),
                job_title=job.title if job else "",
            ))
    logger.info("Wrote CSV to %s (%d rows)", path, len(result.candidates))
    return path


def candidate_row(candidate: CandidateRecord, *, company_name: str, job_title: str) -> dict[str, str]:
    enrichment = candidate.enrichment
    row = {
        "company_name": company_name,
        "job_title": job_title,
        "job_id": candidate.job_id,
        "candidate_name": candidate.name,
        "candidate_id": candidate.id,
        "pipeline_stage": candidate.pipeline_stage or "",
        "decision_status": candidate.decision_status or "",
        "stage_type": candidate.stage_type or "",
        "current_stage_index": "",
        "total_stages": "",
        "stage_progress": "",
        "last_activity_at": candidate.last_activity_at or "",
        "days_in_stage": str(candidate.days_in_stage),
        "needs_scheduling": str(candidate.needs_scheduling).lower(),
        "credited_to": candidate.credited_to or "",
        "source": candidate.source or "",
        "feedback_count": "",
        "latest_recommendation": "",
        "latest_feedback_author": "",
        "latest_feedback_date": "",
        "current_stage_interviews": "",
        "current_stage_avg_score": "",
        "current_stage_date": "",
        "interview_history_summary": "",
    }
    if enrichment is None:
        return row

    row.update({
        "current_stage_index": _text(enrichment.current_stage_index),
        "total_stages": _text(enrichment.total_stages),
        "stage_progress": enrichment.stage_progress or "",
        "feedback_count": str(enrichment.feedback_count),
        "latest_recommendation": enrichment.latest_recommendation or "",
        "latest_feedback_author": enrichment.latest_feedback_author or "",
        "latest_feedback_date": enrichment.latest_feedback_date or "",
    })
    row.update(interview_summary(candidate))
    return row


def interview_summary(candidate: CandidateRecord) -> dict[str, str]:
    """Split interviews into the current stage and earlier history.

    Events within one day of the most recent event form the current stage.
    Events without a parseable start time are ignored.
    """
    summary = {
        "current_stage_interviews": "",
        "current_stage_avg_score": "",
        "current_stage_date": "",
        "interview_history_summary": "",
    }
    if candidate.enrichment is None:
        return summary

    dated: list[tuple[datetime, InterviewEvent]] = []
    for event in candidate.enrichment.interview_events:
        start = parse_timestamp(event.start_time)
        if start is not None:
            dated.append((start, event))
    if not dated:
        return summary
    dated.sort(key=lambda pair: pair[0], reverse=True)

    most_recent = dated[0][0]
    current = [(s, e) for s, e in dated if most_recent - s <= CURRENT_STAGE_WINDOW]
    previous = [(s, e) for s, e in dated if most_recent - s > CURRENT_STAGE_WINDOW]

    feedback_text = {
        (f.interview_title, f.interviewer): f.feedback_text
        for f in candidate.enrichment.feedback
        if f.feedback_text
    }
    lines: list[str] = []
    for start, event in current:
        for person in event.interviewers:
            score = (
                f"Score: {person.overall_recommendation}"
                if person.overall_recommendation else "No score yet"
            )
            line = f"• {event.interview_title} ({start:%m/%d}) - {person.name} - {score}"
            text = feedback_text.get((event.interview_title, person.name))
            if text:
                line += f" ({text})"
            lines.append(line)

    summary["current_stage_interviews"] = "\n".join(lines)
    summary["current_stage_avg_score"] = _average_score([e for _, e in current]) or ""
    summary["current_stage_date"] = current[0][0].date().isoformat()
    summary["interview_history_summary"] = " | ".join(
        f"{start.date().isoformat()}: {event.interview_title} ({_average_score([event]) or 'N/A'})"
        for start, event in previous
    )
    return summary


def _average_score(events: list[InterviewEvent]) -> str | None:
    """Mean of numeric recommendations, one decimal. None when there are none."""
    scores: list[float] = []
    for event in events:
        for person in event.interviewers:
            try:
                scores.append(float(person.overall_recommendation or ""))
            except ValueError:
                continue
    if not scores:
        return None
    return f"{sum(scores) / len(scores):.1f}"


def _text(value: int | None) -> str:
    return "" if value is None else str(value)
