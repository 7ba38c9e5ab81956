"""Parse the application-detail response into an Enrichment block."""

import logging
from datetime import datetime, timezone
from typing import Any

from src.core.schemas import Enrichment, FeedbackEntry, InterviewEvent, Interviewer
from src.pipeline.normalize import parse_timestamp

logger = logging.getLogger(__name__)

# Form field names that usually hold the free-text verdict.
FEEDBACK_FIELD_NAMES = (
    "overallfeedback",
    "overall_feedback",
    "feedback",
    "comments",
    "notes",
    "assessment",
    "evaluation",
)

# Stage types shown in the main pipeline view; sourcing and terminal stages excluded.
PIPELINE_STAGE_TYPES = ("Active", "Offer")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def extract_feedback_text(form: Any) -> str | None:
    """First non-empty text answer whose field name looks like feedback.

    Checks top-level ``fieldEntries`` first, then each section's entries.
    """
    if not isinstance(form, dict):
        return None
    groups: list[Any] = [form.get("fieldEntries")]
    for section in form.get("sections") or []:
        if isinstance(section, dict):
            groups.append(section.get("fieldEntries"))

    for entries in groups:
        for entry in entries or []:
            if not isinstance(entry, dict):
                continue
            field = entry.get("field")
            if not isinstance(field, str):
                continue
            lowered = field.lower()
            if not any(name in lowered for name in FEEDBACK_FIELD_NAMES):
                continue
            value = (entry.get("fieldValue") or {}).get("value")
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def parse_application_detail(application: dict[str, Any]) -> Enrichment:
    """Interview events, submitted feedback, latest verdict, stage progress."""
    events: list[InterviewEvent] = []
    feedback: list[FeedbackEntry] = []

    for raw_event in application.get("interviewEvents") or []:
        if not isinstance(raw_event, dict):
            continue
        title = (raw_event.get("interview") or {}).get("title") or ""
        interviewers: list[Interviewer] = []
        for raw in raw_event.get("interviewerEvents") or []:
            person = raw.get("interviewer") or {}
            scorecard = raw.get("scorecardSubmission") or {}
            name = _full_name(person)
            submitted = bool(raw.get("isFeedbackSubmitted"))
            recommendation = _as_text(scorecard.get("overallRecommendation"))
            interviewers.append(Interviewer(
                name=name,
                email=person.get("email"),
                overall_recommendation=recommendation,
                is_feedback_submitted=submitted,
            ))
            if submitted:
                feedback.append(FeedbackEntry(
                    interview_title=title,
                    interviewer=name,
                    interviewer_email=person.get("email"),
                    submitted_at=scorecard.get("submittedAt") or raw_event.get("endTime"),
                    overall_recommendation=recommendation,
                    feedback_text=extract_feedback_text(scorecard.get("submittedFormRender")),
                ))
        events.append(InterviewEvent(
            id=str(raw_event.get("id") or ""),
            interview_title=title,
            start_time=raw_event.get("startTime"),
            end_time=raw_event.get("endTime"),
            interviewers=interviewers,
        ))

    dated = [f for f in feedback if parse_timestamp(f.submitted_at) is not None]
    latest = max(dated, key=lambda f: parse_timestamp(f.submitted_at) or _EPOCH, default=None)
    index, total = stage_position(application)

    return Enrichment(
        interview_events=events,
        feedback=feedback,
        latest_recommendation=latest.overall_recommendation if latest else None,
        latest_feedback_author=latest.interviewer if latest else None,
        latest_feedback_date=latest.submitted_at if latest else None,
        current_stage_index=index,
        total_stages=total,
    )


def stage_position(application: dict[str, Any]) -> tuple[int | None, int | None]:
    """1-based index of the current stage among pipeline stages, and their count.

    Uses the application's own interview plan, else the job's default plan.
    """
    current = application.get("currentInterviewStage") or {}
    plan = application.get("interviewPlan")
    if not plan:
        job = application.get("job") or {}
        for option in job.get("interviewPlansWithActivities") or []:
            if option.get("isDefault") and (option.get("interviewPlan") or {}).get("interviewStages"):
                plan = option["interviewPlan"]
                break
    if not plan or not current.get("id"):
        return None, None

    stages = [
        s for s in plan.get("interviewStages") or []
        if (s.get("stageType") or "") in PIPELINE_STAGE_TYPES
    ]
    total = len(stages)
    for position, stage in enumerate(stages, start=1):
        if stage.get("id") == current["id"]:
            return position, total
    return None, total


def _full_name(person: dict[str, Any]) -> str:
    name = f"{person.get('firstName') or ''} {person.get('lastName') or ''}".strip()
    return name or person.get("email") or "Unknown"


def _as_text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)
