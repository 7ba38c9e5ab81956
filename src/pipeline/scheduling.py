"""Needs-scheduling policy.

A candidate needs scheduling when its current stage type looks like an
interview step (keyword substring, case-insensitive) AND it has been sitting
there for at least ``threshold_days``.
"""

from src.core.config import SchedulingConfig
from src.core.schemas import CandidateRecord


class SchedulingPolicy:
    """Predicate over (stage_type, days_in_stage).

    Usage::

        policy = SchedulingPolicy.from_config(settings.scheduling)
        policy.needs_scheduling("Technical Interview", 9)   # True
        policy(candidate_record)                            # same, on a record
    """

    def __init__(self, stage_keywords: list[str], threshold_days: int = 7) -> None:
        self._keywords = [kw.lower().strip() for kw in stage_keywords if kw.strip()]
        self._threshold_days = threshold_days

    @classmethod
    def from_config(cls, config: SchedulingConfig) -> "SchedulingPolicy":
        return cls(config.stage_keywords, config.threshold_days)

    @property
    def threshold_days(self) -> int:
        return self._threshold_days

    def is_interview_stage(self, stage_type: str | None) -> bool:
        if not stage_type:
            return False
        lowered = stage_type.lower()
        return any(kw in lowered for kw in self._keywords)

    def needs_scheduling(self, stage_type: str | None, days_in_stage: int) -> bool:
        return self.is_interview_stage(stage_type) and days_in_stage >= self._threshold_days

    def __call__(self, record: CandidateRecord) -> bool:
        return self.needs_scheduling(record.stage_type, record.days_in_stage)
