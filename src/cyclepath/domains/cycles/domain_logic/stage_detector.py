"""Stage detector — which treatment stage is the patient in today?

Detection walks three tiers and stops at the first one that produces a
stage:

1. current milestone   — the latest active milestone resolves to a stage
2. fallback milestone  — a recently completed milestone resolves to a stage
3. day based           — a reference row's expected day range covers today

Every tier reads only its inputs; nothing is persisted, so identical inputs
always give the identical result. No match at all is a valid outcome
(``None``), rendered by callers as "pending stage information".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Iterable

from cyclepath.core.reference.models import StageReferenceRow
from cyclepath.core.reference.stage_table import StageReferenceTable, priority_key
from cyclepath.core.storage.models import Cycle, PatientMilestone
from cyclepath.domains.cycles.domain_logic.progress import calculate_cycle_day

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_WINDOW_DAYS = 7

SOURCE_CURRENT_MILESTONE = "current_milestone"
SOURCE_FALLBACK_MILESTONE = "fallback_milestone"
SOURCE_DAY_BASED = "day_based"

CONFIDENCE_BY_SOURCE = {
    SOURCE_CURRENT_MILESTONE: "high",
    SOURCE_FALLBACK_MILESTONE: "medium",
    SOURCE_DAY_BASED: "low",
}

# Caveat shown next to the stage name, by confidence.
CONFIDENCE_MESSAGES = {
    "high": "",
    "medium": "Based on your most recently completed milestone.",
    "low": "Estimated from your cycle day. Update your milestones for a more accurate stage.",
}


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StageInfo:
    name: str
    description: str = ""


@dataclass(frozen=True)
class FallbackMilestone:
    title: str
    days_ago: int


@dataclass(frozen=True)
class StageDetectionResult:
    """Outcome of one detection call."""

    stage: StageInfo
    source: str  # 'current_milestone' | 'fallback_milestone' | 'day_based'
    confidence: str  # 'high' | 'medium' | 'low'
    fallback_milestone: FallbackMilestone | None = None

    @property
    def message(self) -> str:
        return CONFIDENCE_MESSAGES.get(self.confidence, "")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "stage": {"name": self.stage.name, "description": self.stage.description},
            "source": self.source,
            "confidence": self.confidence,
            "message": self.message,
        }
        if self.fallback_milestone is not None:
            data["fallback_milestone"] = {
                "title": self.fallback_milestone.title,
                "days_ago": self.fallback_milestone.days_ago,
            }
        return data


def _result(
    row: StageReferenceRow, source: str, fallback: FallbackMilestone | None = None
) -> StageDetectionResult:
    return StageDetectionResult(
        stage=StageInfo(name=row.stage_name, description=row.details),
        source=source,
        confidence=CONFIDENCE_BY_SOURCE[source],
        fallback_milestone=fallback,
    )


# ---------------------------------------------------------------------------
# Tiers
# ---------------------------------------------------------------------------

def latest_active_milestone(
    milestones: Iterable[PatientMilestone], today: date
) -> PatientMilestone | None:
    """The milestone the patient is currently on.

    The most recent ``active`` milestone by date. With nothing active, a
    milestone completed today counts as current; older completions are
    left to the fallback tier.
    """
    milestones = list(milestones)
    active = [m for m in milestones if m.status == "active"]
    if active:
        return max(active, key=lambda m: (m.date, m.position))
    completed_today = [
        m for m in milestones if m.status == "completed" and m.completion_date == today
    ]
    if completed_today:
        return max(completed_today, key=lambda m: (m.date, m.position))
    return None


def resolve_milestone(
    reference_table: StageReferenceTable, template_key: str, milestone: PatientMilestone
) -> StageReferenceRow | None:
    """Reference row for a milestone, by title first and then by type."""
    return reference_table.lookup(template_key, milestone.title) or reference_table.lookup(
        template_key, milestone.type
    )


def _recent_completions(
    milestones: Iterable[PatientMilestone], today: date, window_days: int
) -> list[PatientMilestone]:
    earliest = today - timedelta(days=window_days)
    recent = [
        m
        for m in milestones
        if m.status == "completed" and earliest <= m.completion_date <= today
    ]
    recent.sort(key=lambda m: (m.completion_date, m.date, m.position), reverse=True)
    return recent


def _day_based_row(
    reference_table: StageReferenceTable, template_key: str, cycle_day: int
) -> StageReferenceRow | None:
    candidates = reference_table.rows_for_day(template_key, cycle_day)
    if not candidates:
        return None
    best = candidates[0]
    tied = [row for row in candidates[1:] if priority_key(row) == priority_key(best)]
    if tied:
        logger.warning(
            "Ambiguous stage match for %s day %d: %s ties with %s; using %s",
            template_key,
            cycle_day,
            best.stage_id,
            ", ".join(row.stage_id for row in tied),
            best.stage_id,
        )
    return best


def detect_stage(
    template_key: str,
    patient_milestones: Iterable[PatientMilestone],
    reference_table: StageReferenceTable,
    cycle_day_today: int,
    today: date,
    *,
    fallback_window_days: int = DEFAULT_FALLBACK_WINDOW_DAYS,
) -> StageDetectionResult | None:
    """Determine the patient's current stage.

    Args:
        template_key: Treatment type of the cycle (synonyms accepted).
        patient_milestones: The cycle's milestones with their statuses.
        reference_table: Stage reference rows with milestone lookup.
        cycle_day_today: Cycle day for ``today`` (day 1 = start date).
        today: The date detection is evaluated for.
        fallback_window_days: How far back a completed milestone may lie
            and still be used by the fallback tier.

    Returns:
        The detected stage, or None when no tier matches.
    """
    milestones = list(patient_milestones)

    current = latest_active_milestone(milestones, today)
    if current is not None:
        row = resolve_milestone(reference_table, template_key, current)
        if row is not None:
            return _result(row, SOURCE_CURRENT_MILESTONE)

    for milestone in _recent_completions(milestones, today, fallback_window_days):
        row = resolve_milestone(reference_table, template_key, milestone)
        if row is not None:
            days_ago = (today - milestone.completion_date).days
            return _result(
                row,
                SOURCE_FALLBACK_MILESTONE,
                FallbackMilestone(title=milestone.title, days_ago=days_ago),
            )

    row = _day_based_row(reference_table, template_key, cycle_day_today)
    if row is not None:
        return _result(row, SOURCE_DAY_BASED)

    logger.debug("No stage detected for %s on cycle day %d", template_key, cycle_day_today)
    return None


class StageDetector:
    """Cycle-level entry point bound to a reference table and recency window.

    Usage::

        detector = StageDetector(reference_table, fallback_window_days=7)
        result = detector.detect(cycle, milestones, today=date.today())
    """

    def __init__(
        self,
        reference_table: StageReferenceTable,
        *,
        fallback_window_days: int = DEFAULT_FALLBACK_WINDOW_DAYS,
    ) -> None:
        self._reference = reference_table
        self._window = fallback_window_days

    def detect(
        self, cycle: Cycle | None, milestones: Iterable[PatientMilestone], today: date
    ) -> StageDetectionResult | None:
        """Detect the stage of an active cycle; None without one."""
        if cycle is None or not cycle.is_active:
            return None
        return detect_stage(
            cycle.type,
            milestones,
            self._reference,
            calculate_cycle_day(cycle.start_date, today),
            today,
            fallback_window_days=self._window,
        )
