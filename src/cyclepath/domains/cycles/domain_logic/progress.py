"""Cycle progress — cycle day, progress percentage and upcoming milestones.

All helpers are pure: they take the cycle, its milestones and the template
and return numbers or small value objects for display.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Sequence

from cyclepath.core.reference.keys import normalize_name
from cyclepath.core.reference.models import StageTemplateEntry, TemplateDefinition
from cyclepath.core.storage.models import Cycle, PatientMilestone
from cyclepath.domains.cycles.domain_logic.milestone_generator import materialize_date
from cyclepath.domains.cycles.domain_logic.milestone_types import map_stage_to_milestone_type

DEFAULT_CYCLE_LENGTH = 28

# Capped value for a cycle that is not genuinely finished
MAX_UNFINISHED_PROGRESS = 99.0

NO_MILESTONE_TITLE = "Expected collection"
NO_MILESTONE_OFFSET_DAYS = 14

PROGRESS_MARKER_LIMIT = 4


def calculate_cycle_day(start_date: date, today: date) -> int:
    """Day number within the cycle; the start date is day 1, earlier dates 0."""
    return max((today - start_date).days + 1, 0)


def estimated_length(template: TemplateDefinition | None, default: int = DEFAULT_CYCLE_LENGTH) -> int:
    if template is None or template.total_duration <= 0:
        return default
    return template.total_duration


def completed_template_count(
    patient_milestones: Sequence[PatientMilestone],
    template_milestones: Sequence[StageTemplateEntry],
) -> int:
    """Number of template stages with a completed patient milestone.

    Each completed milestone counts towards at most one stage with the same
    normalized title, so overlay milestones (donor conception) and
    duplicates never inflate the count.
    """
    remaining = Counter(
        normalize_name(m.title) for m in patient_milestones if m.status == "completed"
    )
    count = 0
    for entry in template_milestones:
        key = normalize_name(entry.stage_name)
        if remaining[key] > 0:
            remaining[key] -= 1
            count += 1
    return count


def compute_progress(
    cycle: Cycle,
    patient_milestones: Sequence[PatientMilestone],
    template_milestones: Sequence[StageTemplateEntry],
    today: date,
    *,
    cycle_length: int = DEFAULT_CYCLE_LENGTH,
) -> float:
    """Progress through the cycle as a percentage in [0, 100].

    Uses the share of template stages with a completed milestone when
    milestone data is present, otherwise the cycle day relative to
    ``cycle_length``. Only an active cycle with every template milestone
    completed reads 100; anything short of that is capped at 99.
    """
    ended = cycle.has_ended

    if not patient_milestones or not template_milestones:
        day = calculate_cycle_day(cycle.start_date, today)
        length = cycle_length if cycle_length > 0 else DEFAULT_CYCLE_LENGTH
        progress = min(day / length, 1.0) * 100
        return min(progress, MAX_UNFINISHED_PROGRESS) if ended else progress

    total = len(template_milestones)
    completed = completed_template_count(patient_milestones, template_milestones)

    if completed == total:
        return MAX_UNFINISHED_PROGRESS if ended else 100.0
    return min(completed / total * 100, MAX_UNFINISHED_PROGRESS)


# ---------------------------------------------------------------------------
# Template navigation
# ---------------------------------------------------------------------------

def stage_for_day(template: TemplateDefinition, day: int) -> StageTemplateEntry | None:
    """Template stage for a cycle day.

    The stage whose day range contains ``day``; failing that, the last
    stage that started before it; failing that, the first stage.
    """
    stages = template.ordered_stages
    if not stages:
        return None
    current: StageTemplateEntry | None = None
    for entry in stages:
        if entry.day_start <= day <= entry.last_day:
            return entry
        if day >= entry.day_start:
            current = entry
    return current or stages[0]


def progress_markers(template: TemplateDefinition, limit: int = PROGRESS_MARKER_LIMIT) -> list[dict[str, Any]]:
    """First distinct stage names with their day, for a progress bar."""
    markers: list[dict[str, Any]] = []
    seen: set[str] = set()
    for entry in template.ordered_stages:
        if entry.stage_name in seen:
            continue
        seen.add(entry.stage_name)
        markers.append({"name": entry.stage_name, "day": entry.day_start})
        if len(markers) >= limit:
            break
    return markers


@dataclass(frozen=True)
class MilestoneProjection:
    title: str
    date: date

    def to_dict(self) -> dict[str, str]:
        return {"title": self.title, "date": self.date.isoformat()}


def _is_completed(entry: StageTemplateEntry, completed_keys: set[str]) -> bool:
    return (
        normalize_name(entry.stage_name) in completed_keys
        or normalize_name(map_stage_to_milestone_type(entry.stage_name)) in completed_keys
    )


def next_milestone(
    template: TemplateDefinition | None,
    cycle: Cycle,
    patient_milestones: Sequence[PatientMilestone],
    today: date,
) -> MilestoneProjection:
    """The next template stage the patient has not completed yet.

    Falls back to the latest patient milestone when the template is
    exhausted, and to an expected collection two weeks after the start
    when the cycle has no milestones at all.
    """
    current_day = max(calculate_cycle_day(cycle.start_date, today), 1)
    completed_keys: set[str] = set()
    for milestone in patient_milestones:
        if milestone.status == "completed":
            completed_keys.add(normalize_name(milestone.title))
            completed_keys.add(normalize_name(milestone.type))

    if template is not None:
        for entry in template.ordered_stages:
            if entry.day_start >= current_day and not _is_completed(entry, completed_keys):
                return MilestoneProjection(
                    title=entry.stage_name,
                    date=materialize_date(cycle.start_date, entry.day_start),
                )

    if patient_milestones:
        latest = max(patient_milestones, key=lambda m: (m.date, m.position))
        return MilestoneProjection(title=latest.title or "End date", date=latest.date)

    return MilestoneProjection(
        title=NO_MILESTONE_TITLE,
        date=cycle.start_date + timedelta(days=NO_MILESTONE_OFFSET_DAYS),
    )
