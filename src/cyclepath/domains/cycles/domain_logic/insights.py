"""Today's insights — template stage text overlaid with matched content blocks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Sequence

from cyclepath.core.reference.keys import normalize_name
from cyclepath.core.reference.matcher import ContentBlockMatcher
from cyclepath.core.reference.models import StageTemplateEntry, TemplateDefinition
from cyclepath.core.storage.models import Cycle, PatientMilestone
from cyclepath.domains.cycles.domain_logic.progress import calculate_cycle_day, stage_for_day

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TodaysInsights:
    """Patient-facing text for one template stage."""

    stage_name: str
    day_label: str
    day_start: int
    medical_details: str
    monitoring_procedures: str
    patient_insights: str
    tips: list[str] = field(default_factory=list)
    content_block_id: str | None = None
    basis: str = "cycle_day"  # 'milestone' | 'cycle_day'

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage_name": self.stage_name,
            "day_label": self.day_label,
            "day_start": self.day_start,
            "medical_details": self.medical_details,
            "monitoring_procedures": self.monitoring_procedures,
            "patient_insights": self.patient_insights,
            "tips": list(self.tips),
            "content_block_id": self.content_block_id,
            "basis": self.basis,
        }


def _latest_milestone(milestones: Sequence[PatientMilestone]) -> PatientMilestone | None:
    # In-progress first; otherwise the latest completion.
    active = [m for m in milestones if m.status == "active"]
    if active:
        return max(active, key=lambda m: (m.date, m.position))
    completed = [m for m in milestones if m.status == "completed"]
    if completed:
        return max(completed, key=lambda m: (m.completion_date, m.date, m.position))
    return None


def _stage_for_milestone(
    template: TemplateDefinition, milestone: PatientMilestone
) -> StageTemplateEntry | None:
    for key in (milestone.title, milestone.type):
        wanted = normalize_name(key)
        if not wanted:
            continue
        for entry in template.ordered_stages:
            if normalize_name(entry.stage_name) == wanted:
                return entry
    return None


def build_insights(
    cycle: Cycle,
    template: TemplateDefinition,
    milestones: Sequence[PatientMilestone],
    matcher: ContentBlockMatcher,
    on_date: date,
) -> TodaysInsights | None:
    """Insights for ``on_date``, or None outside the cycle's date range.

    The stage comes from the patient's latest active milestone when it names
    a template stage, otherwise from the cycle day of ``on_date``. A content
    block matching the stage name replaces the template's own text field by
    field; missing block fields keep the template text.
    """
    entry: StageTemplateEntry | None = None
    basis = "milestone"

    latest = _latest_milestone(milestones)
    if latest is not None:
        entry = _stage_for_milestone(template, latest)

    if entry is None:
        basis = "cycle_day"
        if on_date < cycle.start_date:
            return None
        if cycle.end_date is not None and on_date > cycle.end_date:
            return None
        day = max(calculate_cycle_day(cycle.start_date, on_date), 1)
        entry = stage_for_day(template, day)
        if entry is None:
            return None

    block = matcher.match(template.key, entry.stage_name)
    if block is None:
        logger.debug("No content block for %s stage %r", template.key, entry.stage_name)
        return TodaysInsights(
            stage_name=entry.stage_name,
            day_label=entry.day_label,
            day_start=entry.day_start,
            medical_details=entry.medical_details,
            monitoring_procedures=entry.monitoring_procedures,
            patient_insights=entry.patient_insights,
            tips=list(entry.tips),
            basis=basis,
        )

    return TodaysInsights(
        stage_name=entry.stage_name,
        day_label=entry.day_label,
        day_start=entry.day_start,
        medical_details=block.medical_information or entry.medical_details,
        monitoring_procedures=block.milestone_details or entry.monitoring_procedures,
        patient_insights=block.what_to_expect or entry.patient_insights,
        tips=block.tip_lines() or list(entry.tips),
        content_block_id=block.id,
        basis=basis,
    )
