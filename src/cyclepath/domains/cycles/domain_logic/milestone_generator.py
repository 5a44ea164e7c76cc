"""Milestone generator — expands a treatment template into dated patient milestones."""

from __future__ import annotations

import logging
from datetime import date, timedelta

from cyclepath.core.reference.models import StageTemplateEntry
from cyclepath.core.reference.template_store import TemplateStore
from cyclepath.core.storage.models import Cycle, PatientMilestone
from cyclepath.core.storage.repository import CycleRepository
from cyclepath.domains.cycles.domain_logic.milestone_types import map_stage_to_milestone_type

logger = logging.getLogger(__name__)


def materialize_date(start_date: date, day: int) -> date:
    """Calendar date of a template day offset.

    Day 1 is the start date itself. Day 0 also resolves to the start date,
    and negative days count back from it (day -14 is 14 days before).

    >>> materialize_date(date(2025, 1, 1), 13)
    datetime.date(2025, 1, 13)
    >>> materialize_date(date(2025, 1, 1), -14)
    datetime.date(2024, 12, 18)
    """
    offset = day if day <= 0 else day - 1
    return start_date + timedelta(days=offset)


class MilestoneGenerator:
    """Create a cycle's milestones from its template, exactly once.

    Usage::

        generator = MilestoneGenerator(template_store, repository)
        milestones = generator.generate(cycle)
    """

    def __init__(self, template_store: TemplateStore, repository: CycleRepository) -> None:
        self._templates = template_store
        self._repo = repository

    def stages_for(self, cycle: Cycle) -> list[StageTemplateEntry]:
        """Template stages for a cycle, donor overlay first when flagged.

        Raises:
            TemplateNotFoundError: If the cycle type has no template.
        """
        template = self._templates.get_template(cycle.type)
        stages = list(template.ordered_stages)
        if cycle.donor_conception:
            overlay = self._templates.overlay()
            if not overlay:
                logger.warning("Cycle %s is flagged for donor conception but no overlay is loaded", cycle.id)
            stages = list(overlay) + stages
        return stages

    def build(self, cycle: Cycle) -> list[PatientMilestone]:
        """Materialize (but do not persist) the milestones for a cycle."""
        return [
            PatientMilestone(
                id="",
                cycle_id=cycle.id,
                type=map_stage_to_milestone_type(entry.stage_name),
                title=entry.stage_name,
                date=materialize_date(cycle.start_date, entry.day_start),
                status="pending",
                notes=None,
            )
            for entry in self.stages_for(cycle)
        ]

    def generate(self, cycle: Cycle) -> list[PatientMilestone]:
        """Persist the cycle's milestones unless it already has some.

        Returns the cycle's milestones either way. A cycle that already has
        milestones is left untouched, which makes retried creation calls safe.

        Raises:
            TemplateNotFoundError: If the cycle type has no template.
            RepositoryError: If the bulk insert fails (nothing is kept).
        """
        if self._repo.count_milestones(cycle.id) > 0:
            logger.info("Cycle %s already has milestones; skipping generation", cycle.id)
            return self._repo.get_milestones(cycle.id)

        milestones = self.build(cycle)
        if not milestones:
            return []

        inserted = self._repo.insert_milestones_if_absent(cycle.id, milestones)
        if not inserted:
            logger.info("Milestones for cycle %s were created concurrently; skipping", cycle.id)
        return self._repo.get_milestones(cycle.id)
