"""Stage reference table — maps milestone identifiers to display stages.

Each row names a start milestone and an optional end milestone. At load
time every catalog milestone of a treatment is assigned to the row whose
start milestone is the latest one at or before it (in catalog order) and
whose end milestone, if any, is at or after it. The milestone's id, name
and type are then indexed in normalized form so request-time lookups are
plain dictionary hits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cyclepath.core.reference.cache import ReferenceCache
from cyclepath.core.reference.keys import normalize_name, normalize_treatment_type
from cyclepath.core.reference.models import (
    MilestoneIdentity,
    StageReferenceRow,
    StageReferenceSeed,
)

logger = logging.getLogger(__name__)

_NO_PRIORITY = float("inf")


def priority_key(row: StageReferenceRow) -> float:
    """Sort key for ``ui_priority``; rows without a priority sort last."""
    return row.ui_priority if row.ui_priority is not None else _NO_PRIORITY


@dataclass(frozen=True)
class _StageIndex:
    rows: dict[str, tuple[StageReferenceRow, ...]]
    by_key: dict[tuple[str, str], StageReferenceRow]
    catalog: dict[str, tuple[MilestoneIdentity, ...]]


class StageReferenceTable(ReferenceCache):
    """Read-only stage reference rows with milestone-key lookup.

    Usage::

        table = StageReferenceTable(lambda: load_stage_reference_seed(path))
        row = table.lookup("ivf_fresh", "Egg retrieval")
        candidates = table.rows_for_day("ivf_fresh", 13)
    """

    name = "stage reference"

    def _build(self, seed: StageReferenceSeed) -> _StageIndex:
        rows: dict[str, list[StageReferenceRow]] = {}
        for row in seed.stages:
            rows.setdefault(row.treatment_type, []).append(row)

        catalog: dict[str, list[MilestoneIdentity]] = {}
        for milestone in seed.milestones:
            catalog.setdefault(milestone.treatment_type, []).append(milestone)
        for milestones in catalog.values():
            milestones.sort(key=lambda m: m.order)

        by_key: dict[tuple[str, str], StageReferenceRow] = {}
        for treatment, milestones in catalog.items():
            self._index_treatment(treatment, milestones, rows.get(treatment, []), by_key)

        return _StageIndex(
            rows={k: tuple(v) for k, v in rows.items()},
            by_key=by_key,
            catalog={k: tuple(v) for k, v in catalog.items()},
        )

    @staticmethod
    def _index_treatment(
        treatment: str,
        milestones: list[MilestoneIdentity],
        rows: list[StageReferenceRow],
        by_key: dict[tuple[str, str], StageReferenceRow],
    ) -> None:
        # Position in catalog order (ties on ``order`` keep seed order).
        position = {m.milestone_id: index for index, m in enumerate(milestones)}

        spans: list[tuple[int, int, int, StageReferenceRow]] = []
        for insertion, row in enumerate(rows):
            start = position.get(row.start_milestone_id)
            if start is None:
                logger.warning(
                    "Stage %s (%s) starts at unknown milestone %r",
                    row.stage_id,
                    treatment,
                    row.start_milestone_id,
                )
                continue
            end = start
            if row.end_milestone_id:
                end = position.get(row.end_milestone_id, start)
                if row.end_milestone_id not in position:
                    logger.warning(
                        "Stage %s (%s) ends at unknown milestone %r; treating as single milestone",
                        row.stage_id,
                        treatment,
                        row.end_milestone_id,
                    )
            spans.append((start, end, insertion, row))

        for index, milestone in enumerate(milestones):
            covering = [span for span in spans if span[0] <= index <= span[1]]
            if not covering:
                continue
            # Latest started stage wins; then lowest priority, then seed order.
            covering.sort(key=lambda s: (-s[0], priority_key(s[3]), s[2]))
            row = covering[0][3]
            for raw_key in (milestone.milestone_id, milestone.name, milestone.type):
                key = normalize_name(raw_key)
                if key:
                    by_key.setdefault((treatment, key), row)

    def lookup(self, treatment_type: str, milestone_key: str | None) -> StageReferenceRow | None:
        """Find the stage for a milestone id, name or type tag."""
        key = normalize_name(milestone_key)
        if not key:
            return None
        treatment = normalize_treatment_type(treatment_type)
        return self._current().by_key.get((treatment, key))

    def rows_for(self, treatment_type: str) -> tuple[StageReferenceRow, ...]:
        """All rows of a treatment type in seed order."""
        return self._current().rows.get(normalize_treatment_type(treatment_type), ())

    def rows_for_day(self, treatment_type: str, day: int) -> list[StageReferenceRow]:
        """Rows whose expected day range contains ``day``, best first.

        Ordered by ``ui_priority`` (missing last); equal priorities keep
        seed order.
        """
        matching = [row for row in self.rows_for(treatment_type) if row.covers_day(day)]
        return sorted(matching, key=priority_key)

    def catalog_for(self, treatment_type: str) -> tuple[MilestoneIdentity, ...]:
        """Catalog milestones of a treatment type in order."""
        return self._current().catalog.get(normalize_treatment_type(treatment_type), ())

    def all(self) -> list[StageReferenceRow]:
        """Return every row across treatment types."""
        return [row for rows in self._current().rows.values() for row in rows]
