"""Data models for the cycle persistence layer."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

CYCLE_STATUSES = ("active", "completed", "cancelled")
ENDED_CYCLE_STATUSES = ("completed", "cancelled")

MILESTONE_STATUSES = ("pending", "active", "completed", "skipped")


@dataclass
class Cycle:
    """A single course of fertility treatment.

    ``type`` is the treatment-type key as entered (e.g. ``ivf_fresh``,
    ``fet``, ``egg-freezing``); it is normalized by the Template Store.
    """

    id: str
    type: str
    start_date: date
    end_date: date | None = None
    status: str = "active"  # 'active' | 'completed' | 'cancelled'
    donor_conception: bool = False
    result: str | None = None  # 'positive', 'negative', ...

    # Encrypted at rest
    notes: str | None = None

    created_at: str = ""
    updated_at: str = ""

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def has_ended(self) -> bool:
        return self.status in ENDED_CYCLE_STATUSES


@dataclass
class PatientMilestone:
    """A concrete, dated event within a cycle, derived from a template stage."""

    id: str
    cycle_id: str
    type: str  # canonical tag, e.g. 'trigger-shot', 'embryo-transfer'
    title: str  # template stage name, e.g. 'Trigger injection'
    date: date  # expected/planned date
    status: str = "pending"  # 'pending' | 'active' | 'completed' | 'skipped'

    # Reserved for user input; encrypted at rest
    notes: str | None = None

    # Actual completion date (falls back to ``date`` when unset)
    completed_on: date | None = None

    position: int = 0
    created_at: str = ""
    updated_at: str = ""

    @property
    def completion_date(self) -> date:
        return self.completed_on or self.date
