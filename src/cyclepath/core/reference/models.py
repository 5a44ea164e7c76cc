"""Data models for treatment reference data."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class StageTemplateEntry:
    """One stage of a reusable treatment template."""

    treatment_type: str
    stage_name: str
    day_label: str
    day_start: int  # may be negative for pre-cycle stages
    day_end: int | None = None
    medical_details: str = ""
    monitoring_procedures: str = ""
    patient_insights: str = ""
    tips: tuple[str, ...] = ()

    @property
    def last_day(self) -> int:
        return self.day_end if self.day_end is not None else self.day_start


@dataclass(frozen=True)
class TemplateMeta:
    """Display metadata for a treatment template."""

    key: str
    display_name: str
    description: str
    duration: int
    selectable: bool = True


@dataclass(frozen=True)
class TemplateDefinition:
    """All stages of one treatment type, sorted by ``day_start``."""

    key: str
    display_name: str
    description: str
    total_duration: int
    ordered_stages: tuple[StageTemplateEntry, ...]
    selectable: bool = True

    def stage_names(self) -> list[str]:
        return [entry.stage_name for entry in self.ordered_stages]


@dataclass
class TemplateSeed:
    """Raw contents of a template seed file."""

    meta: dict[str, TemplateMeta] = field(default_factory=dict)
    entries: list[StageTemplateEntry] = field(default_factory=list)


@dataclass(frozen=True)
class MilestoneIdentity:
    """A canonical milestone identifier from the reference catalog."""

    milestone_id: str
    treatment_type: str
    name: str
    type: str = ""
    order: int = 0


@dataclass(frozen=True)
class StageReferenceRow:
    """Maps a start/end milestone pair to a stage shown to the patient."""

    stage_id: str
    treatment_type: str
    stage_name: str
    start_milestone_id: str
    end_milestone_id: str = ""
    expected_day_start: int | None = None
    expected_day_end: int | None = None
    ui_priority: int | None = None
    details: str = ""

    def covers_day(self, day: int) -> bool:
        """Whether the expected day range contains ``day``."""
        if self.expected_day_start is None:
            return False
        end = self.expected_day_end if self.expected_day_end is not None else self.expected_day_start
        return self.expected_day_start <= day <= end


@dataclass
class StageReferenceSeed:
    """Raw contents of a stage reference seed file."""

    milestones: list[MilestoneIdentity] = field(default_factory=list)
    stages: list[StageReferenceRow] = field(default_factory=list)


@dataclass(frozen=True)
class ContentBlock:
    """Enriched patient-facing text for a named milestone."""

    id: str
    treatment_type: str
    milestone_name: str
    milestone_type: str | None = None
    notification_title: str | None = None
    milestone_details: str | None = None
    medical_information: str | None = None
    what_to_expect: str | None = None
    todays_tips: str | None = None
    order: int = 0
    expected_day_offset: int | None = None

    def tip_lines(self) -> list[str]:
        """Split ``todays_tips`` into non-empty lines."""
        if not self.todays_tips:
            return []
        return [line.strip() for line in self.todays_tips.splitlines() if line.strip()]
