"""Reference seed loader — reads YAML seed files from disk.

Three seed files feed the engine:

* ``templates.yaml``        — template metadata and stage entries
* ``stage_reference.yaml``  — milestone identifier catalog and stage rows
* ``content_blocks.yaml``   — enriched milestone content

A row that fails to parse (e.g. a non-numeric day offset) is skipped and
logged; the rest of the file still loads.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Callable, TypeVar

import yaml

from cyclepath.core.reference.keys import normalize_treatment_type
from cyclepath.core.reference.models import (
    ContentBlock,
    MilestoneIdentity,
    StageReferenceRow,
    StageReferenceSeed,
    StageTemplateEntry,
    TemplateMeta,
    TemplateSeed,
)

logger = logging.getLogger(__name__)

TEMPLATES_FILE = "templates.yaml"
STAGE_REFERENCE_FILE = "stage_reference.yaml"
CONTENT_BLOCKS_FILE = "content_blocks.yaml"

MAX_TIPS = 6

T = TypeVar("T")

_TIP_SPLIT = re.compile(r"[.\n]+")


class ReferenceDataError(Exception):
    """Raised when a seed file is missing or is not valid YAML."""


class MalformedReferenceDataError(ValueError):
    """Raised for a single seed row that cannot be parsed."""


# ---------------------------------------------------------------------------
# Field parsing
# ---------------------------------------------------------------------------

def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _optional_text(value: Any) -> str | None:
    return _text(value) or None


def _int(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise MalformedReferenceDataError(f"{field_name} must be a number, got {value!r}")
    if isinstance(value, int):
        return value
    text = _text(value)
    try:
        return int(text)
    except ValueError:
        try:
            as_float = float(text)
        except ValueError:
            raise MalformedReferenceDataError(
                f"{field_name} must be a number, got {value!r}"
            ) from None
        if not as_float.is_integer():
            raise MalformedReferenceDataError(
                f"{field_name} must be a whole number, got {value!r}"
            ) from None
        return int(as_float)


def _optional_int(value: Any, field_name: str) -> int | None:
    if value is None or _text(value) == "":
        return None
    return _int(value, field_name)


def _required(data: dict[str, Any], field_name: str) -> str:
    value = _text(data.get(field_name))
    if not value:
        raise MalformedReferenceDataError(f"missing required field '{field_name}'")
    return value


def build_tips(monitoring_procedures: str, patient_insights: str) -> tuple[str, ...]:
    """Derive short tips from a stage's descriptive text (sentence split)."""
    tips: list[str] = []
    for source in (monitoring_procedures, patient_insights):
        for piece in _TIP_SPLIT.split(source or ""):
            piece = piece.strip()
            if piece:
                tips.append(piece)
    return tuple(tips[:MAX_TIPS])


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ReferenceDataError(f"Cannot read seed file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ReferenceDataError(f"Invalid YAML in seed file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ReferenceDataError(f"Seed file {path} must contain a mapping at top level")
    return data


def _parse_rows(
    rows: Any,
    parse: Callable[[dict[str, Any]], T],
    path: Path,
    section: str,
) -> list[T]:
    """Apply ``parse`` to each row, skipping (and logging) malformed ones.

    Raises:
        ReferenceDataError: If the section is present but is not a list.
    """
    if rows is None:
        return []
    if not isinstance(rows, list):
        raise ReferenceDataError(
            f"Section '{section}' in {path} must be a list, got {type(rows).__name__}"
        )
    parsed: list[T] = []
    for index, raw in enumerate(rows):
        try:
            if not isinstance(raw, dict):
                raise MalformedReferenceDataError(f"expected a mapping, got {type(raw).__name__}")
            parsed.append(parse(raw))
        except MalformedReferenceDataError as exc:
            logger.warning("Skipping %s row %d in %s: %s", section, index, path.name, exc)
    return parsed


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

def parse_template_entry(data: dict[str, Any]) -> StageTemplateEntry:
    """Parse one template stage mapping."""
    monitoring = _text(data.get("monitoring_procedures"))
    insights = _text(data.get("patient_insights"))
    return StageTemplateEntry(
        treatment_type=normalize_treatment_type(_required(data, "treatment_type")),
        stage_name=_required(data, "stage"),
        day_label=_text(data.get("day_label")),
        day_start=_int(data.get("day_start"), "day_start"),
        day_end=_optional_int(data.get("day_end"), "day_end"),
        medical_details=_text(data.get("medical_details")),
        monitoring_procedures=monitoring,
        patient_insights=insights,
        tips=build_tips(monitoring, insights),
    )


def parse_template_meta(data: dict[str, Any]) -> TemplateMeta:
    """Parse one template metadata mapping."""
    return TemplateMeta(
        key=normalize_treatment_type(_required(data, "key")),
        display_name=_required(data, "display_name"),
        description=_text(data.get("description")),
        duration=_int(data.get("duration", 0), "duration"),
        selectable=bool(data.get("selectable", True)),
    )


def load_template_seed(path: str | Path) -> TemplateSeed:
    """Load template metadata and stage entries from a YAML seed file."""
    path = Path(path)
    data = _read_yaml(path)
    metas = _parse_rows(data.get("templates"), parse_template_meta, path, "template")
    entries = _parse_rows(data.get("stages"), parse_template_entry, path, "stage")
    logger.info(
        "Loaded %d template stages (%d templates) from %s", len(entries), len(metas), path
    )
    return TemplateSeed(meta={m.key: m for m in metas}, entries=entries)


# ---------------------------------------------------------------------------
# Stage reference
# ---------------------------------------------------------------------------

def parse_milestone_identity(data: dict[str, Any]) -> MilestoneIdentity:
    """Parse one milestone catalog mapping."""
    return MilestoneIdentity(
        milestone_id=_required(data, "milestone_id"),
        treatment_type=normalize_treatment_type(_required(data, "treatment_type")),
        name=_required(data, "name"),
        type=_text(data.get("type")),
        order=_int(data.get("order", 0), "order"),
    )


def parse_stage_reference_row(data: dict[str, Any]) -> StageReferenceRow:
    """Parse one stage reference mapping."""
    return StageReferenceRow(
        stage_id=_required(data, "stage_id"),
        treatment_type=normalize_treatment_type(_required(data, "treatment_type")),
        stage_name=_required(data, "stage_name"),
        start_milestone_id=_required(data, "start_milestone_id"),
        end_milestone_id=_text(data.get("end_milestone_id")),
        expected_day_start=_optional_int(data.get("expected_day_start"), "expected_day_start"),
        expected_day_end=_optional_int(data.get("expected_day_end"), "expected_day_end"),
        ui_priority=_optional_int(data.get("ui_priority"), "ui_priority"),
        details=_text(data.get("details")),
    )


def load_stage_reference_seed(path: str | Path) -> StageReferenceSeed:
    """Load the milestone catalog and stage reference rows."""
    path = Path(path)
    data = _read_yaml(path)
    milestones = _parse_rows(data.get("milestones"), parse_milestone_identity, path, "milestone")
    stages = _parse_rows(data.get("stages"), parse_stage_reference_row, path, "stage")
    logger.info(
        "Loaded %d stage reference rows and %d catalog milestones from %s",
        len(stages),
        len(milestones),
        path,
    )
    return StageReferenceSeed(milestones=milestones, stages=stages)


# ---------------------------------------------------------------------------
# Content blocks
# ---------------------------------------------------------------------------

def parse_content_block(data: dict[str, Any]) -> ContentBlock:
    """Parse one content block mapping."""
    return ContentBlock(
        id=_required(data, "id"),
        treatment_type=normalize_treatment_type(_required(data, "treatment_type")),
        milestone_name=_required(data, "milestone_name"),
        milestone_type=_optional_text(data.get("milestone_type")),
        notification_title=_optional_text(data.get("notification_title")),
        milestone_details=_optional_text(data.get("milestone_details")),
        medical_information=_optional_text(data.get("medical_information")),
        what_to_expect=_optional_text(data.get("what_to_expect")),
        todays_tips=_optional_text(data.get("todays_tips")),
        order=_optional_int(data.get("order"), "order") or 0,
        expected_day_offset=_optional_int(data.get("expected_day_offset"), "expected_day_offset"),
    )


def load_content_blocks(path: str | Path) -> list[ContentBlock]:
    """Load content blocks from a YAML seed file."""
    path = Path(path)
    data = _read_yaml(path)
    blocks = _parse_rows(data.get("blocks"), parse_content_block, path, "content block")
    logger.info("Loaded %d content blocks from %s", len(blocks), path)
    return blocks
