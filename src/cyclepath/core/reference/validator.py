"""Seed data validator — checks that the reference datasets agree with each other."""

from __future__ import annotations

import logging
from pathlib import Path

from cyclepath.core.reference.loader import (
    CONTENT_BLOCKS_FILE,
    STAGE_REFERENCE_FILE,
    TEMPLATES_FILE,
    ReferenceDataError,
    load_content_blocks,
    load_stage_reference_seed,
    load_template_seed,
)
from cyclepath.core.reference.models import StageTemplateEntry

logger = logging.getLogger(__name__)


def _check_templates(entries: list[StageTemplateEntry]) -> list[str]:
    errors: list[str] = []
    seen: set[tuple[str, str]] = set()
    for entry in entries:
        key = (entry.treatment_type, entry.stage_name)
        if key in seen:
            errors.append(
                f"{TEMPLATES_FILE}: Duplicate stage '{entry.stage_name}' for {entry.treatment_type}"
            )
        seen.add(key)
        if entry.day_end is not None and entry.day_end < entry.day_start:
            errors.append(
                f"{TEMPLATES_FILE}: Stage '{entry.stage_name}' ({entry.treatment_type}) "
                f"ends on day {entry.day_end} before it starts on day {entry.day_start}"
            )

    # Stages of one treatment must be authored in day order.
    last_start: dict[str, int] = {}
    for entry in entries:
        previous = last_start.get(entry.treatment_type)
        if previous is not None and entry.day_start < previous:
            errors.append(
                f"{TEMPLATES_FILE}: Stage '{entry.stage_name}' ({entry.treatment_type}) "
                f"on day {entry.day_start} is listed after day {previous}"
            )
        last_start[entry.treatment_type] = entry.day_start
    return errors


def validate_seed_directory(directory: str | Path) -> list[str]:
    """Validate the three seed files in a directory.

    Returns a list of human-readable errors; empty means valid.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return [f"Seed directory not found: {directory}"]

    try:
        template_seed = load_template_seed(directory / TEMPLATES_FILE)
        reference_seed = load_stage_reference_seed(directory / STAGE_REFERENCE_FILE)
        blocks = load_content_blocks(directory / CONTENT_BLOCKS_FILE)
    except ReferenceDataError as exc:
        return [str(exc)]

    errors = _check_templates(template_seed.entries)
    treatment_types = {entry.treatment_type for entry in template_seed.entries}

    for key in template_seed.meta:
        if key not in treatment_types:
            errors.append(f"{TEMPLATES_FILE}: Template '{key}' has metadata but no stages")

    known_ids: dict[str, str] = {}
    for milestone in reference_seed.milestones:
        if milestone.milestone_id in known_ids:
            errors.append(
                f"{STAGE_REFERENCE_FILE}: Duplicate milestone id '{milestone.milestone_id}'"
            )
        known_ids[milestone.milestone_id] = milestone.treatment_type
        if milestone.treatment_type not in treatment_types:
            errors.append(
                f"{STAGE_REFERENCE_FILE}: Milestone '{milestone.milestone_id}' names unknown "
                f"treatment type '{milestone.treatment_type}'"
            )

    for row in reference_seed.stages:
        for field_name in ("start_milestone_id", "end_milestone_id"):
            milestone_id = getattr(row, field_name)
            if not milestone_id:
                continue
            owner = known_ids.get(milestone_id)
            if owner is None:
                errors.append(
                    f"{STAGE_REFERENCE_FILE}: Stage '{row.stage_id}' {field_name} "
                    f"'{milestone_id}' is not in the milestone catalog"
                )
            elif owner != row.treatment_type:
                errors.append(
                    f"{STAGE_REFERENCE_FILE}: Stage '{row.stage_id}' ({row.treatment_type}) "
                    f"references milestone '{milestone_id}' of {owner}"
                )
        if (
            row.expected_day_start is not None
            and row.expected_day_end is not None
            and row.expected_day_end < row.expected_day_start
        ):
            errors.append(
                f"{STAGE_REFERENCE_FILE}: Stage '{row.stage_id}' has an empty day range "
                f"{row.expected_day_start}..{row.expected_day_end}"
            )

    for block in blocks:
        if block.treatment_type not in treatment_types:
            errors.append(
                f"{CONTENT_BLOCKS_FILE}: Block '{block.id}' names unknown treatment type "
                f"'{block.treatment_type}'"
            )

    for err in errors:
        logger.error("%s", err)
    return errors
