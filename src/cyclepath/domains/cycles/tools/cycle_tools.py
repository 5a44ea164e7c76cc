"""MCP tools for treatment cycles and their milestones.

Creating a cycle expands its treatment template into dated milestones.
Milestone notes are patient-entered text: they are encrypted at rest and
never written to logs or the audit trail (only an input hash is kept).
"""

from __future__ import annotations

import json
import logging
import time
from datetime import date
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from cyclepath.core.reference.template_store import TemplateNotFoundError
from cyclepath.core.storage.models import (
    ENDED_CYCLE_STATUSES,
    MILESTONE_STATUSES,
    Cycle,
    PatientMilestone,
)
from cyclepath.core.storage.repository import RepositoryError

if TYPE_CHECKING:
    from cyclepath.core.audit.logger import AuditLogger
    from cyclepath.core.storage.repository import CycleRepository
    from cyclepath.domains.cycles.domain_logic.milestone_generator import MilestoneGenerator

logger = logging.getLogger(__name__)


def parse_iso_date(value: str, field_name: str) -> date:
    """Parse a ``YYYY-MM-DD`` string.

    Raises:
        ValueError: With a message naming the field.
    """
    try:
        return date.fromisoformat(value.strip())
    except (AttributeError, ValueError):
        raise ValueError(f"{field_name} must be an ISO date (YYYY-MM-DD), got {value!r}") from None


def resolve_cycle(repository: CycleRepository, cycle_id: str) -> Cycle | None:
    """The cycle with ``cycle_id``, or the active cycle when it is empty."""
    if cycle_id:
        return repository.get_cycle(cycle_id)
    return repository.get_active_cycle()


def cycle_to_dict(cycle: Cycle) -> dict[str, Any]:
    return {
        "id": cycle.id,
        "type": cycle.type,
        "start_date": cycle.start_date.isoformat(),
        "end_date": cycle.end_date.isoformat() if cycle.end_date else None,
        "status": cycle.status,
        "donor_conception": cycle.donor_conception,
        "result": cycle.result,
        "has_notes": bool(cycle.notes),
    }


def milestone_to_dict(milestone: PatientMilestone, *, include_notes: bool = False) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": milestone.id,
        "type": milestone.type,
        "title": milestone.title,
        "date": milestone.date.isoformat(),
        "status": milestone.status,
        "completed_on": milestone.completed_on.isoformat() if milestone.completed_on else None,
    }
    if include_notes:
        data["notes"] = milestone.notes
    return data


def _not_found(kind: str, identifier: str) -> str:
    return json.dumps({
        "status": "not_found",
        f"{kind}_id": identifier,
        "message": f"No {kind} found with that ID." if identifier else f"No active {kind}.",
    })


def _error(message: str) -> str:
    return json.dumps({"status": "error", "message": message})


def register_cycle_tools(
    mcp: FastMCP,
    repository: CycleRepository,
    generator: MilestoneGenerator,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register cycle and milestone management tools on the MCP server."""

    def _audit(action: str, tool_name: str, tool_input: dict, start_time: float, **kwargs) -> None:
        if audit_logger is None:
            return
        audit_logger.log_mutation(
            action,
            tool_name=tool_name,
            tool_input=tool_input,
            duration_ms=round((time.monotonic() - start_time) * 1000, 1),
            **kwargs,
        )

    @mcp.tool
    async def create_treatment_cycle(
        ctx: Context,
        treatment_type: str,
        start_date: str,
        donor_conception: bool = False,
        notes: str = "",
    ) -> str:
        """Start a treatment cycle and generate its dated milestones.

        Milestones come from the treatment template (plus the donor
        conception pre-cycle stages when flagged). Day 1 of the template is
        the start date.

        Args:
            treatment_type: Treatment key, e.g. 'ivf_fresh', 'ivf_frozen' (or 'fet'),
                'egg_freezing', 'iui'.
            start_date: First day of the cycle (YYYY-MM-DD).
            donor_conception: Whether the cycle uses donor eggs, sperm or embryos.
            notes: Optional private notes (encrypted at rest).
        """
        start_time = time.monotonic()
        tool_input = {
            "treatment_type": treatment_type,
            "start_date": start_date,
            "donor_conception": donor_conception,
            "notes": notes,
        }

        if not treatment_type.strip():
            return _error("treatment_type is required.")
        try:
            start = parse_iso_date(start_date, "start_date")
        except ValueError as exc:
            return _error(str(exc))

        cycle = Cycle(
            id="",
            type=treatment_type.strip(),
            start_date=start,
            donor_conception=donor_conception,
            notes=notes or None,
        )
        cycle_id = repository.create_cycle(cycle)

        warning = None
        try:
            milestones = generator.generate(cycle)
        except TemplateNotFoundError:
            milestones = []
            warning = f"No template for treatment type {treatment_type!r}; no milestones were created."
            logger.warning("Cycle %s created without milestones: unknown type %r", cycle_id, treatment_type)
        except RepositoryError as exc:
            repository.delete_cycle(cycle_id)
            _audit(
                "cycle_create",
                "create_treatment_cycle",
                tool_input,
                start_time,
                cycle_id=cycle_id,
                status="failure",
                error_type=type(exc).__name__,
            )
            logger.error("Milestone generation failed for cycle %s: %s", cycle_id, exc)
            return _error("Failed to create cycle milestones; the cycle was not saved.")

        _audit(
            "cycle_create",
            "create_treatment_cycle",
            tool_input,
            start_time,
            cycle_id=cycle_id,
            metadata={"milestones": len(milestones), "donor_conception": donor_conception},
        )

        result: dict[str, Any] = {
            "status": "created",
            "cycle": cycle_to_dict(cycle),
            "milestones_created": len(milestones),
            "milestones": [milestone_to_dict(m) for m in milestones],
        }
        if warning:
            result["warning"] = warning
        return json.dumps(result)

    @mcp.tool
    async def end_treatment_cycle(
        ctx: Context,
        cycle_id: str,
        status: str = "completed",
        result: str = "",
        end_date: str = "",
    ) -> str:
        """Close a cycle as completed or cancelled.

        Args:
            cycle_id: The cycle to close.
            status: 'completed' or 'cancelled'.
            result: Optional outcome, e.g. 'positive' or 'negative'.
            end_date: Last day of the cycle (YYYY-MM-DD, default today).
        """
        start_time = time.monotonic()
        if status not in ENDED_CYCLE_STATUSES:
            return _error(f"status must be one of {list(ENDED_CYCLE_STATUSES)}.")
        ended_on = None
        if end_date:
            try:
                ended_on = parse_iso_date(end_date, "end_date")
            except ValueError as exc:
                return _error(str(exc))

        cycle = repository.end_cycle(
            cycle_id, status=status, result=result or None, end_date=ended_on
        )
        if cycle is None:
            return _not_found("cycle", cycle_id)

        _audit(
            "cycle_end",
            "end_treatment_cycle",
            {"cycle_id": cycle_id, "status": status, "result": result, "end_date": end_date},
            start_time,
            cycle_id=cycle_id,
        )
        return json.dumps({"status": "ended", "cycle": cycle_to_dict(cycle)})

    @mcp.tool
    async def delete_treatment_cycle(
        ctx: Context,
        cycle_id: str,
    ) -> str:
        """Permanently delete a cycle together with all of its milestones.

        Args:
            cycle_id: The cycle to delete.
        """
        start_time = time.monotonic()
        deleted = repository.delete_cycle(cycle_id)
        if not deleted:
            return _not_found("cycle", cycle_id)

        _audit(
            "cycle_delete",
            "delete_treatment_cycle",
            {"cycle_id": cycle_id},
            start_time,
            cycle_id=cycle_id,
        )
        return json.dumps({"status": "deleted", "cycle_id": cycle_id})

    @mcp.tool
    async def list_cycle_milestones(
        ctx: Context,
        cycle_id: str = "",
        include_notes: bool = False,
    ) -> str:
        """List a cycle's milestones in date order.

        Args:
            cycle_id: The cycle to read (default: the active cycle).
            include_notes: Include the decrypted private notes.
        """
        cycle = resolve_cycle(repository, cycle_id)
        if cycle is None:
            return _not_found("cycle", cycle_id)

        milestones = repository.get_milestones(cycle.id)
        return json.dumps({
            "cycle": cycle_to_dict(cycle),
            "milestone_count": len(milestones),
            "milestones": [milestone_to_dict(m, include_notes=include_notes) for m in milestones],
        })

    @mcp.tool
    async def update_milestone(
        ctx: Context,
        milestone_id: str,
        status: str = "",
        notes: str | None = None,
        completed_on: str = "",
    ) -> str:
        """Change a milestone's status and/or notes.

        Marking a milestone 'completed' records its completion date; any
        other status clears it.

        Args:
            milestone_id: The milestone to update.
            status: 'pending', 'active', 'completed' or 'skipped' (empty keeps it).
            notes: New private notes; an empty string clears them, omit to keep.
            completed_on: Actual completion date (YYYY-MM-DD, default today).
        """
        start_time = time.monotonic()
        if status and status not in MILESTONE_STATUSES:
            return _error(f"status must be one of {list(MILESTONE_STATUSES)}.")
        done_on = None
        if completed_on:
            try:
                done_on = parse_iso_date(completed_on, "completed_on")
            except ValueError as exc:
                return _error(str(exc))

        kwargs: dict[str, Any] = {"status": status or None, "completed_on": done_on}
        if notes is not None:
            kwargs["notes"] = notes or None

        milestone = repository.update_milestone(milestone_id, **kwargs)
        if milestone is None:
            return _not_found("milestone", milestone_id)

        _audit(
            "milestone_update",
            "update_milestone",
            {"milestone_id": milestone_id, "status": status, "notes": notes, "completed_on": completed_on},
            start_time,
            cycle_id=milestone.cycle_id,
            metadata={"status": milestone.status},
        )
        return json.dumps({"status": "updated", "milestone": milestone_to_dict(milestone)})

