"""MCP tools answering "where am I in my cycle?".

Read-only: current stage, progress and today's insights are derived on
every call from the stored milestones and the reference data.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from cyclepath.domains.cycles.domain_logic.insights import build_insights
from cyclepath.domains.cycles.domain_logic.progress import (
    calculate_cycle_day,
    completed_template_count,
    compute_progress,
    estimated_length,
    next_milestone,
    progress_markers,
)
from cyclepath.domains.cycles.tools.cycle_tools import (
    cycle_to_dict,
    parse_iso_date,
    resolve_cycle,
)

if TYPE_CHECKING:
    from cyclepath.core.reference.matcher import ContentBlockMatcher
    from cyclepath.core.reference.template_store import TemplateStore
    from cyclepath.core.storage.repository import CycleRepository
    from cyclepath.domains.cycles.domain_logic.stage_detector import StageDetector

logger = logging.getLogger(__name__)

PENDING_STAGE_MESSAGE = "Stage information is pending for this cycle."


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _not_found(cycle_id: str) -> str:
    return json.dumps({
        "status": "not_found",
        "cycle_id": cycle_id,
        "message": "No cycle found with that ID." if cycle_id else "No active cycle.",
    })


def register_stage_tools(
    mcp: FastMCP,
    repository: CycleRepository,
    template_store: TemplateStore,
    detector: StageDetector,
    matcher: ContentBlockMatcher,
    *,
    default_cycle_length: int = 28,
) -> None:
    """Register stage detection, progress and insight tools on the MCP server."""

    def _resolve_date(value: str, field_name: str) -> date:
        return parse_iso_date(value, field_name) if value else _today()

    @mcp.tool
    async def get_current_stage(
        ctx: Context,
        cycle_id: str = "",
        today: str = "",
    ) -> str:
        """Determine which treatment stage the patient is in.

        Uses the current milestone when one is active, then a milestone
        completed in the last few days, then the expected stage for the
        cycle day. The 'confidence' field says which of these applied.

        Args:
            cycle_id: The cycle to inspect (default: the active cycle).
            today: Evaluate as of this date (YYYY-MM-DD, default today).
        """
        try:
            as_of = _resolve_date(today, "today")
        except ValueError as exc:
            return json.dumps({"status": "error", "message": str(exc)})

        cycle = resolve_cycle(repository, cycle_id)
        if cycle is None:
            return _not_found(cycle_id)

        milestones = repository.get_milestones(cycle.id)
        result = detector.detect(cycle, milestones, as_of)
        payload = {
            "cycle_id": cycle.id,
            "cycle_day": calculate_cycle_day(cycle.start_date, as_of),
            "as_of": as_of.isoformat(),
        }
        if result is None:
            payload.update({"status": "pending", "stage": None, "message": PENDING_STAGE_MESSAGE})
        else:
            payload.update({"status": "ok", **result.to_dict()})
        return json.dumps(payload)

    @mcp.tool
    async def get_cycle_progress(
        ctx: Context,
        cycle_id: str = "",
        today: str = "",
    ) -> str:
        """Cycle day, progress percentage and the next milestone.

        Progress only reads 100% for an active cycle whose milestones are all
        completed.

        Args:
            cycle_id: The cycle to inspect (default: the active cycle).
            today: Evaluate as of this date (YYYY-MM-DD, default today).
        """
        try:
            as_of = _resolve_date(today, "today")
        except ValueError as exc:
            return json.dumps({"status": "error", "message": str(exc)})

        cycle = resolve_cycle(repository, cycle_id)
        if cycle is None:
            return _not_found(cycle_id)

        template = template_store.find_template(cycle.type)
        milestones = repository.get_milestones(cycle.id)
        stages = list(template.ordered_stages) if template else []
        length = estimated_length(template, default_cycle_length)
        cycle_day = calculate_cycle_day(cycle.start_date, as_of)

        progress = compute_progress(cycle, milestones, stages, as_of, cycle_length=length)
        upcoming = next_milestone(template, cycle, milestones, as_of)

        return json.dumps({
            "status": "ok",
            "cycle": cycle_to_dict(cycle),
            "cycle_day": cycle_day,
            "estimated_length": length,
            "remaining_days": max(length - cycle_day, 0),
            "progress_percent": round(progress, 1),
            "completed_milestones": completed_template_count(milestones, stages),
            "total_milestones": len(stages),
            "next_milestone": upcoming.to_dict(),
            "markers": progress_markers(template) if template else [],
        })

    @mcp.tool
    async def get_todays_insights(
        ctx: Context,
        cycle_id: str = "",
        on_date: str = "",
    ) -> str:
        """Medical details, what to expect and tips for the current stage.

        Args:
            cycle_id: The cycle to inspect (default: the active cycle).
            on_date: Show insights for this date (YYYY-MM-DD, default today).
        """
        try:
            as_of = _resolve_date(on_date, "on_date")
        except ValueError as exc:
            return json.dumps({"status": "error", "message": str(exc)})

        cycle = resolve_cycle(repository, cycle_id)
        if cycle is None:
            return _not_found(cycle_id)

        template = template_store.find_template(cycle.type)
        if template is None:
            return json.dumps({
                "status": "not_found",
                "cycle_id": cycle.id,
                "message": f"No template for treatment type {cycle.type!r}.",
            })

        milestones = repository.get_milestones(cycle.id)
        insights = build_insights(cycle, template, milestones, matcher, as_of)
        if insights is None:
            return json.dumps({
                "status": "none",
                "cycle_id": cycle.id,
                "on_date": as_of.isoformat(),
                "message": "No insights for a date outside the cycle.",
            })

        return json.dumps({
            "status": "ok",
            "cycle_id": cycle.id,
            "on_date": as_of.isoformat(),
            "insights": insights.to_dict(),
        })
