"""MCP Resources for treatment template and stage reference discovery."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from fastmcp import FastMCP

if TYPE_CHECKING:
    from cyclepath.core.reference.stage_table import StageReferenceTable
    from cyclepath.core.reference.template_store import TemplateStore


def register_reference_resources(
    mcp: FastMCP,
    template_store: TemplateStore,
    reference_table: StageReferenceTable,
) -> None:
    """Register template and stage reference resources on the MCP server."""

    @mcp.resource("template://cycles/registry")
    def cycle_template_registry_resource() -> str:
        """Discover the available treatment templates and their stages."""
        templates = template_store.all()
        return json.dumps(
            {
                "template_count": len(templates),
                "templates": [
                    {
                        "key": t.key,
                        "display_name": t.display_name,
                        "description": t.description,
                        "total_duration": t.total_duration,
                        "selectable": t.selectable,
                        "stages": [
                            {
                                "name": s.stage_name,
                                "day_label": s.day_label,
                                "day_start": s.day_start,
                                "day_end": s.day_end,
                            }
                            for s in t.ordered_stages
                        ],
                    }
                    for t in templates
                ],
            },
            indent=2,
        )

    @mcp.resource("template://cycles/stages")
    def cycle_stage_reference_resource() -> str:
        """Stage reference rows used to name the patient's current stage."""
        rows = reference_table.all()
        return json.dumps(
            {
                "stage_count": len(rows),
                "stages": [
                    {
                        "stage_id": r.stage_id,
                        "treatment_type": r.treatment_type,
                        "stage_name": r.stage_name,
                        "start_milestone_id": r.start_milestone_id,
                        "end_milestone_id": r.end_milestone_id or None,
                        "expected_day_start": r.expected_day_start,
                        "expected_day_end": r.expected_day_end,
                        "ui_priority": r.ui_priority,
                        "details": r.details,
                    }
                    for r in rows
                ],
            },
            indent=2,
        )
