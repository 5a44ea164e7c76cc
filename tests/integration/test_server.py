"""Integration tests for the CyclePath MCP server."""

from __future__ import annotations

import asyncio
import json

import pytest
from fastmcp import Client

from cyclepath.core.server.app import create_app


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _call(client: Client, tool: str, arguments: dict | None = None) -> dict:
    result = await client.call_tool(tool, arguments or {})
    return json.loads(result.content[0].text)


async def _read(client: Client, uri: str) -> dict:
    contents = await client.read_resource(uri)
    return json.loads(contents[0].text)


ALL_EXPECTED_TOOLS = [
    "health_check",
    "refresh_reference_data",
    "create_treatment_cycle",
    "end_treatment_cycle",
    "delete_treatment_cycle",
    "list_cycle_milestones",
    "update_milestone",
    "get_current_stage",
    "get_cycle_progress",
    "get_todays_insights",
]


@pytest.fixture
def client(cycle_repository, audit_logger, seed_dir):
    """MCP client on a server backed by in-memory storage and the test seeds."""
    mcp = create_app(
        repository_override=cycle_repository,
        audit_logger_override=audit_logger,
        seed_dir_override=seed_dir,
    )
    return Client(mcp)


def test_server_starts_and_lists_tools(client):
    """Server should start and expose all registered tools."""
    async def _check():
        async with client:
            tools = await client.list_tools()
            tool_names = [t.name for t in tools]
            for expected in ALL_EXPECTED_TOOLS:
                assert expected in tool_names, f"Missing tool: {expected}"
    _run(_check())


def test_health_check_returns_ok(client):
    async def _check():
        async with client:
            health = await _call(client, "health_check")
            assert health["status"] == "ok"
            assert health["server"] == "CyclePath"
            assert health["treatment_types"] == ["iui", "ivf_fresh"]
            assert health["fallback_window_days"] == 7
    _run(_check())


def test_default_app_runs_without_persistence():
    """Without ENCRYPTION_KEY the server keeps cycles in memory and uses packaged seeds."""
    async def _check():
        async with Client(create_app()) as client:
            health = await _call(client, "health_check")
            assert health["storage_persistent"] is False
            assert "ivf_frozen" in health["treatment_types"]
    _run(_check())


class TestCycleLifecycle:
    def test_create_list_and_detect(self, client):
        async def _check():
            async with client:
                created = await _call(
                    client,
                    "create_treatment_cycle",
                    {"treatment_type": "ivf_fresh", "start_date": "2025-01-01"},
                )
                assert created["status"] == "created"
                assert created["milestones_created"] == 6
                cycle_id = created["cycle"]["id"]

                listed = await _call(client, "list_cycle_milestones", {"cycle_id": cycle_id})
                assert listed["milestone_count"] == 6
                by_title = {m["title"]: m for m in listed["milestones"]}
                assert by_title["Egg retrieval"]["date"] == "2025-01-13"

                stage = await _call(client, "get_current_stage", {"today": "2025-01-13"})
                assert stage["status"] == "ok"
                assert stage["cycle_day"] == 13
                assert stage["stage"]["name"] == "Egg retrieval"
                assert stage["confidence"] == "low"

                updated = await _call(
                    client,
                    "update_milestone",
                    {
                        "milestone_id": by_title["Trigger injection"]["id"],
                        "status": "completed",
                        "completed_on": "2025-01-11",
                    },
                )
                assert updated["status"] == "updated"
                assert updated["milestone"]["completed_on"] == "2025-01-11"

                stage = await _call(
                    client, "get_current_stage", {"cycle_id": cycle_id, "today": "2025-01-12"}
                )
                assert stage["source"] == "fallback_milestone"
                assert stage["fallback_milestone"] == {"title": "Trigger injection", "days_ago": 1}
        _run(_check())

    def test_progress_and_insights(self, client):
        async def _check():
            async with client:
                created = await _call(
                    client,
                    "create_treatment_cycle",
                    {"treatment_type": "IVF", "start_date": "2025-01-01"},
                )
                cycle_id = created["cycle"]["id"]

                progress = await _call(
                    client, "get_cycle_progress", {"cycle_id": cycle_id, "today": "2025-01-12"}
                )
                assert progress["cycle_day"] == 12
                assert progress["estimated_length"] == 35
                assert progress["remaining_days"] == 23
                assert progress["progress_percent"] == 0.0
                assert progress["total_milestones"] == 6
                assert progress["next_milestone"] == {"title": "Egg retrieval", "date": "2025-01-13"}
                assert len(progress["markers"]) == 4

                insights = await _call(
                    client, "get_todays_insights", {"cycle_id": cycle_id, "on_date": "2025-01-13"}
                )
                assert insights["status"] == "ok"
                assert insights["insights"]["content_block_id"] == "CB_OPU"

                outside = await _call(
                    client, "get_todays_insights", {"cycle_id": cycle_id, "on_date": "2024-12-01"}
                )
                assert outside["status"] == "none"
        _run(_check())

    def test_end_and_delete(self, client, audit_logger):
        async def _check():
            async with client:
                created = await _call(
                    client,
                    "create_treatment_cycle",
                    {"treatment_type": "iui", "start_date": "2025-03-01", "notes": "private"},
                )
                cycle_id = created["cycle"]["id"]
                assert created["cycle"]["has_notes"] is True

                ended = await _call(
                    client,
                    "end_treatment_cycle",
                    {"cycle_id": cycle_id, "status": "cancelled", "end_date": "2025-03-10"},
                )
                assert ended["cycle"]["status"] == "cancelled"

                stage = await _call(client, "get_current_stage", {"cycle_id": cycle_id})
                assert stage["status"] == "pending"
                assert stage["stage"] is None

                deleted = await _call(client, "delete_treatment_cycle", {"cycle_id": cycle_id})
                assert deleted["status"] == "deleted"

                missing = await _call(client, "list_cycle_milestones", {"cycle_id": cycle_id})
                assert missing["status"] == "not_found"
        _run(_check())

        actions = [e["action"] for e in audit_logger.get_events()]
        assert sorted(actions) == ["cycle_create", "cycle_delete", "cycle_end"]

    def test_active_milestone_drives_stage(self, client):
        async def _check():
            async with client:
                created = await _call(
                    client,
                    "create_treatment_cycle",
                    {"treatment_type": "ivf_fresh", "start_date": "2025-01-01"},
                )
                cycle_id = created["cycle"]["id"]
                trigger = next(m for m in created["milestones"] if m["title"] == "Trigger injection")

                updated = await _call(
                    client, "update_milestone", {"milestone_id": trigger["id"], "status": "active"}
                )
                assert updated["milestone"]["status"] == "active"

                stage = await _call(
                    client, "get_current_stage", {"cycle_id": cycle_id, "today": "2025-01-12"}
                )
                assert stage["status"] == "ok"
                assert stage["stage"]["name"] == "Trigger"
                assert stage["source"] == "current_milestone"
                assert stage["confidence"] == "high"
                assert stage["message"] == ""
                assert "fallback_milestone" not in stage
        _run(_check())

    def test_donor_cycle_progress_ignores_overlay(self, client):
        async def _check():
            async with client:
                created = await _call(
                    client,
                    "create_treatment_cycle",
                    {"treatment_type": "ivf_fresh", "start_date": "2025-01-01", "donor_conception": True},
                )
                cycle_id = created["cycle"]["id"]
                assert created["milestones_created"] == 9
                for milestone in created["milestones"][:6]:
                    await _call(
                        client,
                        "update_milestone",
                        {"milestone_id": milestone["id"], "status": "completed", "completed_on": "2025-01-10"},
                    )

                progress = await _call(
                    client, "get_cycle_progress", {"cycle_id": cycle_id, "today": "2025-01-12"}
                )
                assert progress["completed_milestones"] == 3
                assert progress["total_milestones"] == 6
                assert progress["progress_percent"] == 50.0
        _run(_check())

    def test_donor_conception_overlay(self, client):
        async def _check():
            async with client:
                created = await _call(
                    client,
                    "create_treatment_cycle",
                    {"treatment_type": "iui", "start_date": "2025-01-01", "donor_conception": True},
                )
                assert created["milestones_created"] == 4
                assert created["milestones"][2] == {
                    "id": created["milestones"][2]["id"],
                    "type": "cycle-start",
                    "title": "Waiting Period",
                    "date": "2024-12-18",
                    "status": "pending",
                    "completed_on": None,
                }
        _run(_check())


class TestErrors:
    def test_unknown_treatment_creates_cycle_without_milestones(self, client):
        async def _check():
            async with client:
                created = await _call(
                    client,
                    "create_treatment_cycle",
                    {"treatment_type": "surrogacy", "start_date": "2025-01-01"},
                )
                assert created["status"] == "created"
                assert created["milestones_created"] == 0
                assert "warning" in created

                stage = await _call(client, "get_current_stage", {"today": "2025-01-05"})
                assert stage["status"] == "pending"
        _run(_check())

    def test_bad_dates(self, client):
        async def _check():
            async with client:
                created = await _call(
                    client,
                    "create_treatment_cycle",
                    {"treatment_type": "iui", "start_date": "01/02/2025"},
                )
                assert created["status"] == "error"
                assert "start_date" in created["message"]

                stage = await _call(client, "get_current_stage", {"today": "tomorrow"})
                assert stage["status"] == "error"
        _run(_check())

    def test_not_found(self, client):
        async def _check():
            async with client:
                assert (await _call(client, "get_current_stage"))["message"] == "No active cycle."
                missing = await _call(client, "update_milestone", {"milestone_id": "nope"})
                assert missing["status"] == "not_found"
                gone = await _call(client, "delete_treatment_cycle", {"cycle_id": "nope"})
                assert gone["status"] == "not_found"
        _run(_check())

    def test_invalid_statuses(self, client):
        async def _check():
            async with client:
                ended = await _call(
                    client, "end_treatment_cycle", {"cycle_id": "x", "status": "active"}
                )
                assert ended["status"] == "error"
                updated = await _call(
                    client, "update_milestone", {"milestone_id": "x", "status": "done"}
                )
                assert updated["status"] == "error"
        _run(_check())


class TestReferenceData:
    def test_refresh_picks_up_seed_changes(self, client, seed_dir, audit_logger):
        async def _check():
            async with client:
                before = await _call(client, "health_check")
                assert "egg_freezing" not in before["treatment_types"]

                with open(seed_dir / "templates.yaml", "a", encoding="utf-8") as f:
                    f.write(
                        "  - {treatment_type: egg_freezing, stage: Egg retrieval, "
                        "day_label: Day 13, day_start: 13}\n"
                    )
                refreshed = await _call(client, "refresh_reference_data")
                assert refreshed["status"] == "refreshed"
                assert refreshed["templates"] == 4

                after = await _call(client, "health_check")
                assert "egg_freezing" in after["treatment_types"]
        _run(_check())
        assert audit_logger.get_events(action="reference_refresh")

    def test_refresh_failure_keeps_previous_templates(self, client, seed_dir):
        async def _check():
            async with client:
                before = await _call(client, "health_check")
                with open(seed_dir / "templates.yaml", "a", encoding="utf-8") as f:
                    f.write(
                        "  - {treatment_type: egg_freezing, stage: Egg retrieval, "
                        "day_label: Day 13, day_start: 13}\n"
                    )
                (seed_dir / "stage_reference.yaml").write_text("stages: [", encoding="utf-8")
                refreshed = await _call(client, "refresh_reference_data")
                assert refreshed["status"] == "error"

                after = await _call(client, "health_check")
                assert after["treatment_types"] == before["treatment_types"]
                assert "egg_freezing" not in after["treatment_types"]
        _run(_check())

    def test_template_registry_resource(self, client):
        async def _check():
            async with client:
                registry = await _read(client, "template://cycles/registry")
                keys = [t["key"] for t in registry["templates"]]
                assert keys == ["donor_conception", "iui", "ivf_fresh"]
                ivf = registry["templates"][2]
                assert ivf["stages"][0]["name"] == "Cycle day 1"
        _run(_check())

    def test_stage_reference_resource(self, client):
        async def _check():
            async with client:
                stages = await _read(client, "template://cycles/stages")
                assert stages["stage_count"] == 7
                assert stages["stages"][0]["treatment_type"] == "ivf_fresh"
        _run(_check())
