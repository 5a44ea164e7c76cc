"""Tests for the AuditLogger and related utilities."""

from __future__ import annotations

import time

from cyclepath.core.audit.logger import AuditEvent, AuditLogger, _hash_input


# ---------------------------------------------------------------------------
# _hash_input tests
# ---------------------------------------------------------------------------

class TestHashInput:
    def test_hashes_dict(self):
        h = _hash_input({"milestone_id": "m1"})
        assert isinstance(h, str)
        assert len(h) == 64  # SHA-256 hex

    def test_order_independent(self):
        """Canonical JSON sorts keys, so order doesn't matter."""
        h1 = _hash_input({"status": "completed", "milestone_id": "m1"})
        h2 = _hash_input({"milestone_id": "m1", "status": "completed"})
        assert h1 == h2

    def test_different_inputs_differ(self):
        assert _hash_input({"notes": "a"}) != _hash_input({"notes": "b"})

    def test_non_serializable_returns_empty(self):
        assert _hash_input(object()) == ""


# ---------------------------------------------------------------------------
# AuditLogger.log_event / log_mutation
# ---------------------------------------------------------------------------

class TestLogMutation:
    def test_log_event_returns_uuid(self, audit_logger: AuditLogger):
        eid = audit_logger.log_event(AuditEvent(action="cycle_create"))
        assert len(eid) == 36  # UUID format

    def test_mutation_retrievable(self, audit_logger: AuditLogger):
        audit_logger.log_mutation(
            "milestone_update",
            tool_name="update_milestone",
            tool_input={"milestone_id": "m1", "notes": "private text"},
            cycle_id="c1",
            duration_ms=3.2,
        )
        events = audit_logger.get_events()
        assert len(events) == 1
        event = events[0]
        assert event["action"] == "milestone_update"
        assert event["tool_name"] == "update_milestone"
        assert event["cycle_id"] == "c1"
        assert event["status"] == "success"
        assert len(event["tool_input_hash"]) == 64

    def test_raw_input_never_stored(self, audit_logger: AuditLogger, cycle_db):
        audit_logger.log_mutation(
            "milestone_update", tool_input={"notes": "bleeding since Tuesday"}
        )
        rows = cycle_db.connection.execute("SELECT * FROM audit_log").fetchall()
        assert all("Tuesday" not in str(tuple(row)) for row in rows)

    def test_no_input_leaves_hash_empty(self, audit_logger: AuditLogger):
        audit_logger.log_mutation("reference_refresh")
        assert audit_logger.get_events()[0]["tool_input_hash"] is None

    def test_failure_and_metadata(self, audit_logger: AuditLogger):
        audit_logger.log_mutation(
            "cycle_create",
            status="failure",
            error_type="RepositoryError",
            metadata={"treatment_type": "ivf_fresh"},
        )
        event = audit_logger.get_events()[0]
        assert event["status"] == "failure"
        assert event["error_type"] == "RepositoryError"
        assert event["metadata"] == {"treatment_type": "ivf_fresh"}

    def test_write_failure_returns_empty_id(self, audit_logger: AuditLogger, cycle_db):
        cycle_db.connection.execute("DROP TABLE audit_log")
        assert audit_logger.log_mutation("cycle_delete", cycle_id="c1") == ""


# ---------------------------------------------------------------------------
# AuditLogger.get_events (filtering)
# ---------------------------------------------------------------------------

class TestGetEvents:
    def test_filter_by_action(self, audit_logger: AuditLogger):
        audit_logger.log_mutation("cycle_create", cycle_id="a")
        audit_logger.log_mutation("cycle_delete", cycle_id="a")
        audit_logger.log_mutation("cycle_create", cycle_id="b")
        assert len(audit_logger.get_events(action="cycle_create")) == 2

    def test_filter_by_cycle(self, audit_logger: AuditLogger):
        audit_logger.log_mutation("cycle_create", cycle_id="a")
        audit_logger.log_mutation("milestone_update", cycle_id="a")
        audit_logger.log_mutation("cycle_create", cycle_id="b")
        assert len(audit_logger.get_events(cycle_id="a")) == 2

    def test_limit_respected(self, audit_logger: AuditLogger):
        for i in range(10):
            audit_logger.log_mutation("milestone_update", cycle_id=f"c{i}")
        assert len(audit_logger.get_events(limit=3)) == 3

    def test_newest_first(self, audit_logger: AuditLogger):
        audit_logger.log_mutation("cycle_create", tool_name="first")
        # Tiny sleep to ensure different timestamps
        time.sleep(0.01)
        audit_logger.log_mutation("cycle_end", tool_name="second")
        events = audit_logger.get_events()
        assert [e["tool_name"] for e in events] == ["second", "first"]
