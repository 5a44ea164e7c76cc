"""Audit logger — PHI-free trail of cycle and milestone mutations.

Every tool call that creates, changes or deletes patient cycle data is
recorded with:

* ``tool_input_hash`` — SHA-256 of canonical JSON (no raw notes in logs).
* ``cycle_id``        — the cycle the event touched, when there is one.
* ``status``          — ``success`` or ``failure`` with the error type.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from cyclepath.core.storage.database import CycleDatabase

logger = logging.getLogger(__name__)


def _hash_input(data: Any) -> str:
    """SHA-256 hash of canonical JSON, or empty string if not serializable."""
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()
    except (TypeError, ValueError):
        return ""


@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str  # 'cycle_create' | 'milestone_update' | 'cycle_end' | 'cycle_delete' | 'reference_refresh'
    tool_name: str = ""
    tool_input_hash: str = ""
    cycle_id: str | None = None
    duration_ms: float | None = None
    status: str = "success"  # 'success' | 'failure'
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditLogger:
    """Records audit events to the ``audit_log`` SQLite table.

    Writes are committed immediately. A failed audit write is logged and
    never breaks the tool call that triggered it.

    Usage::

        audit = AuditLogger(cycle_db)
        audit.log_mutation(
            "milestone_update",
            tool_name="update_milestone",
            tool_input={"milestone_id": "...", "status": "completed"},
            cycle_id="...",
        )
    """

    def __init__(self, database: CycleDatabase) -> None:
        self._db = database

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its ID ('' if the write failed)."""
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()
        metadata_json = (
            json.dumps(event.metadata, separators=(",", ":"), default=str)
            if event.metadata
            else None
        )

        try:
            with self._db.write_lock:
                conn = self._db.connection
                conn.execute(
                    """INSERT INTO audit_log
                       (id, timestamp, action, tool_name, tool_input_hash,
                        cycle_id, duration_ms, status, error_type, metadata_json)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        event_id,
                        now,
                        event.action,
                        event.tool_name or None,
                        event.tool_input_hash or None,
                        event.cycle_id,
                        event.duration_ms,
                        event.status,
                        event.error_type,
                        metadata_json,
                    ),
                )
                conn.commit()
        except sqlite3.Error:
            logger.exception("Failed to write audit event — event lost")
            return ""

        return event_id

    def log_mutation(
        self,
        action: str,
        *,
        tool_name: str = "",
        tool_input: Any = None,
        cycle_id: str | None = None,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Convenience wrapper hashing the tool input before logging."""
        return self.log_event(
            AuditEvent(
                action=action,
                tool_name=tool_name,
                tool_input_hash=_hash_input(tool_input) if tool_input is not None else "",
                cycle_id=cycle_id,
                duration_ms=duration_ms,
                status=status,
                error_type=error_type,
                metadata=metadata or {},
            )
        )

    def get_events(
        self,
        *,
        action: str | None = None,
        cycle_id: str | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Query audit events, newest first."""
        conditions: list[str] = []
        params: list[Any] = []
        if action:
            conditions.append("action = ?")
            params.append(action)
        if cycle_id:
            conditions.append("cycle_id = ?")
            params.append(cycle_id)

        query = "SELECT * FROM audit_log"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        events = []
        for row in rows:
            event = dict(row)
            raw = event.pop("metadata_json", None)
            event["metadata"] = json.loads(raw) if raw else {}
            events.append(event)
        return events
