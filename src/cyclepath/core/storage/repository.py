"""Cycle repository — CRUD operations for cycles and patient milestones.

The repository mediates between domain objects (Cycle, PatientMilestone)
and the SQLite database, using FieldEncryptor for patient-entered notes.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import date, datetime, timezone
from typing import Any

from cyclepath.core.storage.database import CycleDatabase
from cyclepath.core.storage.encryption import FieldEncryptor
from cyclepath.core.storage.models import (
    CYCLE_STATUSES,
    ENDED_CYCLE_STATUSES,
    MILESTONE_STATUSES,
    Cycle,
    PatientMilestone,
)

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class RepositoryError(Exception):
    """Raised when repository operations fail."""


class CycleRepository:
    """CRUD repository for treatment cycles and their milestones.

    Usage::

        db = CycleDatabase(":memory:")
        db.initialize()
        repo = CycleRepository(db, FieldEncryptor(key="..."))

        cycle_id = repo.create_cycle(cycle)
        inserted = repo.insert_milestones_if_absent(cycle_id, milestones)
        milestones = repo.get_milestones(cycle_id)
    """

    def __init__(self, database: CycleDatabase, encryptor: FieldEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def create_cycle(self, cycle: Cycle) -> str:
        """Persist a new cycle.

        Args:
            cycle: The cycle to save. If ``cycle.id`` is empty, a UUID is
                generated and written back onto the object.

        Returns:
            The cycle ID.
        """
        if cycle.status not in CYCLE_STATUSES:
            raise RepositoryError(
                f"Invalid cycle status: {cycle.status!r}. Valid: {CYCLE_STATUSES}"
            )

        cid = cycle.id or self._new_id()
        now = cycle.created_at or self._now_iso()

        with self._db.write_lock:
            conn = self._db.connection
            conn.execute(
                """INSERT INTO cycles (
                    id, type, start_date, end_date, status, donor_conception,
                    result, notes_enc, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    cid,
                    cycle.type,
                    cycle.start_date.isoformat(),
                    cycle.end_date.isoformat() if cycle.end_date else None,
                    cycle.status,
                    1 if cycle.donor_conception else 0,
                    cycle.result,
                    self._enc.encrypt(cycle.notes),
                    now,
                    now,
                ),
            )
            conn.commit()

        cycle.id = cid
        cycle.created_at = now
        cycle.updated_at = now
        logger.info("Created cycle %s (type=%s, start=%s)", cid, cycle.type, cycle.start_date)
        return cid

    def get_cycle(self, cycle_id: str) -> Cycle | None:
        """Retrieve a cycle by ID, or None if not found."""
        row = self._db.connection.execute(
            "SELECT * FROM cycles WHERE id = ?", (cycle_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_cycle(row)

    def get_cycles(self, *, status: str | None = None, limit: int = 50) -> list[Cycle]:
        """List cycles, newest first, optionally filtered by status."""
        query = "SELECT * FROM cycles"
        params: list[Any] = []
        if status:
            query += " WHERE status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC, start_date DESC LIMIT ?"
        params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_cycle(row) for row in rows]

    def get_active_cycle(self) -> Cycle | None:
        """Get the most recently created active cycle."""
        results = self.get_cycles(status="active", limit=1)
        return results[0] if results else None

    def end_cycle(
        self,
        cycle_id: str,
        *,
        status: str = "completed",
        result: str | None = None,
        end_date: date | None = None,
    ) -> Cycle | None:
        """Close a cycle as completed or cancelled.

        Returns:
            The updated cycle, or None if no cycle has that ID.
        """
        if status not in ENDED_CYCLE_STATUSES:
            raise RepositoryError(
                f"Invalid end status: {status!r}. Valid: {ENDED_CYCLE_STATUSES}"
            )

        ended_on = end_date or datetime.now(timezone.utc).date()
        with self._db.write_lock:
            conn = self._db.connection
            cursor = conn.execute(
                """UPDATE cycles
                   SET status = ?, result = ?, end_date = ?, updated_at = ?
                   WHERE id = ?""",
                (status, result, ended_on.isoformat(), self._now_iso(), cycle_id),
            )
            conn.commit()

        if cursor.rowcount == 0:
            return None
        logger.info("Ended cycle %s (status=%s)", cycle_id, status)
        return self.get_cycle(cycle_id)

    def delete_cycle(self, cycle_id: str) -> bool:
        """Delete a cycle; its milestones are removed by the cascade.

        Returns:
            True if a cycle was found and deleted, False otherwise.
        """
        with self._db.write_lock:
            conn = self._db.connection
            cursor = conn.execute("DELETE FROM cycles WHERE id = ?", (cycle_id,))
            conn.commit()

        if cursor.rowcount == 0:
            return False
        logger.info("Deleted cycle %s", cycle_id)
        return True

    # ------------------------------------------------------------------
    # Milestones
    # ------------------------------------------------------------------

    def count_milestones(self, cycle_id: str) -> int:
        """Return the number of milestones stored for a cycle."""
        row = self._db.connection.execute(
            "SELECT COUNT(*) FROM milestones WHERE cycle_id = ?", (cycle_id,)
        ).fetchone()
        return row[0]

    def insert_milestones_if_absent(
        self, cycle_id: str, milestones: list[PatientMilestone]
    ) -> bool:
        """Bulk-insert milestones unless the cycle already has some.

        The existence check and the insert share one ``BEGIN IMMEDIATE``
        transaction, so two concurrent calls for the same cycle cannot both
        insert. Any failure rolls the whole batch back and re-raises.

        Returns:
            True if the milestones were inserted, False if the cycle already
            had milestones (nothing written).
        """
        now = self._now_iso()
        rows = []
        for index, milestone in enumerate(milestones):
            if milestone.cycle_id != cycle_id:
                raise RepositoryError(
                    f"Milestone {milestone.title!r} belongs to cycle "
                    f"{milestone.cycle_id!r}, not {cycle_id!r}"
                )
            milestone.id = milestone.id or self._new_id()
            milestone.position = index
            milestone.created_at = milestone.created_at or now
            milestone.updated_at = milestone.updated_at or now
            rows.append(
                (
                    milestone.id,
                    cycle_id,
                    milestone.type,
                    milestone.title,
                    milestone.date.isoformat(),
                    milestone.status,
                    milestone.completed_on.isoformat() if milestone.completed_on else None,
                    self._enc.encrypt(milestone.notes),
                    milestone.position,
                    milestone.created_at,
                    milestone.updated_at,
                )
            )

        with self._db.write_lock:
            conn = self._db.connection
            try:
                conn.execute("BEGIN IMMEDIATE")
                existing = conn.execute(
                    "SELECT COUNT(*) FROM milestones WHERE cycle_id = ?", (cycle_id,)
                ).fetchone()[0]
                if existing > 0:
                    conn.rollback()
                    return False
                conn.executemany(
                    """INSERT INTO milestones (
                        id, cycle_id, type, title, date, status, completed_on,
                        notes_enc, position, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    rows,
                )
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise RepositoryError(
                    f"Failed to insert milestones for cycle {cycle_id}: {exc}"
                ) from exc

        logger.info("Inserted %d milestones for cycle %s", len(rows), cycle_id)
        return True

    def get_milestones(self, cycle_id: str) -> list[PatientMilestone]:
        """Get all milestones of a cycle, ordered by date then template order."""
        rows = self._db.connection.execute(
            """SELECT * FROM milestones WHERE cycle_id = ?
               ORDER BY date ASC, position ASC""",
            (cycle_id,),
        ).fetchall()
        return [self._row_to_milestone(row) for row in rows]

    def get_milestone(self, milestone_id: str) -> PatientMilestone | None:
        """Retrieve a single milestone by ID, or None if not found."""
        row = self._db.connection.execute(
            "SELECT * FROM milestones WHERE id = ?", (milestone_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_milestone(row)

    def update_milestone(
        self,
        milestone_id: str,
        *,
        status: str | None = None,
        notes: str | None = _UNSET,
        completed_on: date | None = None,
    ) -> PatientMilestone | None:
        """Update a milestone's status and/or notes.

        Marking a milestone ``completed`` records ``completed_on`` (today in
        UTC unless given). Moving it to any other status clears it.

        Returns:
            The updated milestone, or None if no milestone has that ID.
        """
        current = self.get_milestone(milestone_id)
        if current is None:
            return None

        assignments: list[str] = []
        params: list[Any] = []

        if status is not None:
            if status not in MILESTONE_STATUSES:
                raise RepositoryError(
                    f"Invalid milestone status: {status!r}. Valid: {MILESTONE_STATUSES}"
                )
            assignments.append("status = ?")
            params.append(status)
            if status == "completed":
                done = completed_on or current.completed_on or datetime.now(timezone.utc).date()
                assignments.append("completed_on = ?")
                params.append(done.isoformat())
            else:
                assignments.append("completed_on = NULL")

        if notes is not _UNSET:
            assignments.append("notes_enc = ?")
            params.append(self._enc.encrypt(notes))

        if not assignments:
            return current

        assignments.append("updated_at = ?")
        params.append(self._now_iso())
        params.append(milestone_id)

        with self._db.write_lock:
            conn = self._db.connection
            conn.execute(
                f"UPDATE milestones SET {', '.join(assignments)} WHERE id = ?",
                params,
            )
            conn.commit()

        logger.info("Updated milestone %s (status=%s)", milestone_id, status or current.status)
        return self.get_milestone(milestone_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _row_to_cycle(self, row: Any) -> Cycle:
        return Cycle(
            id=row["id"],
            type=row["type"],
            start_date=date.fromisoformat(row["start_date"]),
            end_date=date.fromisoformat(row["end_date"]) if row["end_date"] else None,
            status=row["status"],
            donor_conception=bool(row["donor_conception"]),
            result=row["result"],
            notes=self._enc.decrypt(row["notes_enc"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_milestone(self, row: Any) -> PatientMilestone:
        return PatientMilestone(
            id=row["id"],
            cycle_id=row["cycle_id"],
            type=row["type"],
            title=row["title"],
            date=date.fromisoformat(row["date"]),
            status=row["status"],
            notes=self._enc.decrypt(row["notes_enc"]),
            completed_on=(
                date.fromisoformat(row["completed_on"]) if row["completed_on"] else None
            ),
            position=row["position"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
