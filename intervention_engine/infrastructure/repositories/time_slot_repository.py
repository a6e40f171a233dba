from __future__ import annotations

from typing import Iterable

from intervention_engine.infrastructure.repositories.base import BaseRepository, utc_now_iso


OPEN_SLOT_STATUSES = ("requested", "pending")


class TimeSlotRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        intervention_id: int,
        slot_date: str,
        start_time: str,
        end_time: str,
        status: str,
        proposed_by: str,
        proposer_role: str,
    ) -> int:
        now = utc_now_iso()
        cursor = db.execute(
            """
            INSERT INTO time_slots (
                intervention_id, slot_date, start_time, end_time, status,
                proposed_by, proposer_role, team_id, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (intervention_id, slot_date, start_time, end_time, status, proposed_by, proposer_role, self.team_id, now, now),
        )
        return self.inserted_id(cursor)

    def has_open_duplicate(self, db, *, intervention_id: int, slot_date: str, start_time: str, end_time: str) -> bool:
        row = db.execute(
            """
            SELECT 1 AS found
            FROM time_slots
            WHERE intervention_id = ? AND team_id = ? AND slot_date = ? AND start_time = ? AND end_time = ?
              AND status IN ('requested', 'pending')
            LIMIT 1
            """,
            (intervention_id, self.team_id, slot_date, start_time, end_time),
        ).fetchone()
        return row is not None

    def get_by_id(self, db, slot_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM time_slots
            WHERE id = ? AND team_id = ?
            LIMIT 1
            """,
            (slot_id, self.team_id),
        ).fetchone()
        return dict(row) if row else None

    def list_for_intervention(self, db, intervention_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM time_slots
            WHERE intervention_id = ? AND team_id = ?
            ORDER BY slot_date, start_time, id
            """,
            (intervention_id, self.team_id),
        ).fetchall()
        slots = self.rows_to_dicts(rows)
        responses = self.responses_for_slots(db, [slot["id"] for slot in slots])
        for slot in slots:
            slot["responses"] = responses.get(slot["id"], [])
        return slots

    def compare_and_set_status(self, db, slot_id: int, *, expected_status: str, new_status: str) -> bool:
        cursor = db.execute(
            """
            UPDATE time_slots
            SET status = ?, updated_at = ?
            WHERE id = ? AND team_id = ? AND status = ?
            """,
            (new_status, utc_now_iso(), slot_id, self.team_id, expected_status),
        )
        return cursor.rowcount == 1

    def supersede_open_siblings(self, db, *, intervention_id: int, except_slot_id: int) -> int:
        cursor = db.execute(
            """
            UPDATE time_slots
            SET status = 'superseded', updated_at = ?
            WHERE intervention_id = ? AND team_id = ? AND id <> ? AND status IN ('requested', 'pending')
            """,
            (utc_now_iso(), intervention_id, self.team_id, except_slot_id),
        )
        return int(cursor.rowcount or 0)

    def upsert_response(
        self,
        db,
        *,
        slot_id: int,
        user_id: str,
        user_role: str,
        response: str,
        reason: str | None,
    ) -> None:
        now = utc_now_iso()
        db.execute(
            """
            INSERT INTO time_slot_responses (
                time_slot_id, user_id, user_role, response, reason, team_id, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (time_slot_id, user_id) DO UPDATE SET
                user_role = excluded.user_role,
                response = excluded.response,
                reason = excluded.reason,
                updated_at = excluded.updated_at
            """,
            (slot_id, user_id, user_role, response, reason, self.team_id, now, now),
        )

    def get_response(self, db, *, slot_id: int, user_id: str) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM time_slot_responses
            WHERE time_slot_id = ? AND user_id = ? AND team_id = ?
            LIMIT 1
            """,
            (slot_id, user_id, self.team_id),
        ).fetchone()
        return dict(row) if row else None

    def responses_for_slots(self, db, slot_ids: Iterable[int]) -> dict[int, list[dict]]:
        ids = [int(slot_id) for slot_id in slot_ids]
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        rows = db.execute(
            f"""
            SELECT time_slot_id, user_id, user_role, response, reason, updated_at
            FROM time_slot_responses
            WHERE team_id = ? AND time_slot_id IN ({placeholders})
            ORDER BY id
            """,
            (self.team_id, *ids),
        ).fetchall()
        grouped: dict[int, list[dict]] = {}
        for row in self.rows_to_dicts(rows):
            grouped.setdefault(int(row["time_slot_id"]), []).append(row)
        return grouped

    def release_selected(self, db, intervention_id: int) -> int:
        cursor = db.execute(
            """
            UPDATE time_slots
            SET status = 'superseded', updated_at = ?
            WHERE intervention_id = ? AND team_id = ? AND status = 'selected'
            """,
            (utc_now_iso(), intervention_id, self.team_id),
        )
        return int(cursor.rowcount or 0)
