from __future__ import annotations

from intervention_engine.infrastructure.repositories.base import BaseRepository, utc_now_iso


class AssignmentRepository(BaseRepository):
    def assign(self, db, *, intervention_id: int, user_id: str, role: str) -> None:
        db.execute(
            """
            INSERT INTO intervention_assignments (intervention_id, user_id, role, team_id, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (intervention_id, user_id, role) DO NOTHING
            """,
            (intervention_id, user_id, role, self.team_id, utc_now_iso()),
        )

    def list_for_intervention(self, db, intervention_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT user_id, role, created_at
            FROM intervention_assignments
            WHERE intervention_id = ? AND team_id = ?
            ORDER BY id
            """,
            (intervention_id, self.team_id),
        ).fetchall()
        return self.rows_to_dicts(rows)
