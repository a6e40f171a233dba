from __future__ import annotations

from intervention_engine.infrastructure.repositories.base import BaseRepository, utc_now_iso


class QuoteRequestRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        intervention_id: int,
        provider_id: str,
        deadline: str | None,
        general_notes: str | None,
        message: str | None,
        requested_by: str,
    ) -> int:
        now = utc_now_iso()
        cursor = db.execute(
            """
            INSERT INTO quote_requests (
                intervention_id, provider_id, status, deadline, general_notes, message,
                requested_by, team_id, created_at, updated_at
            )
            VALUES (?, ?, 'sent', ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (intervention_id, provider_id, deadline, general_notes, message, requested_by, self.team_id, now, now),
        )
        return self.inserted_id(cursor)

    def list_for_intervention(self, db, intervention_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM quote_requests
            WHERE intervention_id = ? AND team_id = ?
            ORDER BY id
            """,
            (intervention_id, self.team_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def outstanding_provider_ids(self, db, intervention_id: int) -> list[str]:
        rows = db.execute(
            """
            SELECT DISTINCT provider_id
            FROM quote_requests
            WHERE intervention_id = ? AND team_id = ? AND status = 'sent'
            ORDER BY provider_id
            """,
            (intervention_id, self.team_id),
        ).fetchall()
        return [row["provider_id"] for row in rows]

    def was_solicited(self, db, intervention_id: int, provider_id: str) -> bool:
        row = db.execute(
            """
            SELECT 1 AS found
            FROM quote_requests
            WHERE intervention_id = ? AND provider_id = ? AND team_id = ? AND status <> 'cancelled'
            LIMIT 1
            """,
            (intervention_id, provider_id, self.team_id),
        ).fetchone()
        return row is not None

    def mark_responded(self, db, *, intervention_id: int, provider_id: str) -> None:
        db.execute(
            """
            UPDATE quote_requests
            SET status = 'responded', updated_at = ?
            WHERE intervention_id = ? AND provider_id = ? AND team_id = ? AND status = 'sent'
            """,
            (utc_now_iso(), intervention_id, provider_id, self.team_id),
        )

    def cancel_outstanding(self, db, intervention_id: int) -> None:
        db.execute(
            """
            UPDATE quote_requests
            SET status = 'cancelled', updated_at = ?
            WHERE intervention_id = ? AND team_id = ? AND status = 'sent'
            """,
            (utc_now_iso(), intervention_id, self.team_id),
        )
