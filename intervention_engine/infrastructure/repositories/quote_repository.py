from __future__ import annotations

import json
from typing import Any, Iterable

from intervention_engine.infrastructure.repositories.base import BaseRepository, utc_now_iso


OPEN_QUOTE_STATUSES = ("pending", "sent")
BLOCKING_QUOTE_STATUSES = ("pending", "sent", "accepted")


def _decode(row) -> dict:
    data = dict(row)
    try:
        data["attachments"] = json.loads(data.get("attachments") or "[]")
    except (TypeError, ValueError):
        data["attachments"] = []
    return data


class QuoteRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        intervention_id: int,
        provider_id: str,
        labor_cost: float,
        materials_cost: float,
        total_amount: float,
        work_details: str,
        estimated_duration_hours: float | None,
        estimated_start_date: str | None,
        terms_and_conditions: str | None,
        attachments: Iterable[str],
        status: str = "pending",
    ) -> int:
        now = utc_now_iso()
        cursor = db.execute(
            """
            INSERT INTO quotes (
                intervention_id, provider_id, labor_cost, materials_cost, total_amount, work_details,
                estimated_duration_hours, estimated_start_date, terms_and_conditions, attachments,
                status, submitted_at, team_id, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                intervention_id,
                provider_id,
                labor_cost,
                materials_cost,
                total_amount,
                work_details,
                estimated_duration_hours,
                estimated_start_date,
                terms_and_conditions,
                json.dumps(list(attachments)),
                status,
                now,
                self.team_id,
                now,
                now,
            ),
        )
        return self.inserted_id(cursor)

    def get_by_id(self, db, quote_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM quotes
            WHERE id = ? AND team_id = ?
            LIMIT 1
            """,
            (quote_id, self.team_id),
        ).fetchone()
        return _decode(row) if row else None

    def list_for_intervention(self, db, intervention_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM quotes
            WHERE intervention_id = ? AND team_id = ?
            ORDER BY id
            """,
            (intervention_id, self.team_id),
        ).fetchall()
        return [_decode(row) for row in rows]

    def accepted_for_intervention(self, db, intervention_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM quotes
            WHERE intervention_id = ? AND team_id = ? AND status = 'accepted'
            LIMIT 1
            """,
            (intervention_id, self.team_id),
        ).fetchone()
        return _decode(row) if row else None

    def providers_with_status(self, db, intervention_id: int, statuses: Iterable[str]) -> dict[str, str]:
        wanted = tuple(statuses)
        placeholders = ", ".join("?" for _ in wanted)
        rows = db.execute(
            f"""
            SELECT provider_id, status
            FROM quotes
            WHERE intervention_id = ? AND team_id = ? AND status IN ({placeholders})
            ORDER BY id
            """,
            (intervention_id, self.team_id, *wanted),
        ).fetchall()
        return {row["provider_id"]: row["status"] for row in rows}

    def update_content(
        self,
        db,
        quote_id: int,
        *,
        expected_status: str,
        new_status: str,
        labor_cost: float,
        materials_cost: float,
        total_amount: float,
        work_details: str,
        estimated_duration_hours: float | None,
        estimated_start_date: str | None,
        terms_and_conditions: str | None,
        attachments: Iterable[str],
    ) -> bool:
        now = utc_now_iso()
        cursor = db.execute(
            """
            UPDATE quotes
            SET labor_cost = ?, materials_cost = ?, total_amount = ?, work_details = ?,
                estimated_duration_hours = ?, estimated_start_date = ?, terms_and_conditions = ?,
                attachments = ?, status = ?, submitted_at = ?, updated_at = ?
            WHERE id = ? AND team_id = ? AND status = ?
            """,
            (
                labor_cost,
                materials_cost,
                total_amount,
                work_details,
                estimated_duration_hours,
                estimated_start_date,
                terms_and_conditions,
                json.dumps(list(attachments)),
                new_status,
                now,
                now,
                quote_id,
                self.team_id,
                expected_status,
            ),
        )
        return cursor.rowcount == 1

    def compare_and_set_status(
        self,
        db,
        quote_id: int,
        *,
        expected_status: str,
        new_status: str,
        reviewed_by: str | None = None,
        review_comments: str | None = None,
        rejection_reason: str | None = None,
    ) -> bool:
        now = utc_now_iso()
        reviewed_at = now if reviewed_by else None
        cursor = db.execute(
            """
            UPDATE quotes
            SET status = ?, updated_at = ?,
                reviewed_at = COALESCE(?, reviewed_at),
                reviewed_by = COALESCE(?, reviewed_by),
                review_comments = COALESCE(?, review_comments),
                rejection_reason = COALESCE(?, rejection_reason)
            WHERE id = ? AND team_id = ? AND status = ?
            """,
            (
                new_status,
                now,
                reviewed_at,
                reviewed_by,
                review_comments,
                rejection_reason,
                quote_id,
                self.team_id,
                expected_status,
            ),
        )
        return cursor.rowcount == 1

    def reject_open_siblings(
        self,
        db,
        *,
        intervention_id: int,
        except_quote_id: int,
        reason: str,
        reviewed_by: str,
    ) -> list[dict[str, Any]]:
        rows = db.execute(
            """
            SELECT id, provider_id
            FROM quotes
            WHERE intervention_id = ? AND team_id = ? AND id <> ? AND status IN ('pending', 'sent')
            ORDER BY id
            """,
            (intervention_id, self.team_id, except_quote_id),
        ).fetchall()
        siblings = self.rows_to_dicts(rows)
        if siblings:
            now = utc_now_iso()
            db.execute(
                """
                UPDATE quotes
                SET status = 'rejected', rejection_reason = ?, reviewed_by = ?, reviewed_at = ?, updated_at = ?
                WHERE intervention_id = ? AND team_id = ? AND id <> ? AND status IN ('pending', 'sent')
                """,
                (reason, reviewed_by, now, now, intervention_id, self.team_id, except_quote_id),
            )
        return siblings
