from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from intervention_engine.infrastructure.repositories.base import BaseRepository, utc_now_iso


_UPDATABLE_COLUMNS = frozenset(
    {
        "scheduled_date",
        "selected_quote_id",
        "quote_deadline",
        "final_amount",
        "finalized_at",
        "correction_cycle",
    }
)


def _assignments(fields: dict[str, Any]) -> tuple[str, list[Any]]:
    unknown = set(fields) - _UPDATABLE_COLUMNS
    if unknown:
        raise ValueError(f"unsupported intervention columns: {sorted(unknown)}")
    names = sorted(fields)
    return "".join(f", {name} = ?" for name in names), [fields[name] for name in names]


class InterventionRepository(BaseRepository):
    @staticmethod
    def new_reference() -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
        return f"INT-{stamp}-{uuid.uuid4().hex[:6].upper()}"

    def create(
        self,
        db,
        *,
        title: str,
        description: str,
        tenant_user_id: str | None,
        intervention_type: str | None,
        urgency: str,
        lot_reference: str | None,
        building_reference: str | None,
        created_by: str | None,
        status: str = "demande",
    ) -> tuple[int, str]:
        now = utc_now_iso()
        reference = self.new_reference()
        cursor = db.execute(
            """
            INSERT INTO interventions (
                reference, title, description, intervention_type, urgency, status,
                tenant_user_id, lot_reference, building_reference, created_by,
                team_id, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                reference,
                title,
                description,
                intervention_type,
                urgency,
                status,
                tenant_user_id,
                lot_reference,
                building_reference,
                created_by,
                self.team_id,
                now,
                now,
            ),
        )
        return self.inserted_id(cursor), reference

    def get_by_id(self, db, intervention_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM interventions
            WHERE id = ? AND team_id = ?
            LIMIT 1
            """,
            (intervention_id, self.team_id),
        ).fetchone()
        return dict(row) if row else None

    def compare_and_set_status(
        self,
        db,
        intervention_id: int,
        *,
        expected_status: str,
        new_status: str,
        **fields: Any,
    ) -> bool:
        """Move the status only if nobody moved it since ``expected_status`` was read."""
        extra_sql, extra_params = _assignments(fields)
        cursor = db.execute(
            f"""
            UPDATE interventions
            SET status = ?, version = version + 1, updated_at = ?{extra_sql}
            WHERE id = ? AND team_id = ? AND status = ?
            """,
            (new_status, utc_now_iso(), *extra_params, intervention_id, self.team_id, expected_status),
        )
        return cursor.rowcount == 1

    def update_fields(self, db, intervention_id: int, **fields: Any) -> None:
        if not fields:
            return
        extra_sql, extra_params = _assignments(fields)
        db.execute(
            f"""
            UPDATE interventions
            SET version = version + 1, updated_at = ?{extra_sql}
            WHERE id = ? AND team_id = ?
            """,
            (utc_now_iso(), *extra_params, intervention_id, self.team_id),
        )
