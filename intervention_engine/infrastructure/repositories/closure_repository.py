from __future__ import annotations

import json
from typing import Any, Dict

from intervention_engine.infrastructure.repositories.base import BaseRepository, utc_now_iso


def _decode(row) -> dict:
    data = dict(row)
    data["payload"] = json.loads(data.get("payload") or "{}")
    return data


class ClosureRepository(BaseRepository):
    def record(
        self,
        db,
        *,
        intervention_id: int,
        stage: str,
        cycle: int,
        payload: Dict[str, Any],
        submitted_by: str,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO closure_artifacts (intervention_id, stage, cycle, payload, submitted_by, team_id, submitted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                intervention_id,
                stage,
                int(cycle),
                json.dumps(payload, ensure_ascii=True, sort_keys=True, default=str),
                submitted_by,
                self.team_id,
                utc_now_iso(),
            ),
        )
        return self.inserted_id(cursor)

    def list_for_intervention(self, db, intervention_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM closure_artifacts
            WHERE intervention_id = ? AND team_id = ?
            ORDER BY cycle, id
            """,
            (intervention_id, self.team_id),
        ).fetchall()
        return [_decode(row) for row in rows]
