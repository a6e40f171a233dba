from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable


class TeamScopeRequiredError(ValueError):
    """Raised when a repository is instantiated without team scope."""


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class BaseRepository:
    def __init__(self, *, team_id: str | None = None) -> None:
        scope = str(team_id or "").strip()
        if not scope:
            raise TeamScopeRequiredError("team_id is required for repository access")
        self.team_id = scope

    @staticmethod
    def inserted_id(cursor) -> int:
        # Drain the cursor so the RETURNING statement is finished before COMMIT.
        row = cursor.fetchall()[0]
        return int(row["id"] if isinstance(row, dict) else row[0])

    @staticmethod
    def rows_to_dicts(rows: Iterable[Any]) -> list[dict]:
        return [dict(row) for row in rows]
