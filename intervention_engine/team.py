from flask import g, request, session


DEFAULT_TEAM_ID = "team-demo"


def current_team_id() -> str | None:
    return (
        normalize_team_id(session.get("team_id"))
        or normalize_team_id(getattr(g, "team_id", None))
        or normalize_team_id(request.headers.get("X-Team-Id"))
    )


def normalize_team_id(value: str | None) -> str | None:
    team_id = str(value or "").strip()
    return team_id or None


def scoped_team_id(value: str | None = None) -> str:
    return normalize_team_id(value) or current_team_id() or DEFAULT_TEAM_ID
