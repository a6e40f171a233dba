from __future__ import annotations

from pathlib import Path
from typing import Dict, List

import click
from alembic import command
from alembic.config import Config as AlembicConfig
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from flask import Flask
from sqlalchemy import create_engine, pool


def _project_root() -> Path:
    return Path(__file__).resolve().parents[1]


def to_sqlalchemy_url(raw_db_path: str) -> str:
    """Turn ``DB_PATH`` (a sqlite file or a postgres DSN) into a SQLAlchemy URL."""
    raw = (raw_db_path or "").strip()
    if not raw:
        raise RuntimeError("DB_PATH non defini pour les migrations.")
    if raw.startswith("postgres://"):
        raw = "postgresql://" + raw[len("postgres://") :]
    if raw.startswith(("postgresql://", "postgresql+", "sqlite://", "sqlite+pysqlite://")):
        return raw
    return f"sqlite:///{Path(raw).expanduser().resolve().as_posix()}"


def _ensure_sqlite_parent(url: str) -> None:
    if url.startswith("sqlite:///") and url != "sqlite:///:memory:":
        Path(url[len("sqlite:///") :]).parent.mkdir(parents=True, exist_ok=True)


def build_alembic_config(app: Flask) -> AlembicConfig:
    root = _project_root()
    alembic_ini = root / "alembic.ini"
    if not alembic_ini.exists():
        raise RuntimeError("alembic.ini introuvable a la racine du projet.")

    url = to_sqlalchemy_url(app.config["DB_PATH"])
    _ensure_sqlite_parent(url)

    alembic_cfg = AlembicConfig(str(alembic_ini))
    alembic_cfg.set_main_option("script_location", (root / "migrations").as_posix())
    # ConfigParser interpolation: a '%' in a DSN password must be doubled.
    alembic_cfg.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    alembic_cfg.attributes["database_url"] = url
    alembic_cfg.attributes["configure_logger"] = False
    return alembic_cfg


def migration_status(app: Flask) -> Dict[str, List[str]]:
    cfg = build_alembic_config(app)
    script = ScriptDirectory.from_config(cfg)
    engine = create_engine(cfg.attributes["database_url"], poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            current = set(MigrationContext.configure(connection).get_current_heads())
    finally:
        engine.dispose()

    pending: List[str] = []
    for revision in script.walk_revisions():
        if revision.revision in current:
            break
        pending.append(revision.revision)
    return {
        "current": sorted(current),
        "head": sorted(script.get_heads()),
        "pending": list(reversed(pending)),
    }


def register_db_cli(app: Flask) -> None:
    @app.cli.group("db")
    def db_group() -> None:
        """Schema des interventions (Alembic)."""

    @db_group.command("upgrade")
    @click.argument("revision", required=False, default="head")
    def db_upgrade(revision: str) -> None:
        command.upgrade(build_alembic_config(app), revision)
        click.echo(f"Schema des interventions migre jusqu'a {revision}.")

    @db_group.command("downgrade")
    @click.argument("revision", required=False, default="-1")
    def db_downgrade(revision: str) -> None:
        command.downgrade(build_alembic_config(app), revision)
        click.echo(f"Schema des interventions ramene a {revision}.")

    @db_group.command("stamp")
    @click.argument("revision", required=False, default="head")
    def db_stamp(revision: str) -> None:
        """Marque une base creee par DB_AUTO_INIT sans rejouer les migrations."""
        command.stamp(build_alembic_config(app), revision)
        click.echo(f"Base marquee a la revision {revision}.")

    @db_group.command("status")
    def db_status() -> None:
        status = migration_status(app)
        click.echo("Revision courante: " + (", ".join(status["current"]) or "aucune"))
        click.echo("Revision cible: " + ", ".join(status["head"]))
        if status["pending"]:
            raise click.ClickException(
                f"{len(status['pending'])} migration(s) en attente: " + ", ".join(status["pending"])
            )
        click.echo("Schema a jour.")
