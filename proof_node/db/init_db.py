"""Schema bootstrap for the proof store.

Alembic owns the schema when its migrations directory ships next to the
package; otherwise the SQLModel metadata is created directly.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel

from proof_node.db import tables  # noqa: F401  registers every table on SQLModel.metadata

logger = logging.getLogger(__name__)

# Children before parents, so a reset never trips a foreign key
PROOF_TABLES = (
    "batch_verification_logs",
    "proof_verification_logs",
    "merkle_tree_leaves",
    "merkle_tree_batches",
    "timestamp_proofs",
    "documents",
)


def _default_engine() -> Engine:
    from proof_node.db.session import build_engine

    return build_engine()


def migrations_dir() -> Path | None:
    """``ALEMBIC_DIR`` if set, else ``alembic/`` at the repository root."""
    candidates = []
    if os.getenv("ALEMBIC_DIR"):
        candidates.append(Path(os.environ["ALEMBIC_DIR"]))
    candidates.append(Path(__file__).resolve().parents[2] / "alembic")

    for candidate in candidates:
        if (candidate / "env.py").is_file() and (candidate / "versions").is_dir():
            return candidate
    return None


def _alembic_upgrade(target: Engine, directory: Path) -> None:
    from alembic import command
    from alembic.config import Config

    config = Config()
    config.set_main_option("script_location", str(directory))
    # str(engine.url) masks the password; configparser needs % escaped
    url = target.url.render_as_string(hide_password=False).replace("%", "%%")
    config.set_main_option("sqlalchemy.url", url)
    command.upgrade(config, "head")


def migrate(target: Engine | None = None) -> None:
    """Bring the proof schema up to date. Never drops data."""
    target = target or _default_engine()
    directory = migrations_dir()
    if directory is None:
        logger.info("no migrations directory, creating proof tables from metadata")
        SQLModel.metadata.create_all(target)
    else:
        logger.info("applying migrations from %s", directory)
        try:
            _alembic_upgrade(target, directory)
        except Exception as exc:
            logger.warning("migration failed (%s), creating proof tables from metadata", exc)
            SQLModel.metadata.create_all(target)
    logger.info("proof schema ready")


def reset_db(target: Engine | None = None) -> None:
    """Drop every proof table and recreate the schema. Destroys all proofs."""
    target = target or _default_engine()
    logger.warning("dropping proof tables: %s", ", ".join(PROOF_TABLES))
    with target.begin() as conn:
        for table in (*PROOF_TABLES, "alembic_version"):
            conn.execute(text(f"DROP TABLE IF EXISTS {table}"))
    migrate(target)


def schema_missing(target: Engine) -> list[str]:
    existing = set(inspect(target).get_table_names())
    return [table for table in PROOF_TABLES if table not in existing]


def auto_migrate(target: Engine | None = None) -> None:
    """Create the schema on first boot, otherwise apply pending migrations."""
    target = target or _default_engine()
    missing = schema_missing(target)
    if missing:
        logger.info("proof tables missing: %s", ", ".join(missing))
    migrate(target)


if __name__ == "__main__":
    import sys

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    )
    if "--reset" in sys.argv:
        reset_db()
    else:
        migrate()
