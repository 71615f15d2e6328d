from __future__ import annotations

import os

from sqlalchemy.engine import Engine
from sqlmodel import Session, create_engine

from proof_node.config.runtime import RuntimeSettings


def database_url() -> str:
    explicit = os.getenv("DATABASE_URL")
    if explicit:
        return explicit
    user = os.getenv("POSTGRES_USER", "proofs")
    password = os.getenv("POSTGRES_PASSWORD", "proofs")
    host = os.getenv("POSTGRES_HOST", "postgres")
    port = os.getenv("POSTGRES_PORT", "5432")
    db = os.getenv("POSTGRES_DB", "proofs")
    return f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{db}"


def build_engine(settings: RuntimeSettings | None = None, url: str | None = None) -> Engine:
    """Create the engine; PostgreSQL connections fail fast instead of hanging."""
    settings = settings or RuntimeSettings.from_env()
    url = url or database_url()
    timeout_seconds = settings.persistence_timeout_seconds
    if url.startswith("postgresql"):
        return create_engine(
            url,
            pool_pre_ping=True,
            pool_timeout=timeout_seconds,
            connect_args={
                "connect_timeout": max(1, int(timeout_seconds)),
                "options": f"-c statement_timeout={int(timeout_seconds * 1000)}",
            },
        )
    return create_engine(url)


_migrated: set[str] = set()


def create_session(engine: Engine) -> Session:
    """Open a session, bringing the schema up to date on first use of ``engine``."""
    key = engine.url.render_as_string(hide_password=False)
    if key not in _migrated:
        from proof_node.db.init_db import auto_migrate
        auto_migrate(engine)
        _migrated.add(key)
    return Session(engine)
