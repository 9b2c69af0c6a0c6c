from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from flask import Flask
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import DEFAULT_CONFIG

_engine = None
SessionLocal = scoped_session(sessionmaker(autocommit=False, autoflush=False))


def init_engine(database_url: str, echo: bool = False) -> Engine:
    """Bind the session factory to ``database_url`` and create the tables."""
    global _engine
    options = {"echo": echo, "future": True}
    if database_url.startswith("sqlite:///") and ":memory:" not in database_url:
        Path(database_url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
    elif database_url.startswith("sqlite"):
        # a single shared connection keeps the in-memory database alive
        options.update(connect_args={"check_same_thread": False}, poolclass=StaticPool)
    _engine = create_engine(database_url, **options)
    SessionLocal.remove()
    SessionLocal.configure(bind=_engine)
    from . import models  # noqa: F401

    models.Base.metadata.create_all(bind=_engine)
    return _engine


def init_db(app: Flask) -> None:
    database_url = app.config.get("DATABASE_URL", DEFAULT_CONFIG["DATABASE_URL"])
    init_engine(database_url, bool(app.config.get("DATABASE_ECHO", False)))

    @app.teardown_appcontext
    def _remove_session(exc=None) -> None:
        SessionLocal.remove()


@contextmanager
def session_scope() -> Iterator[Session]:
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
