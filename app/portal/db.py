from __future__ import annotations

from contextlib import contextmanager
from collections.abc import Generator

from flask import Flask, g
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker


def init_db(app: Flask) -> None:
    db_url = app.config["DATABASE_URL"]
    is_postgres = db_url.startswith("postgres")
    engine_kwargs: dict[str, object] = {
        "future": True,
        "pool_pre_ping": True,
    }
    if is_postgres:
        engine_kwargs.update(
            {
                "pool_recycle": 1800,
                "pool_size": 5,
                "max_overflow": 10,
                "pool_timeout": 30,
            }
        )
    engine = create_engine(db_url, **engine_kwargs)
    if db_url.startswith("sqlite"):
        # Deleting a user relies on ON DELETE CASCADE / SET NULL, which sqlite only honours with this pragma.
        @event.listens_for(engine, "connect")
        def _sqlite_foreign_keys(dbapi_connection, connection_record):  # type: ignore[no-redef]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def db_session(app: Flask | None = None) -> Session:
    """
    Request-scoped session. Use inside request handlers.
    Nothing is committed unless the handler calls commit(); teardown closes
    (and so rolls back) whatever is left.
    """
    if hasattr(g, "db_session") and g.db_session is not None:
        return g.db_session
    if app is None:
        from flask import current_app

        app = current_app
    sm = app.extensions["sqlalchemy_sessionmaker"]
    g.db_session = sm()  # type: ignore[assignment]
    return g.db_session


def rollback_db_session() -> None:
    s: Session | None = getattr(g, "db_session", None)
    if s is not None:
        s.rollback()


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = getattr(g, "db_session", None)
    if s is not None:
        s.close()
        g.db_session = None


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """
    Non-request helper for scripts and tests: yields a session and commits/rolls back.
    """
    sm = app.extensions["sqlalchemy_sessionmaker"]
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
