from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


def build_engine(database_url: str) -> Engine:
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)

    eng = create_engine(
        database_url,
        connect_args={"check_same_thread": False, "timeout": 15},
    )
    event.listen(eng, "connect", _on_sqlite_connect)
    event.listen(eng, "begin", _on_sqlite_begin)
    return eng


def _on_sqlite_connect(dbapi_conn, _record):
    # pysqlite's own BEGIN handling breaks SAVEPOINT; transactions are
    # started explicitly in _on_sqlite_begin instead
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    # concurrent writers for the same owner wait instead of failing fast
    cursor.execute("PRAGMA busy_timeout=15000;")
    cursor.close()


def _on_sqlite_begin(conn):
    # guarded writes ask for IMMEDIATE so they queue on busy_timeout
    mode = conn.get_execution_options().get("sqlite_begin", "")
    conn.exec_driver_sql(f"BEGIN {mode}".strip())


engine = build_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def init_db(bind: Engine = engine) -> None:
    """Create any missing tables; alembic owns schema changes after that."""
    import models  # noqa: F401  registers the mappers on Base.metadata

    Base.metadata.create_all(bind)


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
