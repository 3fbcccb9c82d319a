from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from loyalty.core.config import DATABASE_URL, SQL_ECHO, SQLITE_BUSY_TIMEOUT_SECONDS

Base = declarative_base()


def build_engine(url: str, **kwargs) -> Engine:
    """Cria o engine; SQLite ganha busy timeout, WAL e foreign keys por conexão."""
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", SQLITE_BUSY_TIMEOUT_SECONDS)
        engine = create_engine(url, connect_args=connect_args, **kwargs)

        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_conn, _):
            cur = dbapi_conn.cursor()
            try:
                if ":memory:" not in url:
                    cur.execute("PRAGMA journal_mode=WAL;")
                cur.execute("PRAGMA foreign_keys=ON;")
            finally:
                cur.close()

        return engine

    return create_engine(url, pool_pre_ping=True, **kwargs)


engine = build_engine(DATABASE_URL, echo=SQL_ECHO)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
