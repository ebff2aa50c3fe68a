import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


logger = logging.getLogger(__name__)


def connect_args_for(database_url: str, query_timeout_secs: float) -> dict[str, object]:
    """Driver arguments that bound how long a single statement may block."""
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": query_timeout_secs}
    if database_url.startswith("postgresql"):
        timeout_ms = int(query_timeout_secs * 1000)
        return {"options": f"-c statement_timeout={timeout_ms}"}
    return {}


def _sqlite_pragmas(query_timeout_secs: float):
    busy_ms = int(query_timeout_secs * 1000)

    def on_connect(dbapi_conn, _record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.execute(f"PRAGMA busy_timeout={busy_ms};")
        cursor.close()

    return on_connect


def build_engine(
    database_url: str, query_timeout_secs: float = 10.0, **engine_kwargs
) -> Engine:
    eng = create_engine(
        database_url,
        connect_args=connect_args_for(database_url, query_timeout_secs),
        **engine_kwargs,
    )
    if eng.dialect.name == "sqlite":
        event.listen(eng, "connect", _sqlite_pragmas(query_timeout_secs))
    logger.info(
        f"engine_ready: dialect={eng.dialect.name} timeout_secs={query_timeout_secs}"
    )
    return eng


_settings = get_settings()
engine = build_engine(_settings.database_url, _settings.query_timeout_secs)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope(
    factory: Optional[Callable[[], Session]] = None,
) -> Iterator[Session]:
    session: Session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
