import logging
from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings

logger = logging.getLogger(__name__)

STORE_PRAGMAS = ("journal_mode=WAL", "foreign_keys=ON", "busy_timeout=5000")


def _on_store_connect(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    for pragma in STORE_PRAGMAS:
        cursor.execute(f"PRAGMA {pragma};")
    cursor.close()


def build_store_engine(url: str) -> Engine:
    """Engine for the savings store (projects, goals, allocations)."""
    is_sqlite = url.startswith("sqlite")
    eng = create_engine(
        url, connect_args={"check_same_thread": False} if is_sqlite else {}
    )
    if is_sqlite:
        event.listen(eng, "connect", _on_store_connect)
    return eng


engine = build_store_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    """Tables owned by this application."""


@contextmanager
def session_scope() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@lru_cache(maxsize=4)
def _ledger_engine(path: str) -> Engine:
    # The imported ledger is never written to; open it through a read-only URI.
    url = f"sqlite:///file:{path}?mode=ro&uri=true"
    return create_engine(url, connect_args={"check_same_thread": False})


def open_ledger_session(path: Optional[Path] = None) -> Optional[Session]:
    """Return a session on the imported ledger, or None when it is not there yet."""
    ledger_path = path or get_settings().ledger_path
    if not ledger_path.exists():
        logger.warning(f"ledger_missing: path={ledger_path}")
        return None
    return Session(bind=_ledger_engine(str(ledger_path)), autoflush=False)
