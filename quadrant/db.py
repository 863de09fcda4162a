from __future__ import annotations

import re
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from quadrant.config import get_settings
from quadrant.models import Base

_UNSAFE_CHARS_RE = re.compile(r"[^a-zA-Z0-9_-]")


def clean_session_id(raw: str) -> str:
    """Normalize a user-typed session id. Raises ValueError if nothing is left."""
    cleaned = _UNSAFE_CHARS_RE.sub("-", (raw or "").strip()).lower()
    if not cleaned:
        raise ValueError("Invalid session id (letters, numbers, hyphens, underscores)")
    return cleaned


_lock = threading.Lock()
_engine = None
_SessionLocal = None


def init_db(db_path: str | Path | None = None) -> None:
    """(Re)bind the module engine to the SQLite file holding every scoring session."""
    global _engine, _SessionLocal
    with _lock:
        if _engine is not None:
            _engine.dispose()
        if db_path is None:
            db_path = get_settings().database_path
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        _engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
        Base.metadata.create_all(_engine)
        _SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)


def get_session() -> Session:
    with _lock:
        if _SessionLocal is None:
            raise RuntimeError("init_db() has not been called")
        factory = _SessionLocal
    return factory()  # type: ignore[misc]


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Session for one CLI command; store writes commit themselves, errors roll back."""
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
