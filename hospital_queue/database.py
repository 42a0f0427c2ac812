# hospital_queue/database.py
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import DATABASE_URL
from .errors import ConcurrencyError, InfrastructureError


def make_engine(url: str):
    """Create an engine; SQLite gets thread-safe settings and foreign keys."""
    if url.startswith("sqlite"):
        engine = create_engine(
            url, connect_args={"check_same_thread": False, "timeout": 15}
        )

        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys = ON")
            cursor.close()

        return engine
    return create_engine(url, pool_pre_ping=True, pool_recycle=3600)


engine = make_engine(DATABASE_URL)

# Each request gets its own session from this factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# ORM models inherit from this class
Base = declarative_base()


def init_db(bind=None):
    """Create all tables. Schema changes belong to a separate migration step."""
    # Import models so they register on Base.metadata
    from .modules.checkins import models as _checkins  # noqa: F401
    from .modules.queue import models as _queue  # noqa: F401
    from .modules.triage import models as _triage  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def get_db():
    """Dependency: one database session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


_CONTENTION_MARKERS = ("database is locked", "deadlock", "lock wait timeout", "could not serialize")


@contextmanager
def atomic(db: Session):
    """Commit everything done inside the block, or roll all of it back."""
    try:
        yield db
        db.commit()
    except OperationalError as exc:
        db.rollback()
        message = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
        if any(marker in message for marker in _CONTENTION_MARKERS):
            raise ConcurrencyError("Lane is busy, please retry.") from exc
        raise InfrastructureError("Database unavailable.") from exc
    except Exception:
        db.rollback()
        raise
