"""Engine and sessions for the audit and allowlist tables.

SQLite (the default) shares one connection across the audit writer thread
and request handlers. MySQL (``mysql+pymysql://...``) gets a sized,
recycled pool. ``init_database()`` keeps retrying while the database is
locked or still refusing connections during a deploy.
"""

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from nidservice.config import DATABASE_URL

log = logging.getLogger(__name__)

SQLITE_BUSY_TIMEOUT_S = 30
MYSQL_POOL_SIZE = 10
MYSQL_POOL_RECYCLE_S = 3600

TRANSIENT_ERROR_MARKERS = ("database is locked", "SQLITE_BUSY", "Can't connect")


def is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def engine_options(url: str) -> Dict[str, Any]:
    """Keyword arguments for ``create_engine`` on the given backend."""
    options: Dict[str, Any] = {"echo": False, "pool_pre_ping": True}
    if is_sqlite(url):
        options["connect_args"] = {
            "check_same_thread": False,
            "timeout": SQLITE_BUSY_TIMEOUT_S,
        }
        options["poolclass"] = StaticPool
    else:
        options["pool_size"] = MYSQL_POOL_SIZE
        options["pool_recycle"] = MYSQL_POOL_RECYCLE_S
    return options


engine = create_engine(DATABASE_URL, **engine_options(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@event.listens_for(engine, "connect")
def _tune_sqlite(dbapi_connection, connection_record):
    if not is_sqlite(DATABASE_URL):
        return
    cursor = dbapi_connection.cursor()
    for pragma in (
        "journal_mode=WAL",
        "synchronous=NORMAL",
        f"busy_timeout={SQLITE_BUSY_TIMEOUT_S * 1000}",
    ):
        cursor.execute(f"PRAGMA {pragma}")
    cursor.close()


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """Session for non-request code (audit writer, CLI).

    Commits when the block exits cleanly, rolls back otherwise.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def check_database() -> bool:
    """Return True if the database answers a trivial query."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        log.warning(f"Database health check failed: {e}")
        return False


def is_transient_error(error: OperationalError) -> bool:
    message = str(error)
    return any(marker in message for marker in TRANSIENT_ERROR_MARKERS)


def _ensure_sqlite_directory(url: str) -> None:
    if not url.startswith("sqlite:///"):
        return
    db_path = url[len("sqlite:///"):]
    if db_path and db_path != ":memory:":
        directory = Path(db_path).parent
        directory.mkdir(parents=True, exist_ok=True)
        log.info(f"Using SQLite database directory {directory}")


def init_database(max_retries: int = 5, base_delay: float = 2.0) -> None:
    """Create all tables.

    Transient failures are retried with a delay that doubles each attempt
    (``base_delay``, ``2 * base_delay``, ...). Any other failure, or the
    last attempt failing, re-raises the ``OperationalError``.
    """
    from nidservice.db.models import Base

    log.info("Initializing database")
    _ensure_sqlite_directory(DATABASE_URL)

    for attempt in range(1, max_retries + 1):
        try:
            Base.metadata.create_all(bind=engine)
        except OperationalError as e:
            if attempt == max_retries or not is_transient_error(e):
                log.error(f"Database initialization failed: {e}")
                raise
            delay = base_delay * 2 ** (attempt - 1)
            log.warning(
                f"Database not ready, attempt {attempt}/{max_retries}; "
                f"retrying in {delay:.1f}s"
            )
            time.sleep(delay)
        else:
            log.info("Database tables ready")
            return
