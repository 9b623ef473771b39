"""SQLite connection helpers shared by the persistent backends."""

import contextlib
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)

# Open write transactions of the current thread, keyed by database path
_local = threading.local()


def resolve_db_path(db_path: Union[str, Path]) -> Path:
    """Expand and validate a database path, creating its parent directory."""
    try:
        resolved_path = Path(db_path).expanduser().resolve()
        resolved_path.parent.mkdir(parents=True, exist_ok=True)
        return resolved_path
    except (OSError, ValueError) as e:
        logger.error(f"Invalid database path: {e}")
        raise ValueError(f"Invalid database path: {e}")


def get_conn(db_path: Path) -> sqlite3.Connection:
    """Open a connection with row access by column name.

    Callers should prefer ``connect()`` which also commits and closes.
    """
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    return conn


def _open_transactions() -> Dict[str, sqlite3.Connection]:
    if not hasattr(_local, "conns"):
        _local.conns = {}
    return _local.conns


def active_connection(db_path: Path) -> Optional[sqlite3.Connection]:
    """The connection of the write transaction this thread holds on ``db_path``."""
    return _open_transactions().get(str(db_path))


@contextlib.contextmanager
def transaction(db_path: Path):
    """Hold the database write lock for the whole block.

    The transaction starts with ``BEGIN IMMEDIATE``, so other connections,
    including other processes, wait until it commits or rolls back. Every
    ``connect()`` on the same path in this thread joins it instead of
    committing on its own. A nested ``transaction()`` joins as well.
    """
    conns = _open_transactions()
    key = str(db_path)
    if key in conns:
        yield conns[key]
        return

    conn = get_conn(db_path)
    try:
        conn.execute("BEGIN IMMEDIATE")
        conns[key] = conn
        yield conn
        conn.commit()
    except Exception as e:
        logger.debug(f"Transaction failed, rolling back: {e}")
        conn.rollback()
        raise
    finally:
        conns.pop(key, None)
        conn.close()


@contextlib.contextmanager
def connect(db_path: Path):
    """Context manager that handles transactions AND closes connection.

    - Transaction commit on success
    - Transaction rollback on exception
    - Connection close in all cases

    Inside ``transaction()`` the open connection is reused and the outer
    block decides whether to commit.
    """
    active = active_connection(db_path)
    if active is not None:
        yield active
        return

    conn = get_conn(db_path)
    try:
        yield conn
        conn.commit()
    except Exception as e:
        logger.debug(f"Transaction failed, rolling back: {e}")
        conn.rollback()
        raise
    finally:
        conn.close()
