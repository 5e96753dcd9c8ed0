"""
Database dependency management for the Dispute Mirror sync service.

Provides the session context manager used by jobs, scripts and the health
endpoint.
"""

from collections.abc import Callable, Generator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from .config import DatabaseConfig

SessionFactory = Callable[[], Session]


@contextmanager
def get_session(session_factory: SessionFactory | None = None) -> Generator[Session, None, None]:
    """
    Context manager that yields a database session and ensures proper cleanup.

    Automatically handles:
    - Session creation
    - Transaction commit on success
    - Rollback on exception
    - Session cleanup

    Usage:
        with get_session() as session:
            account = session.get(PayPalAccount, account_id)
            # Commit happens automatically if no exception
    """
    factory = session_factory or DatabaseConfig.get_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
