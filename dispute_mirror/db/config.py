"""
Database configuration for the Dispute Mirror sync service.

Creates the SQLAlchemy engine and session factory from DATABASE_URL on first
use, so importing the package never opens a connection.
"""

from dotenv import load_dotenv
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import sessionmaker

from ..config.loader import cfg, get_database_url

# Load environment variables from .env file
load_dotenv()


class DatabaseConfig:
    """Database configuration singleton."""

    _engine: Engine | None = None
    _session_factory: sessionmaker | None = None

    @classmethod
    def get_engine(cls) -> Engine:
        """Get SQLAlchemy engine (singleton)."""
        if cls._engine is None:
            database_url = get_database_url()
            options = {"pool_pre_ping": True, "echo": False}
            if not database_url.startswith("sqlite"):
                options.update(
                    pool_size=cfg("database.pool_size", 10),
                    max_overflow=cfg("database.max_overflow", 20),
                )
            cls._engine = create_engine(database_url, **options)
        return cls._engine

    @classmethod
    def get_session_factory(cls) -> sessionmaker:
        """Get session factory."""
        if cls._session_factory is None:
            cls._session_factory = sessionmaker(
                bind=cls.get_engine(),
                autoflush=False,
                autocommit=False,
                expire_on_commit=False,
            )
        return cls._session_factory

    @classmethod
    def reset(cls) -> None:
        """Dispose of the engine so the next call reconnects."""
        if cls._engine is not None:
            cls._engine.dispose()
        cls._engine = None
        cls._session_factory = None
