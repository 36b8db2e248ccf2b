"""
Storage - Database.

============================================================
RESPONSIBILITY
============================================================
Manages database connections and sessions.

- Builds the engine from configuration (DATABASE_URL)
- Provides session and transaction scopes
- Creates the schema on startup

============================================================
DESIGN PRINCIPLES
============================================================
- One Database object per process, created in the composition
  root and passed to whoever needs sessions
- Explicit transaction boundaries: commit on success, rollback
  on ANY exception
- Hard failures on persistence errors

============================================================
"""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Generator, List, Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from storage.models import Base


# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


DEFAULT_DATABASE_URL = "sqlite:///data/delivery_engine.db"

REQUIRED_TABLES = [
    "reports",
    "scheduled_jobs",
    "report_delivery_history",
    "kpis",
    "kpi_alerts",
    "alert_history",
]


# =============================================================
# CUSTOM EXCEPTIONS
# =============================================================

class DatabasePersistenceError(Exception):
    """Raised when database persistence fails."""
    pass


class DatabaseConnectionError(DatabasePersistenceError):
    """Raised when database connection fails."""
    pass


class DatabaseInitializationError(DatabasePersistenceError):
    """Raised when database initialization fails."""
    pass


# =============================================================
# CONFIGURATION
# =============================================================

@dataclass
class DatabaseConfig:
    """Database connection settings."""

    url: str = DEFAULT_DATABASE_URL
    """SQLAlchemy URL."""

    pool_size: int = 5
    """Connections kept in the pool (ignored for SQLite)."""

    max_overflow: int = 10
    """Extra connections beyond pool_size (ignored for SQLite)."""

    pool_recycle: int = 1800
    """Recycle connections after N seconds."""

    echo: bool = False
    """Log SQL statements."""

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Load configuration from environment variables."""
        url = os.getenv("DATABASE_URL")
        if not url:
            url = DEFAULT_DATABASE_URL
            logger.warning(f"DATABASE_URL not set, using default: {url}")

        return cls(
            url=url,
            pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            pool_recycle=int(os.getenv("DB_POOL_RECYCLE", "1800")),
            echo=os.getenv("DB_ECHO", "false").lower() == "true",
        )

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def is_memory(self) -> bool:
        return self.is_sqlite and (self.url in ("sqlite://", "sqlite:///:memory:"))


# =============================================================
# DATABASE
# =============================================================

class Database:
    """
    Engine and session factory holder.

    Usage:
        database = Database(DatabaseConfig.from_env())
        database.initialize()

        with database.transaction_scope() as session:
            repo = JobBindingRepository(session)
            ...
    """

    def __init__(self, config: Optional[DatabaseConfig] = None) -> None:
        self._config = config or DatabaseConfig.from_env()
        self._engine = self._create_engine()
        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def engine(self) -> Engine:
        return self._engine

    def _create_engine(self) -> Engine:
        """Create SQLAlchemy engine with pooling suited to the backend."""
        config = self._config
        logger.info(f"Creating database engine for: {config.url.split('@')[-1]}")

        if config.is_sqlite:
            if not config.is_memory:
                db_path = config.url.replace("sqlite:///", "", 1)
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)

            options = {"connect_args": {"check_same_thread": False}}
            if config.is_memory:
                # One shared connection, or every session sees an empty database
                options["poolclass"] = StaticPool
            engine = create_engine(config.url, echo=config.echo, **options)
        else:
            engine = create_engine(
                config.url,
                pool_size=config.pool_size,
                max_overflow=config.max_overflow,
                pool_recycle=config.pool_recycle,
                pool_pre_ping=True,
                echo=config.echo,
            )

        @event.listens_for(engine, "connect")
        def on_connect(dbapi_conn, connection_record):
            logger.debug("Database connection established")

        return engine

    # ---------------------------------------------------------
    # Sessions
    # ---------------------------------------------------------

    def get_session(self) -> Session:
        """
        Get a new database session.

        IMPORTANT: Caller is responsible for committing/closing.
        Prefer transaction_scope() instead.
        """
        return self._session_factory()

    @contextmanager
    def transaction_scope(self) -> Generator[Session, None, None]:
        """
        Context manager for explicit transaction boundaries.

        Commits only if no exception occurs.
        Rolls back on ANY exception and re-raises it unchanged so
        callers can still tell domain errors apart.
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database transaction failed, rolling back: {e}")
            session.rollback()
            raise
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    # ---------------------------------------------------------
    # Initialization
    # ---------------------------------------------------------

    def verify_connection(self) -> bool:
        """
        Verify database connection is working.

        Raises:
            DatabaseConnectionError if connection fails
        """
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            logger.info("Database connection verified successfully")
            return True
        except OperationalError as e:
            logger.error(f"Database connection failed: {e}")
            raise DatabaseConnectionError(f"Cannot connect to database: {e}") from e

    def create_all_tables(self) -> None:
        """
        Create all tables defined in ORM models.

        Raises:
            DatabaseInitializationError if table creation fails
        """
        try:
            logger.info("Creating database tables...")
            Base.metadata.create_all(bind=self._engine)
            logger.info("Database tables created successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to create database tables: {e}")
            raise DatabaseInitializationError(f"Table creation failed: {e}") from e

    def missing_tables(self) -> List[str]:
        """Return required tables that do not exist."""
        existing = set(inspect(self._engine).get_table_names())
        return [table for table in REQUIRED_TABLES if table not in existing]

    def initialize(self) -> None:
        """
        Full database initialization sequence.

        1. Verify connection
        2. Create tables if not exist
        3. Abort if any required table is still missing
        """
        logger.info("=" * 60)
        logger.info("INITIALIZING DELIVERY ENGINE DATABASE")
        logger.info("=" * 60)

        self.verify_connection()
        self.create_all_tables()

        missing = self.missing_tables()
        if missing:
            raise DatabaseInitializationError(f"Missing tables after create: {', '.join(missing)}")

        for table in REQUIRED_TABLES:
            logger.info(f"  [OK] Table verified: {table}")

    def dispose(self) -> None:
        """Release pooled connections."""
        self._engine.dispose()


__all__ = [
    "DEFAULT_DATABASE_URL",
    "REQUIRED_TABLES",
    "DatabaseConfig",
    "Database",
    "DatabasePersistenceError",
    "DatabaseConnectionError",
    "DatabaseInitializationError",
]
