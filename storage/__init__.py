"""
Storage Package.

This package manages all data persistence for the delivery
engine: scheduled artifacts, job bindings, delivery history,
threshold rules and trigger history.

Modules:
- database: Engine, sessions and schema creation
- models/: SQLAlchemy ORM models
- repositories/: Data access layer
"""

from .database import (
    Database,
    DatabaseConfig,
    DatabasePersistenceError,
    DatabaseConnectionError,
    DatabaseInitializationError,
)


__all__ = [
    "Database",
    "DatabaseConfig",
    "DatabasePersistenceError",
    "DatabaseConnectionError",
    "DatabaseInitializationError",
]
