"""
Database Persistence Layer.

Async SQLAlchemy engine, session factory and declarative base.
"""

from .engine import (
    Base,
    DatabasePersistenceError,
    DatabaseConnectionError,
    get_database_url,
    create_database_engine,
    create_session_factory,
    session_scope,
    verify_database_connection,
    create_all_tables,
)
