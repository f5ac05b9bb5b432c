"""
Settlement Ledger Database Module

Provides SQLAlchemy models and async session management for SQLite
development databases and PostgreSQL production deployments.
"""

from .models import (
    Base,
    LedgerEntryDB,
    OperatorWalletDB,
)
from .session import (
    check_db_health,
    create_engine_for,
    drop_db,
    get_session_factory,
    init_db,
)

__all__ = [
    "Base",
    "LedgerEntryDB",
    "OperatorWalletDB",
    "check_db_health",
    "create_engine_for",
    "drop_db",
    "get_session_factory",
    "init_db",
]
