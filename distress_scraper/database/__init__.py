"""Database package."""

from .connection import SessionLocal, check_db_connection, create_db_engine, get_db, init_db

__all__ = [
    "SessionLocal",
    "check_db_connection",
    "create_db_engine",
    "get_db",
    "init_db",
]
