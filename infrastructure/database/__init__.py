"""Async database access for the publishing backend."""

from .connection import Base, async_session_maker, close_db, engine, get_db, init_db

__all__ = [
    "Base",
    "engine",
    "async_session_maker",
    "get_db",
    "init_db",
    "close_db",
]
