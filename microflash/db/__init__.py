"""Database package."""

from microflash.db.base import Base, async_session_maker, engine, get_db, init_db

__all__ = ["engine", "async_session_maker", "Base", "get_db", "init_db"]
