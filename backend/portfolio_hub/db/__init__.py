"""Database engine, session, and schema helpers."""

from .base import Base
from .init import init_database
from .session import Database, get_database

__all__ = ["Base", "Database", "get_database", "init_database"]
