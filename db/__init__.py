"""Database module for the Media Query Generator."""
from db.connection import get_db, init_db, make_engine, make_session_factory, SessionLocal, engine
from db.models import (
    Base,
    QueryTemplate,
    GeneratedQuery,
    QueryPerformanceLog,
)
from db.store import QueryStore

__all__ = [
    "get_db",
    "init_db",
    "make_engine",
    "make_session_factory",
    "SessionLocal",
    "engine",
    "Base",
    "QueryTemplate",
    "GeneratedQuery",
    "QueryPerformanceLog",
    "QueryStore",
]
