"""
Database module.
Contains database connection, models, and repository implementations.
"""

from cmdqueue.db.connection import (
    close_db,
    create_schema,
    get_engine,
    get_session_context,
    init_db,
)
from cmdqueue.db.models import Base, ConfigEntry, Job

__all__ = [
    "get_session_context",
    "get_engine",
    "init_db",
    "create_schema",
    "close_db",
    "Job",
    "ConfigEntry",
    "Base",
]
