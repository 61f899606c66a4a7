"""
Local persistence: SQLAlchemy models, engine/session helpers and LocalStore.
"""

from triviafeed.db.database import create_local_engine, get_engine, init_db, session_scope
from triviafeed.db.local_store import LocalStore

__all__ = ["LocalStore", "create_local_engine", "get_engine", "init_db", "session_scope"]
