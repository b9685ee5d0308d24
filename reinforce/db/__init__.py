# Database module
from .database import configure_engine, get_engine, init_db, session_scope

__all__ = ["configure_engine", "get_engine", "init_db", "session_scope"]
