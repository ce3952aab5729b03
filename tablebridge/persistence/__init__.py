# ==============================================
# TOPIC 4: SESSION PERSISTENCE
# ==============================================
#
# Import sessions, column plans, relationship candidates and
# proposals survive restarts here. The store also holds the
# per-session run lock.
#
# Modules:
# --------
# - session.py        → ImportSession, TableResult, SessionStatus, ImportMode
# - session_store.py  → SessionStore, JsonSessionStore, MongoSessionStore
#
# ==============================================

from .session import ImportMode, ImportSession, SessionStatus, TableResult
from .session_store import JsonSessionStore, MongoSessionStore, SessionStore

__all__ = [
    "ImportMode",
    "ImportSession",
    "JsonSessionStore",
    "MongoSessionStore",
    "SessionStatus",
    "SessionStore",
    "TableResult",
]
