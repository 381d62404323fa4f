"""store/ -- Persistence backends for trustgate.

SessionStore (store.base) is the only contract the auth pipeline depends on.
MemoryStore and SQLStore are interchangeable implementations; build_store()
picks one from configuration.

Layer rule: store/ imports from auth.models and core/ only. It does NOT
import from api/ or from the auth components.
"""

from __future__ import annotations

from core.config import Settings
from store.base import SessionStore
from store.memory import MemoryStore


def build_store(settings: Settings) -> SessionStore:
    """Return the SQL backend when DATABASE_URL is set, else the in-memory one."""
    if settings.database_url:
        from store.sql import SQLStore

        return SQLStore(settings.database_url)
    return MemoryStore(audit_log_limit=settings.audit_log_limit)


__all__ = ["MemoryStore", "SessionStore", "build_store"]
