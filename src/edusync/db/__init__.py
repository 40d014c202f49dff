"""Database module for the local document store.

Provides:
- SQLite connection management and schema (database)
- Pydantic schemas per collection (schemas)
- Migration chains applied on open (migrations)
- DocumentStore with queries and live subscriptions (store)
"""

from edusync.db.database import get_db, init_db
from edusync.db.store import DocumentStore, open_store, reset_store
from edusync.db.subscriptions import Subscription

__all__ = [
    "DocumentStore",
    "Subscription",
    "get_db",
    "init_db",
    "open_store",
    "reset_store",
]
