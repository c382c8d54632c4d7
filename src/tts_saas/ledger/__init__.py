"""
Ledger: durable subscriptions, generation records and voice clones.

    - models.py: SQLModel tables
    - database.py: Engine setup (SQLite pragmas, busy retry)
    - store.py: LedgerStore, the async facade used by the services
"""
from .database import build_engine, init_db
from .models import (
    GenerationRecord,
    GenerationStatus,
    Subscription,
    SubscriptionStatus,
    VoiceClone,
    utcnow,
)
from .store import LedgerStore

__all__ = [
    "LedgerStore",
    "Subscription",
    "SubscriptionStatus",
    "GenerationRecord",
    "GenerationStatus",
    "VoiceClone",
    "build_engine",
    "init_db",
    "utcnow",
]
