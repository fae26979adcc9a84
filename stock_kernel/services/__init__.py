"""Imperative shell: storage adapters, lifecycle tracking and reconciliation."""

from stock_kernel.services.lifecycle_tracker import LifecycleTracker
from stock_kernel.services.reconciliation_service import CountReconciler
from stock_kernel.services.serialization import KeyedLocks
from stock_kernel.services.sql_store import SqlAlchemyCountStore
from stock_kernel.services.storage import (
    CountStore,
    DispositionListener,
    InMemoryCountStore,
    InMemoryItemCatalog,
    ItemCatalog,
)

__all__ = [
    "CountReconciler",
    "CountStore",
    "DispositionListener",
    "InMemoryCountStore",
    "InMemoryItemCatalog",
    "ItemCatalog",
    "KeyedLocks",
    "LifecycleTracker",
    "SqlAlchemyCountStore",
]
