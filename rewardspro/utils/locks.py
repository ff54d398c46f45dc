"""
Process-wide keyed locks.

Ledger appends are serialized per customer and catalog mutations per shop.
These locks cover threads inside one process (request threads, migration
workers); the services also take SELECT ... FOR UPDATE row locks so that
PostgreSQL serializes across processes.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Hashable

_registry_lock = threading.Lock()
_locks: Dict[Hashable, threading.RLock] = {}


def _get_lock(key: Hashable) -> threading.RLock:
    with _registry_lock:
        lock = _locks.get(key)
        if lock is None:
            lock = threading.RLock()
            _locks[key] = lock
        return lock


@contextmanager
def keyed_lock(key: Hashable):
    """Hold the re-entrant lock registered under ``key``."""
    lock = _get_lock(key)
    with lock:
        yield


def customer_lock(customer_id: int):
    """Serialize ledger and membership writes for one customer."""
    return keyed_lock(('customer', customer_id))


def shop_lock(shop_domain: str):
    """Serialize tier catalog mutations for one shop."""
    return keyed_lock(('shop', shop_domain))
