"""
Per-provider serialization for calendar and ledger writes.

Booking and withdrawal both follow a read-check-insert pattern that must not
interleave for the same provider. Inside one process a Lock per provider id
does that; across processes the services additionally take a row lock on the
provider (SELECT ... FOR UPDATE), which PostgreSQL honours.
"""

import logging
from contextlib import contextmanager
from threading import Lock

logger = logging.getLogger(__name__)

_provider_locks: dict[int, Lock] = {}
_registry_lock = Lock()


def _lock_for(provider_id: int) -> Lock:
    with _registry_lock:
        lock = _provider_locks.get(provider_id)
        if lock is None:
            lock = Lock()
            _provider_locks[provider_id] = lock
        return lock


@contextmanager
def provider_lock(provider_id: int):
    """Hold the write lock for one provider; other providers are unaffected"""
    lock = _lock_for(provider_id)
    with lock:
        logger.debug(f"🔒 Acquired provider lock {provider_id}")
        try:
            yield
        finally:
            logger.debug(f"🔓 Released provider lock {provider_id}")
