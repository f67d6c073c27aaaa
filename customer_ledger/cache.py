"""
Source Cache Module

Memory cache of source adapter results, scoped per customer and source and
bounded by a TTL. Entries are dropped whenever a change notification for the
customer arrives, so a cached read never outlives a write to its source.
Each (customer, source) key carries a generation that invalidation bumps; a
fetch started before an invalidation cannot store its records afterwards.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import Any, Dict, List, Optional, Tuple
import logging

from .events import ChangeNotification, EventDispatcher
from .models import SourceKind


# Settlements and sale-linked payments are looked up by sale id, so a sale
# write also stales them
_DEPENDENT_SOURCES = {
    SourceKind.SALES: (SourceKind.SETTLEMENTS, SourceKind.SALE_PAYMENTS),
    SourceKind.PAYMENTS: (SourceKind.SALE_PAYMENTS,),
}


@dataclass
class _CacheEntry:
    records: List[Any]
    expires_at: datetime


class SourceCache:
    """Per-customer cache of adapter results"""

    def __init__(self, ttl_seconds: int = 300, enabled: bool = True):
        self.ttl_seconds = ttl_seconds
        self.enabled = enabled
        self._store: Dict[Tuple[str, SourceKind], _CacheEntry] = {}
        self._generations: Dict[Tuple[str, SourceKind], int] = {}
        self._lock = RLock()
        self.hits = 0
        self.misses = 0
        self.logger = logging.getLogger("customer_ledger.cache")

    def get(self, customer_id: str, source: SourceKind) -> Optional[List[Any]]:
        if not self.enabled:
            return None
        key = (customer_id, source)
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self.misses += 1
                return None
            if datetime.now(timezone.utc) > entry.expires_at:
                del self._store[key]
                self.misses += 1
                return None
            self.hits += 1
            return list(entry.records)

    def generation(self, customer_id: str, source: SourceKind) -> int:
        """Current generation of a key; read it before loading the records to put"""
        with self._lock:
            return self._generations.setdefault((customer_id, source), 0)

    def put(self, customer_id: str, source: SourceKind, records: List[Any],
            generation: Optional[int] = None) -> bool:
        """Store records unless the key was invalidated since ``generation`` was read"""
        if not self.enabled:
            return False
        key = (customer_id, source)
        with self._lock:
            if generation is not None and generation != self._generations.get(key, 0):
                self.logger.debug(f"Discarded stale {source.value} records for customer {customer_id}")
                return False
            self._store[key] = _CacheEntry(
                records=list(records),
                expires_at=datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds)
            )
        return True

    def invalidate(self, customer_id: str, source: Optional[SourceKind] = None) -> int:
        """Drop one source, or every source when none is given, for a customer"""
        with self._lock:
            if source is None or source is SourceKind.CUSTOMER:
                sources = tuple(SourceKind)
            else:
                sources = (source,) + _DEPENDENT_SOURCES.get(source, ())
            keys = []
            for s in sources:
                key = (customer_id, s)
                self._generations[key] = self._generations.get(key, 0) + 1
                if self._store.pop(key, None) is not None:
                    keys.append(key)
        if keys:
            self.logger.debug(f"Invalidated {len(keys)} cached source(s) for customer {customer_id}")
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            for key in set(self._store) | set(self._generations):
                self._generations[key] = self._generations.get(key, 0) + 1
            self._store.clear()

    def handle_notification(self, notification: ChangeNotification) -> None:
        self.invalidate(notification.customer_id, notification.source)

    def bind(self, dispatcher: EventDispatcher) -> None:
        """Invalidate on every change notification published by the dispatcher"""
        dispatcher.subscribe_all(self.handle_notification)

    def size(self) -> int:
        with self._lock:
            return len(self._store)
