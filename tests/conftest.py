"""
Shared fixtures: an in-memory ledger with write side, dispatcher and engine
"""

import pytest
from datetime import datetime, timedelta, timezone

from customer_ledger.async_storage import ThreadedAsyncStorage
from customer_ledger.cache import SourceCache
from customer_ledger.classification import NoteClassifier
from customer_ledger.config import LedgerConfig
from customer_ledger.customers import CustomerManager
from customer_ledger.engine import ReconciliationEngine
from customer_ledger.events import EventDispatcher
from customer_ledger.records import TransactionRecorder
from customer_ledger.storage import InMemoryStorage


BASE_TIME = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    """Timestamp a fixed number of minutes after the base time"""
    return BASE_TIME + timedelta(minutes=minutes)


@pytest.fixture
def ledger_config():
    return LedgerConfig(storage_type="memory", cache_enabled=False, adapter_timeout_seconds=5.0)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def dispatcher():
    return EventDispatcher()


@pytest.fixture
def customer_manager(storage, dispatcher):
    return CustomerManager(storage, dispatcher)


@pytest.fixture
def recorder(storage, customer_manager, dispatcher):
    return TransactionRecorder(storage, customer_manager, NoteClassifier(), dispatcher)


@pytest.fixture
def engine(storage, ledger_config):
    return ReconciliationEngine(ThreadedAsyncStorage(storage), ledger_config)


@pytest.fixture
def cached_engine(storage, dispatcher, ledger_config):
    cache = SourceCache(ttl_seconds=300)
    cache.bind(dispatcher)
    return ReconciliationEngine(ThreadedAsyncStorage(storage), ledger_config, cache=cache)
