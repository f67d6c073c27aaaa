"""
Application wiring and FastAPI dependencies
"""

from typing import Optional

from ..async_storage import create_async_storage, create_storage
from ..cache import SourceCache
from ..classification import NoteClassifier
from ..config import LedgerConfig, get_config
from ..customers import CustomerManager
from ..engine import ReconciliationEngine
from ..events import EventDispatcher
from ..records import TransactionRecorder
from ..storage import StorageInterface


class LedgerSystem:
    """Customer ledger with all components initialized"""

    def __init__(self, config: Optional[LedgerConfig] = None, storage: Optional[StorageInterface] = None):
        self.config = config or get_config()

        # Initialize storage
        self.storage = storage or create_storage(self.config.storage_type, self.config.sqlite_path)
        self.async_storage = create_async_storage(self.storage)

        # Change notifications drive cache invalidation
        self.dispatcher = EventDispatcher()
        self.cache = SourceCache(ttl_seconds=self.config.cache_ttl_seconds, enabled=self.config.cache_enabled)
        self.cache.bind(self.dispatcher)

        # Write side
        self.note_classifier = NoteClassifier(self.config.loan_marker)
        self.customer_manager = CustomerManager(self.storage, self.dispatcher)
        self.recorder = TransactionRecorder(
            self.storage, self.customer_manager, self.note_classifier, self.dispatcher
        )

        # Read side
        self.engine = ReconciliationEngine(
            self.async_storage, self.config, self.cache, self.note_classifier
        )

    def close(self) -> None:
        self.storage.close()


# Global ledger system instance, created on first use
_ledger_system: Optional[LedgerSystem] = None


def get_ledger_system() -> LedgerSystem:
    global _ledger_system
    if _ledger_system is None:
        _ledger_system = LedgerSystem()
    return _ledger_system


def set_ledger_system(system: Optional[LedgerSystem]) -> None:
    """Replace the global ledger system (None resets it)"""
    global _ledger_system
    _ledger_system = system
