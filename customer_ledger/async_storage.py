"""
Async Storage Backend Module

Provides the async storage interface used by the source adapters, and a
wrapper that runs any sync StorageInterface in worker threads so several
source ledgers can be read concurrently.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Any
import asyncio

from .storage import StorageInterface, InMemoryStorage, SQLiteStorage


class AsyncStorageInterface(ABC):
    """Abstract interface for async storage backends"""

    @abstractmethod
    async def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass

    @abstractmethod
    async def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    async def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    async def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    async def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    async def find_in(self, table: str, field_name: str, values: Iterable[Any]) -> List[Dict[str, Any]]:
        """Find records whose field is one of the given values"""
        pass

    async def close(self) -> None:
        """Close storage connection (default no-op)"""
        pass


class ThreadedAsyncStorage(AsyncStorageInterface):
    """Async wrapper that offloads a sync storage backend to worker threads"""

    def __init__(self, sync_storage: StorageInterface):
        self._sync_storage = sync_storage

    @property
    def sync_storage(self) -> StorageInterface:
        return self._sync_storage

    async def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record"""
        await asyncio.to_thread(self._sync_storage.save, table, record_id, data)

    async def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record"""
        return await asyncio.to_thread(self._sync_storage.load, table, record_id)

    async def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        return await asyncio.to_thread(self._sync_storage.load_all, table)

    async def delete(self, table: str, record_id: str) -> bool:
        """Delete a record"""
        return await asyncio.to_thread(self._sync_storage.delete, table, record_id)

    async def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        return await asyncio.to_thread(self._sync_storage.find, table, filters)

    async def find_in(self, table: str, field_name: str, values: Iterable[Any]) -> List[Dict[str, Any]]:
        """Find records whose field is one of the given values"""
        return await asyncio.to_thread(self._sync_storage.find_in, table, field_name, list(values))

    async def close(self) -> None:
        """Close storage connection"""
        await asyncio.to_thread(self._sync_storage.close)


class AsyncInMemoryStorage(ThreadedAsyncStorage):
    """Async wrapper around InMemoryStorage for tests"""

    def __init__(self, sync_storage: Optional[InMemoryStorage] = None):
        super().__init__(sync_storage or InMemoryStorage())


def create_storage(storage_type: str = "memory", sqlite_path: Optional[str] = None) -> StorageInterface:
    """Factory function to create sync storage instances"""
    if storage_type.lower() == "sqlite":
        return SQLiteStorage(sqlite_path or "customer_ledger.db")
    if storage_type.lower() == "memory":
        return InMemoryStorage()
    raise ValueError(f"Unknown storage type: {storage_type}")


def create_async_storage(storage: StorageInterface) -> AsyncStorageInterface:
    """Wrap a sync storage backend for async access"""
    return ThreadedAsyncStorage(storage)
