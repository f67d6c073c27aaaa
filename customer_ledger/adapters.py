"""
Source Adapters Module

One adapter per source ledger. Each fetch runs under its own timeout and
never raises for data-source problems: a failure is returned on the
AdapterResult so the engine can degrade that source while keeping the others.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional
import asyncio
import logging

from .async_storage import AsyncStorageInterface
from .cache import SourceCache
from .errors import SourceFetchError
from .logging_config import log_action
from .models import (
    PaymentRecord, PurchaseRecord, SaleRecord, SettlementRecord, SourceKind,
    PAYMENTS_TABLE, PURCHASES_TABLE, SALES_TABLE, SETTLEMENTS_TABLE
)


@dataclass
class AdapterResult:
    """Records from one source, or the error that prevented fetching them"""
    source: SourceKind
    records: List[Any] = field(default_factory=list)
    error: Optional[SourceFetchError] = None
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class SourceAdapter(ABC):
    """Base class for source ledger adapters"""

    source: SourceKind

    def __init__(self, storage: AsyncStorageInterface, timeout_seconds: float = 10.0,
                 cache: Optional[SourceCache] = None):
        self.storage = storage
        self.timeout_seconds = timeout_seconds
        self.cache = cache
        self.logger = logging.getLogger("customer_ledger.adapters")

    @abstractmethod
    async def _load(self, customer_id: str, **kwargs) -> List[Any]:
        """Load and parse the source records"""
        pass

    async def fetch(self, customer_id: str, generation: Optional[int] = None, **kwargs) -> AdapterResult:
        """
        Fetch this source's records for a customer

        generation pins the cache generation the load is keyed from; records
        are only cached if no invalidation happened since.
        """
        if self.cache is not None:
            cached = self.cache.get(customer_id, self.source)
            if cached is not None:
                return AdapterResult(self.source, cached, from_cache=True)
            if generation is None:
                generation = self.cache.generation(customer_id, self.source)

        try:
            records = await asyncio.wait_for(self._load(customer_id, **kwargs), timeout=self.timeout_seconds)
        except Exception as e:  # includes asyncio.TimeoutError
            return self._failed(customer_id, e)

        if self.cache is not None:
            self.cache.put(customer_id, self.source, records, generation)
        return AdapterResult(self.source, records)

    def _failed(self, customer_id: str, cause: BaseException) -> AdapterResult:
        error = SourceFetchError(self.source.value, customer_id, cause)
        log_action(self.logger, "warning", error.message, customer_id=customer_id,
                   source=self.source.value, action="source_fetch_failed", exc_info=True)
        return AdapterResult(self.source, [], error)


class SaleLedgerAdapter(SourceAdapter):
    """Sale invoices and returns issued to the customer"""

    source = SourceKind.SALES

    async def _load(self, customer_id: str, **kwargs) -> List[SaleRecord]:
        rows = await self.storage.find(SALES_TABLE, {"customer_id": customer_id})
        return [SaleRecord.from_dict(row) for row in rows]


class PaymentLedgerAdapter(SourceAdapter):
    """Standalone payments and loans"""

    source = SourceKind.PAYMENTS

    async def _load(self, customer_id: str, **kwargs) -> List[PaymentRecord]:
        rows = await self.storage.find(PAYMENTS_TABLE, {"customer_id": customer_id})
        payments = [PaymentRecord.from_dict(row) for row in rows]
        # Payments made against an invoice belong to that sale's paid amount
        return [payment for payment in payments if not payment.sale_id]


class SettlementLogAdapter(SourceAdapter):
    """Cash-drawer transactions for a set of sale ids"""

    source = SourceKind.SETTLEMENTS

    async def _load(self, customer_id: str, sale_ids: Iterable[str] = (), **kwargs) -> List[SettlementRecord]:
        sale_ids = list(sale_ids)
        if not sale_ids:
            return []
        rows = await self.storage.find_in(SETTLEMENTS_TABLE, "sale_id", sale_ids)
        return [SettlementRecord.from_dict(row) for row in rows]


class LinkedPurchaseAdapter(SourceAdapter):
    """Purchases made from the customer's linked supplier account"""

    source = SourceKind.LINKED_PURCHASES

    async def _load(self, customer_id: str, supplier_id: Optional[str] = None, **kwargs) -> List[PurchaseRecord]:
        # No linked supplier is not an error
        if not supplier_id:
            return []
        rows = await self.storage.find(PURCHASES_TABLE, {"supplier_id": supplier_id})
        return [PurchaseRecord.from_dict(row) for row in rows]


class SalePaymentAdapter(SourceAdapter):
    """Customer payments recorded against one of the given sales"""

    source = SourceKind.SALE_PAYMENTS

    async def _load(self, customer_id: str, sale_ids: Iterable[str] = (), **kwargs) -> List[PaymentRecord]:
        sale_ids = list(sale_ids)
        if not sale_ids:
            return []
        rows = await self.storage.find_in(PAYMENTS_TABLE, "sale_id", sale_ids)
        return [PaymentRecord.from_dict(row) for row in rows]
