"""
Tests for the per-customer source cache
"""

import pytest
import asyncio
from decimal import Decimal
from unittest.mock import patch
from datetime import datetime, timedelta, timezone

from conftest import at
from customer_ledger.async_storage import ThreadedAsyncStorage
from customer_ledger.cache import SourceCache
from customer_ledger.engine import ReconciliationEngine
from customer_ledger.events import ChangeNotification, EventDispatcher, LedgerEvent
from customer_ledger.models import EntryKind, SourceKind, SALES_TABLE


# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


class HeldSalesStorage(ThreadedAsyncStorage):
    """Async store that holds its first sales read until the test releases it"""

    def __init__(self, sync_storage):
        super().__init__(sync_storage)
        self.read_done = asyncio.Event()
        self.release = asyncio.Event()

    async def find(self, table, filters):
        rows = await super().find(table, filters)
        if table == SALES_TABLE and not self.read_done.is_set():
            self.read_done.set()
            await self.release.wait()
        return rows


class FlakySalesStorage(ThreadedAsyncStorage):
    """Async store whose first sales read fails"""

    def __init__(self, sync_storage):
        super().__init__(sync_storage)
        self.failures = 1

    async def find(self, table, filters):
        if table == SALES_TABLE and self.failures:
            self.failures -= 1
            raise ConnectionError("sales unavailable")
        return await super().find(table, filters)


def bound_cache(dispatcher):
    cache = SourceCache(ttl_seconds=300)
    cache.bind(dispatcher)
    return cache


class TestSourceCache:
    """Test cache storage, expiry and invalidation"""

    def test_put_and_get(self):
        """Test a cache hit"""
        cache = SourceCache()
        cache.put("c1", SourceKind.SALES, ["a", "b"])

        assert cache.get("c1", SourceKind.SALES) == ["a", "b"]
        assert cache.get("c1", SourceKind.PAYMENTS) is None
        assert cache.get("c2", SourceKind.SALES) is None
        assert cache.hits == 1
        assert cache.misses == 2

    def test_expiry(self):
        """Test that entries expire after the TTL"""
        cache = SourceCache(ttl_seconds=60)
        cache.put("c1", SourceKind.SALES, ["a"])

        later = datetime.now(timezone.utc) + timedelta(seconds=61)
        with patch("customer_ledger.cache.datetime") as mock_datetime:
            mock_datetime.now.return_value = later
            assert cache.get("c1", SourceKind.SALES) is None
        assert cache.size() == 0

    def test_disabled_cache(self):
        """Test that a disabled cache stores nothing"""
        cache = SourceCache(enabled=False)
        cache.put("c1", SourceKind.SALES, ["a"])
        assert cache.get("c1", SourceKind.SALES) is None
        assert cache.size() == 0

    def test_invalidate_one_source(self):
        """Test that only the changed source is dropped"""
        cache = SourceCache()
        cache.put("c1", SourceKind.PAYMENTS, ["p"])
        cache.put("c1", SourceKind.LINKED_PURCHASES, ["u"])

        assert cache.invalidate("c1", SourceKind.PAYMENTS) == 1
        assert cache.get("c1", SourceKind.PAYMENTS) is None
        assert cache.get("c1", SourceKind.LINKED_PURCHASES) == ["u"]

    def test_sale_change_invalidates_settlements(self):
        """Test that settlements are dropped with their sales"""
        cache = SourceCache()
        cache.put("c1", SourceKind.SALES, ["s"])
        cache.put("c1", SourceKind.SETTLEMENTS, ["t"])

        cache.invalidate("c1", SourceKind.SALES)
        assert cache.size() == 0

    def test_customer_change_invalidates_everything(self):
        """Test that account changes drop every source for that customer only"""
        cache = SourceCache()
        for source in (SourceKind.SALES, SourceKind.PAYMENTS, SourceKind.LINKED_PURCHASES):
            cache.put("c1", source, [])
        cache.put("c2", SourceKind.SALES, [])

        assert cache.invalidate("c1", SourceKind.CUSTOMER) == 3
        assert cache.get("c2", SourceKind.SALES) == []

    def test_put_after_invalidate_is_discarded(self):
        """Test that records read before an invalidation are not stored"""
        cache = SourceCache()
        generation = cache.generation("c1", SourceKind.SALES)
        cache.invalidate("c1", SourceKind.SALES)

        assert cache.put("c1", SourceKind.SALES, ["old"], generation) is False
        assert cache.get("c1", SourceKind.SALES) is None

        assert cache.put("c1", SourceKind.SALES, ["new"], cache.generation("c1", SourceKind.SALES))
        assert cache.get("c1", SourceKind.SALES) == ["new"]

    def test_clear_stales_pending_reads(self):
        """Test that clearing the cache also stales reads in flight"""
        cache = SourceCache()
        generation = cache.generation("c1", SourceKind.PAYMENTS)
        cache.clear()
        assert cache.put("c1", SourceKind.PAYMENTS, ["p"], generation) is False

    def test_payment_write_stales_sale_payments(self):
        """Test that payments made against a sale are invalidated with payments"""
        cache = SourceCache()
        cache.put("c1", SourceKind.SALE_PAYMENTS, ["p"])
        cache.invalidate("c1", SourceKind.PAYMENTS)
        assert cache.get("c1", SourceKind.SALE_PAYMENTS) is None

    def test_bound_to_dispatcher(self):
        """Test invalidation driven by change notifications"""
        dispatcher = EventDispatcher()
        cache = SourceCache()
        cache.bind(dispatcher)
        cache.put("c1", SourceKind.PAYMENTS, ["p"])

        dispatcher.publish(ChangeNotification(
            event_type=LedgerEvent.PAYMENT_RECORDED, customer_id="c1",
            source=SourceKind.PAYMENTS, record_id="p2"
        ))
        assert cache.get("c1", SourceKind.PAYMENTS) is None


class TestCachedEngine:
    """Test the engine reading through the cache"""

    @pytest.mark.asyncio
    async def test_writes_invalidate_cached_sources(self, cached_engine, recorder, customer_manager):
        """Test that a recorded sale shows up despite cached reads"""
        customer = customer_manager.create_customer("Acme", Decimal("0"), created_at=at(0))
        recorder.record_sale(customer.id, "INV-1", Decimal("100"), created_at=at(10))

        first = await cached_engine.get_account_statement(customer.id)
        recorder.record_sale(customer.id, "INV-2", Decimal("50"), created_at=at(20))
        second = await cached_engine.get_account_statement(customer.id)

        assert first.final_balance == Decimal("100")
        assert second.final_balance == Decimal("150")

    @pytest.mark.asyncio
    async def test_unnotified_writes_are_not_seen(self, cached_engine, storage, customer_manager):
        """Test that reads are served from the cache until a notification arrives"""
        customer = customer_manager.create_customer("Acme", Decimal("0"), created_at=at(0))
        await cached_engine.get_account_statement(customer.id)

        storage.save(SALES_TABLE, "raw-1", {
            "id": "raw-1", "created_at": at(5).isoformat(), "customer_id": customer.id,
            "invoice_number": "RAW", "total_amount": "10"
        })
        stale = await cached_engine.get_account_statement(customer.id)
        assert stale.entries == []

        cached_engine.cache.invalidate(customer.id)
        fresh = await cached_engine.get_account_statement(customer.id)
        assert fresh.final_balance == Decimal("10")

    @pytest.mark.asyncio
    async def test_write_during_read_is_not_hidden(self, storage, dispatcher, ledger_config,
                                                   recorder, customer_manager):
        """Test that a read racing a write does not cache the older records"""
        customer = customer_manager.create_customer("Acme", Decimal("0"), created_at=at(0))
        recorder.record_sale(customer.id, "INV-1", Decimal("100"), created_at=at(10))
        held = HeldSalesStorage(storage)
        engine = ReconciliationEngine(held, ledger_config, cache=bound_cache(dispatcher))

        pending = asyncio.ensure_future(engine.get_account_statement(customer.id))
        await held.read_done.wait()
        recorder.record_sale(customer.id, "INV-2", Decimal("50"), created_at=at(20))
        held.release.set()
        racing = await pending

        fresh = await engine.get_account_statement(customer.id)
        assert racing.final_balance == Decimal("100")
        assert fresh.final_balance == Decimal("150")

    @pytest.mark.asyncio
    async def test_failed_sales_do_not_cache_empty_settlements(self, storage, dispatcher, ledger_config,
                                                               recorder, customer_manager):
        """Test that a sales outage does not leave sale paid amounts cached as zero"""
        customer = customer_manager.create_customer("Acme", Decimal("0"), created_at=at(0))
        sale = recorder.record_sale(customer.id, "INV-1", Decimal("1000"), created_at=at(10))
        recorder.record_settlement(sale.id, Decimal("400"))
        recorder.record_payment(customer.id, Decimal("100"), sale_id=sale.id, created_at=at(30))
        engine = ReconciliationEngine(FlakySalesStorage(storage), ledger_config, cache=bound_cache(dispatcher))

        degraded = await engine.get_account_statement(customer.id)
        assert degraded.failed_sources == ["sales"]
        assert engine.cache.get(customer.id, SourceKind.SETTLEMENTS) is None
        assert engine.cache.get(customer.id, SourceKind.SALE_PAYMENTS) is None

        healthy = await engine.get_account_statement(customer.id)
        sale_entry = next(e for e in healthy.entries if e.kind is EntryKind.SALE_INVOICE)
        assert healthy.is_partial is False
        assert sale_entry.paid_value == Decimal("500")
        assert healthy.final_balance == Decimal("1000")
