"""
Tests for the Reconciliation Engine

End-to-end statement and balance scenarios over the in-memory store,
including degraded sources and the reconciliation invariant.
"""

import pytest
import asyncio
from decimal import Decimal
from unittest.mock import Mock

from conftest import at
from customer_ledger.async_storage import ThreadedAsyncStorage
from customer_ledger.balance import BalanceBreakdown
from customer_ledger.config import LedgerConfig
from customer_ledger.engine import ReconciliationEngine
from customer_ledger.errors import DiagnosticCode, NotFoundError, SourceFetchError
from customer_ledger.models import (
    EntryKind, PaymentKind, PurchaseKind, SaleKind, PAYMENTS_TABLE, SALES_TABLE
)
from customer_ledger.statement import StatementQuery


# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


class FailingStorage(ThreadedAsyncStorage):
    """Async store whose reads of one table fail"""

    def __init__(self, sync_storage, failing_table, delay=None):
        super().__init__(sync_storage)
        self.failing_table = failing_table
        self.delay = delay

    async def find(self, table, filters):
        if table == self.failing_table:
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                raise ConnectionError("source unavailable")
        return await super().find(table, filters)


@pytest.fixture
def customer(customer_manager):
    return customer_manager.create_customer("Acme Trading", Decimal("100"), created_at=at(0))


def kinds(statement):
    return [e.kind for e in statement.entries]


def balances(statement):
    return [e.running_balance for e in statement.entries]


class TestStatementScenarios:
    """Test the reference statement scenarios"""

    @pytest.mark.asyncio
    async def test_opening_sale_payment(self, engine, recorder, customer):
        """Test opening balance, unpaid sale and payment"""
        recorder.record_sale(customer.id, "INV-1", Decimal("200"), created_at=at(10))
        recorder.record_payment(customer.id, Decimal("150"), notes="cash", created_at=at(20))

        statement = await engine.get_account_statement(customer.id)

        assert kinds(statement) == [EntryKind.OPENING_BALANCE, EntryKind.SALE_INVOICE, EntryKind.PAYMENT]
        assert [e.signed_amount for e in statement.entries] == [Decimal("100"), Decimal("200"), Decimal("-150")]
        assert balances(statement) == [Decimal("100"), Decimal("300"), Decimal("150")]
        assert [e.sequence_index for e in statement.entries] == [1, 2, 3]
        assert statement.final_balance == Decimal("150")
        assert statement.diagnostics == []
        assert statement.is_partial is False

    @pytest.mark.asyncio
    async def test_sale_return_after_payment(self, engine, recorder, customer):
        """Test that a sale return reduces the balance"""
        recorder.record_sale(customer.id, "INV-1", Decimal("200"), created_at=at(10))
        recorder.record_payment(customer.id, Decimal("150"), created_at=at(20))
        recorder.record_sale(customer.id, "RET-1", Decimal("50"), kind=SaleKind.RETURN, created_at=at(30))

        statement = await engine.get_account_statement(customer.id)

        assert statement.entries[-1].kind is EntryKind.SALE_RETURN
        assert statement.entries[-1].signed_amount == Decimal("-50")
        assert statement.final_balance == Decimal("100")

    @pytest.mark.asyncio
    async def test_loan_increases_balance(self, engine, recorder, customer):
        """Test that a loan-marked payment increases the balance"""
        payment = recorder.record_payment(customer.id, Decimal("500"), notes="سلفة 500", created_at=at(10))
        assert payment.kind is PaymentKind.LOAN

        statement = await engine.get_account_statement(customer.id)

        loan = statement.entries[-1]
        assert loan.kind is EntryKind.LOAN
        assert loan.signed_amount == Decimal("500")
        assert statement.final_balance == Decimal("600")

    @pytest.mark.asyncio
    async def test_legacy_untagged_loan(self, engine, storage, customer):
        """Test that untagged legacy payments are classified from the note"""
        storage.save(PAYMENTS_TABLE, "legacy-1", {
            "id": "legacy-1", "created_at": at(10).isoformat(), "customer_id": customer.id,
            "amount": "500", "notes": "سلفة 500"
        })

        statement = await engine.get_account_statement(customer.id)
        assert statement.entries[-1].kind is EntryKind.LOAN
        assert statement.final_balance == Decimal("600")

    @pytest.mark.asyncio
    async def test_linked_purchases_net(self, engine, recorder, customer_manager, customer):
        """Test that linked purchases act like payments and their returns reverse that"""
        supplier = customer_manager.create_supplier("Acme Supplies")
        customer_manager.link_customer_to_supplier(customer.id, supplier.id)

        recorder.record_purchase(supplier.id, "PUR-1", Decimal("300"), created_at=at(10))
        statement = await engine.get_account_statement(customer.id)
        assert statement.entries[-1].kind is EntryKind.LINKED_PURCHASE
        assert statement.entries[-1].signed_amount == Decimal("-300")
        assert statement.final_balance == Decimal("-200")

        recorder.record_purchase(supplier.id, "PUR-R1", Decimal("300"),
                                 kind=PurchaseKind.PURCHASE_RETURN, created_at=at(20))
        statement = await engine.get_account_statement(customer.id)
        assert statement.entries[-1].kind is EntryKind.LINKED_PURCHASE_RETURN
        assert statement.entries[-1].signed_amount == Decimal("300")
        assert statement.final_balance == Decimal("100")

    @pytest.mark.asyncio
    async def test_unlinked_supplier_purchases_ignored(self, engine, recorder, customer_manager, customer):
        """Test that a supplier not linked to the customer does not affect it"""
        supplier = customer_manager.create_supplier("Other Supplies")
        recorder.record_purchase(supplier.id, "PUR-1", Decimal("300"), created_at=at(10))

        statement = await engine.get_account_statement(customer.id)
        assert kinds(statement) == [EntryKind.OPENING_BALANCE]
        assert statement.final_balance == Decimal("100")

    @pytest.mark.asyncio
    async def test_partial_settlement_affects_display_only(self, engine, recorder, customer):
        """Test that a partially settled sale still adds its full total"""
        sale = recorder.record_sale(customer.id, "INV-1", Decimal("1000"), created_at=at(10))
        recorder.record_settlement(sale.id, Decimal("400"))

        statement = await engine.get_account_statement(customer.id)

        row = statement.entries[-1]
        assert row.gross_value == Decimal("1000")
        assert row.paid_value == Decimal("400")
        assert row.signed_amount == Decimal("1000")
        assert statement.final_balance == Decimal("1100")

    @pytest.mark.asyncio
    async def test_legacy_pre_negated_return(self, engine, storage, customer):
        """Test that a stored negative return total is not negated twice"""
        storage.save(SALES_TABLE, "legacy-ret", {
            "id": "legacy-ret", "created_at": at(10).isoformat(), "customer_id": customer.id,
            "invoice_number": "RET-9", "total_amount": "-50", "kind": "Sale Return"
        })

        statement = await engine.get_account_statement(customer.id)
        assert statement.entries[-1].signed_amount == Decimal("-50")
        assert statement.entries[-1].gross_value == Decimal("50")
        assert statement.final_balance == Decimal("50")

    @pytest.mark.asyncio
    async def test_zero_opening_balance_has_no_row(self, engine, recorder, customer_manager):
        """Test that a zero opening balance emits no row"""
        customer = customer_manager.create_customer("Walk-in", created_at=at(0))
        recorder.record_sale(customer.id, "INV-1", Decimal("75"), created_at=at(10))

        statement = await engine.get_account_statement(customer.id)
        assert kinds(statement) == [EntryKind.SALE_INVOICE]
        assert statement.final_balance == Decimal("75")

    @pytest.mark.asyncio
    async def test_customer_without_activity(self, engine, customer_manager):
        """Test an empty statement"""
        customer = customer_manager.create_customer("Dormant")
        statement = await engine.get_account_statement(customer.id)

        assert statement.entries == []
        assert statement.final_balance == Decimal("0")
        assert await engine.get_current_balance(customer.id) == Decimal("0")

    @pytest.mark.asyncio
    async def test_payment_against_sale_counts_as_paid(self, engine, recorder, customer):
        """Test that a payment made against an invoice shows on the sale row only"""
        sale = recorder.record_sale(customer.id, "INV-1", Decimal("200"), created_at=at(10))
        recorder.record_settlement(sale.id, Decimal("50"))
        recorder.record_payment(customer.id, Decimal("30"), sale_id=sale.id, created_at=at(20))
        recorder.record_payment(customer.id, Decimal("70"), created_at=at(30))

        statement = await engine.get_account_statement(customer.id)

        assert kinds(statement) == [EntryKind.OPENING_BALANCE, EntryKind.SALE_INVOICE, EntryKind.PAYMENT]
        assert statement.entries[1].paid_value == Decimal("80")
        assert statement.entries[1].signed_amount == Decimal("200")
        assert balances(statement) == [Decimal("100"), Decimal("300"), Decimal("230")]
        assert statement.diagnostics == []
        assert await engine.get_current_balance(customer.id) == Decimal("230")


class TestReconciliationProperties:
    """Test the statement/balance properties"""

    async def populate(self, recorder, customer_manager, customer):
        supplier = customer_manager.create_supplier("Acme Supplies")
        customer_manager.link_customer_to_supplier(customer.id, supplier.id)
        sale = recorder.record_sale(customer.id, "INV-1", Decimal("1000.10"), created_at=at(10))
        recorder.record_settlement(sale.id, Decimal("400"))
        recorder.record_payment(customer.id, Decimal("150.05"), created_at=at(20))
        recorder.record_payment(customer.id, Decimal("75"), notes="سلفة", created_at=at(30))
        recorder.record_sale(customer.id, "RET-1", Decimal("99.99"), kind=SaleKind.RETURN, created_at=at(40))
        recorder.record_purchase(supplier.id, "PUR-1", Decimal("310"), created_at=at(50))
        recorder.record_purchase(supplier.id, "PUR-R1", Decimal("10"), kind=PurchaseKind.PURCHASE_RETURN,
                                 created_at=at(60))

    @pytest.mark.asyncio
    async def test_current_balance_matches_statement(self, engine, recorder, customer_manager, customer):
        """Test the reconciliation invariant"""
        await self.populate(recorder, customer_manager, customer)

        statement = await engine.get_account_statement(customer.id)
        balance = await engine.get_current_balance(customer.id)

        assert statement.entries[-1].running_balance == balance
        assert balance == Decimal("100") + Decimal("1000.10") - Decimal("150.05") + Decimal("75") \
            - Decimal("99.99") - Decimal("310") + Decimal("10")
        assert not any(d.code is DiagnosticCode.BALANCE_RECONCILIATION_MISMATCH for d in statement.diagnostics)

    @pytest.mark.asyncio
    async def test_prefix_sum(self, engine, recorder, customer_manager, customer):
        """Test that running balances are reproducible from the signed amounts"""
        await self.populate(recorder, customer_manager, customer)
        statement = await engine.get_account_statement(customer.id)

        balance = customer.opening_balance
        for row in statement.entries:
            if row.kind is not EntryKind.OPENING_BALANCE:
                balance += row.signed_amount
            assert row.running_balance == balance

    @pytest.mark.asyncio
    async def test_removal_delta(self, engine, recorder, customer):
        """Test that removing a record moves the balance by minus its signed amount"""
        recorder.record_sale(customer.id, "INV-1", Decimal("200"), created_at=at(10))
        payment = recorder.record_payment(customer.id, Decimal("150"), created_at=at(20))

        before = await engine.get_account_statement(customer.id)
        removed = next(e for e in before.entries if e.source_id == payment.id)

        recorder.delete_payment(payment.id)
        after = await engine.get_account_statement(customer.id)

        assert after.final_balance - before.final_balance == -removed.signed_amount

    @pytest.mark.asyncio
    async def test_idempotence(self, engine, recorder, customer_manager, customer):
        """Test that an unchanged snapshot yields identical statements"""
        await self.populate(recorder, customer_manager, customer)

        first = await engine.get_account_statement(customer.id)
        second = await engine.get_account_statement(customer.id)

        assert first.entries == second.entries
        assert first.final_balance == second.final_balance

    @pytest.mark.asyncio
    async def test_ordering_stability(self, engine, recorder, customer_manager, customer):
        """Test that rows sharing a timestamp follow the fixed source order"""
        supplier = customer_manager.create_supplier("Acme Supplies")
        customer_manager.link_customer_to_supplier(customer.id, supplier.id)
        recorder.record_purchase(supplier.id, "PUR-1", Decimal("5"), created_at=at(10))
        recorder.record_payment(customer.id, Decimal("20"), created_at=at(10))
        recorder.record_sale(customer.id, "INV-1", Decimal("50"), created_at=at(10))
        recorder.record_sale(customer.id, "INV-2", Decimal("60"), created_at=at(10))

        for _ in range(3):
            statement = await engine.get_account_statement(customer.id)
            assert kinds(statement) == [
                EntryKind.OPENING_BALANCE, EntryKind.SALE_INVOICE, EntryKind.SALE_INVOICE,
                EntryKind.PAYMENT, EntryKind.LINKED_PURCHASE
            ]
            assert [e.invoice_number for e in statement.entries[1:3]] == ["INV-1", "INV-2"]


class TestDiagnostics:
    """Test non-fatal conditions and the not-found path"""

    @pytest.mark.asyncio
    async def test_unknown_customer(self, engine):
        """Test that an unknown customer aborts the call"""
        with pytest.raises(NotFoundError, match="Customer missing not found"):
            await engine.get_account_statement("missing")
        with pytest.raises(NotFoundError):
            await engine.get_current_balance("missing")

    @pytest.mark.asyncio
    async def test_customer_load_failure_is_fatal(self, storage, customer, ledger_config):
        """Test that an unreadable customer record aborts the call"""
        async_storage = ThreadedAsyncStorage(storage)
        async_storage.load = Mock(side_effect=ConnectionError("accounts unavailable"))
        engine = ReconciliationEngine(async_storage, ledger_config)

        with pytest.raises(SourceFetchError) as exc_info:
            await engine.get_account_statement(customer.id)
        assert exc_info.value.source == "customer"
        assert isinstance(exc_info.value.cause, ConnectionError)

    @pytest.mark.asyncio
    async def test_failed_source_degrades(self, storage, recorder, customer, ledger_config):
        """Test that a failing source is omitted without dropping the others"""
        recorder.record_sale(customer.id, "INV-1", Decimal("200"), created_at=at(10))
        recorder.record_payment(customer.id, Decimal("150"), created_at=at(20))
        engine = ReconciliationEngine(FailingStorage(storage, PAYMENTS_TABLE), ledger_config)

        statement = await engine.get_account_statement(customer.id)

        assert kinds(statement) == [EntryKind.OPENING_BALANCE, EntryKind.SALE_INVOICE]
        assert statement.is_partial is True
        assert statement.failed_sources == ["payments"]
        assert [d.code for d in statement.diagnostics] == [DiagnosticCode.SOURCE_FETCH_FAILED]
        assert statement.diagnostics[0].source == "payments"

    @pytest.mark.asyncio
    async def test_adapter_timeout_degrades(self, storage, recorder, customer):
        """Test that a slow source times out into a partial statement"""
        recorder.record_sale(customer.id, "INV-1", Decimal("200"), created_at=at(10))
        recorder.record_payment(customer.id, Decimal("150"), created_at=at(20))
        config = LedgerConfig(cache_enabled=False, adapter_timeout_seconds=0.05)
        engine = ReconciliationEngine(FailingStorage(storage, SALES_TABLE, delay=1.0), config)

        statement = await engine.get_account_statement(customer.id)

        assert kinds(statement) == [EntryKind.OPENING_BALANCE, EntryKind.PAYMENT]
        assert statement.failed_sources == ["sales"]
        assert "TimeoutError" in statement.diagnostics[0].message

    @pytest.mark.asyncio
    async def test_degraded_balance_breakdown(self, storage, recorder, customer, ledger_config):
        """Test that the balance path degrades the same way"""
        recorder.record_sale(customer.id, "INV-1", Decimal("200"), created_at=at(10))
        engine = ReconciliationEngine(FailingStorage(storage, PAYMENTS_TABLE), ledger_config)

        breakdown = await engine.get_balance_breakdown(customer.id)
        assert breakdown.is_partial is True
        assert breakdown.balance == Decimal("300")

    @pytest.mark.asyncio
    async def test_ambiguous_settlement_is_reported(self, engine, recorder, customer):
        """Test duplicate settlements surface as a diagnostic"""
        sale = recorder.record_sale(customer.id, "INV-1", Decimal("1000"), created_at=at(10))
        first = recorder.record_settlement(sale.id, Decimal("400"))
        recorder.record_settlement(sale.id, Decimal("600"))

        statement = await engine.get_account_statement(customer.id)

        assert statement.entries[-1].paid_value == Decimal("400")
        assert statement.diagnostics[0].code is DiagnosticCode.AMBIGUOUS_SETTLEMENT
        assert statement.diagnostics[0].details["chosen"] == first.id
        assert statement.is_partial is False

    @pytest.mark.asyncio
    async def test_near_miss_note_is_reported(self, engine, storage, customer):
        """Test that near-miss loan notes on untagged rows are flagged"""
        storage.save(PAYMENTS_TABLE, "legacy-1", {
            "id": "legacy-1", "created_at": at(10).isoformat(), "customer_id": customer.id,
            "amount": "500", "notes": "  سلفه 500"
        })

        statement = await engine.get_account_statement(customer.id)
        assert statement.entries[-1].kind is EntryKind.PAYMENT
        assert statement.diagnostics[0].code is DiagnosticCode.UNRECOGNIZED_NOTE_CLASSIFICATION
        assert statement.final_balance == Decimal("-400")

    @pytest.mark.asyncio
    async def test_balance_mismatch_is_reported(self, engine, recorder, customer):
        """Test that a mismatch is flagged while the statement is still returned"""
        recorder.record_sale(customer.id, "INV-1", Decimal("200"), created_at=at(10))
        engine.aggregator = Mock()
        engine.aggregator.aggregate.return_value = BalanceBreakdown(customer.id, balance=Decimal("999"))

        statement = await engine.get_account_statement(customer.id)

        assert statement.final_balance == Decimal("300")
        assert len(statement.entries) == 2
        mismatch = statement.diagnostics[-1]
        assert mismatch.code is DiagnosticCode.BALANCE_RECONCILIATION_MISMATCH
        assert mismatch.details["aggregated_balance"] == Decimal("999")


class TestStatementQueries:
    """Test windowed and paged statements through the engine"""

    @pytest.mark.asyncio
    async def test_window_keeps_full_balance(self, engine, recorder, customer):
        """Test that the date window does not change the final balance"""
        for minutes in (10, 20, 30, 40):
            recorder.record_sale(customer.id, f"INV-{minutes}", Decimal("10"), created_at=at(minutes))

        statement = await engine.get_account_statement(
            customer.id, StatementQuery(start=at(20), end=at(30))
        )

        assert [e.invoice_number for e in statement.entries] == ["INV-20", "INV-30"]
        assert statement.balance_brought_forward == Decimal("110")
        assert statement.final_balance == Decimal("140")


class TestBalanceBreakdown:
    """Test the per-source breakdown"""

    @pytest.mark.asyncio
    async def test_breakdown_totals(self, engine, recorder, customer_manager, customer):
        """Test each total and the resulting balance"""
        supplier = customer_manager.create_supplier("Acme Supplies")
        customer_manager.link_customer_to_supplier(customer.id, supplier.id)
        recorder.record_sale(customer.id, "INV-1", Decimal("200"))
        recorder.record_sale(customer.id, "RET-1", Decimal("20"), kind=SaleKind.RETURN)
        recorder.record_payment(customer.id, Decimal("50"))
        recorder.record_payment(customer.id, Decimal("30"), notes="سلفة")
        recorder.record_purchase(supplier.id, "PUR-1", Decimal("40"))
        recorder.record_purchase(supplier.id, "PUR-R1", Decimal("5"), kind=PurchaseKind.PURCHASE_RETURN)

        breakdown = await engine.get_balance_breakdown(customer.id)

        assert breakdown.opening_balance == Decimal("100")
        assert breakdown.sales_total == Decimal("200")
        assert breakdown.sale_returns_total == Decimal("20")
        assert breakdown.payments_total == Decimal("50")
        assert breakdown.loans_total == Decimal("30")
        assert breakdown.linked_purchases_total == Decimal("40")
        assert breakdown.linked_purchase_returns_total == Decimal("5")
        assert breakdown.balance == Decimal("225")
        assert breakdown.to_dict()["balance"] == "225"
