"""
Reconciliation Engine

Read-time reconciliation of a customer's source ledgers into an account
statement with running balances, and the cheaper current-balance path.

    GetAccountStatement(customer_id) -> AccountStatement | NotFoundError
    GetCurrentBalance(customer_id)   -> Decimal | NotFoundError

Only NotFoundError and a failed customer load (SourceFetchError) propagate.
Failed sources, ambiguous settlements, loan marker near-misses and balance
mismatches are attached to the result as diagnostics and logged.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
import asyncio
import logging

from .adapters import (
    AdapterResult, LinkedPurchaseAdapter, PaymentLedgerAdapter, SaleLedgerAdapter, SalePaymentAdapter,
    SettlementLogAdapter
)
from .async_storage import AsyncStorageInterface
from .balance import BalanceBreakdown, CurrentBalanceAggregator
from .cache import SourceCache
from .classification import EntryClassifier, NoteClassifier, PaidAmountResolver
from .config import LedgerConfig, get_config
from .errors import Diagnostic, DiagnosticCode, NotFoundError, SourceFetchError
from .logging_config import log_action
from .models import Customer, SourceKind, CUSTOMERS_TABLE
from .money import round_money, to_decimal, within_tolerance
from .statement import (
    AccountStatement, RunningBalanceCalculator, StatementAssembler, StatementQuery, merge_entries
)


@dataclass
class SourceSnapshot:
    """Raw records of every source for one reconciliation call"""
    customer: Customer
    sales: AdapterResult
    settlements: AdapterResult
    payments: AdapterResult
    linked_purchases: AdapterResult
    sale_payments: AdapterResult

    @property
    def results(self) -> Tuple[AdapterResult, ...]:
        return (self.sales, self.settlements, self.sale_payments, self.payments, self.linked_purchases)

    @property
    def failed_sources(self) -> List[str]:
        return [result.source.value for result in self.results if not result.ok]

    def fetch_diagnostics(self) -> List[Diagnostic]:
        return [Diagnostic.from_fetch_error(result.error) for result in self.results if not result.ok]


class ReconciliationEngine:
    """
    Builds account statements and balances from the source ledgers.

    Holds no per-customer state between calls; the optional SourceCache is
    invalidated by change notifications.
    """

    def __init__(
        self,
        storage: AsyncStorageInterface,
        config: Optional[LedgerConfig] = None,
        cache: Optional[SourceCache] = None,
        note_classifier: Optional[NoteClassifier] = None
    ):
        self.config = config or get_config()
        self.storage = storage
        self.cache = cache
        self.note_classifier = note_classifier or NoteClassifier(self.config.loan_marker)
        self.timeout_seconds = self.config.adapter_timeout_seconds
        self.tolerance = to_decimal(self.config.reconciliation_tolerance)
        self.precision = self.config.money_precision

        self.sale_adapter = SaleLedgerAdapter(storage, self.timeout_seconds, cache)
        self.payment_adapter = PaymentLedgerAdapter(storage, self.timeout_seconds, cache)
        self.settlement_adapter = SettlementLogAdapter(storage, self.timeout_seconds, cache)
        self.linked_purchase_adapter = LinkedPurchaseAdapter(storage, self.timeout_seconds, cache)
        self.sale_payment_adapter = SalePaymentAdapter(storage, self.timeout_seconds, cache)

        self.aggregator = CurrentBalanceAggregator(self.note_classifier)
        self.assembler = StatementAssembler(self.config.max_page_size)
        self.logger = logging.getLogger("customer_ledger.engine")

    def _pin_generations(self, customer_id: str) -> Dict[SourceKind, int]:
        """Cache generations taken before any read this call is keyed from"""
        if self.cache is None:
            return {}
        return {source: self.cache.generation(customer_id, source) for source in SourceKind}

    async def _load_customer(self, customer_id: str) -> Customer:
        try:
            data = await asyncio.wait_for(self.storage.load(CUSTOMERS_TABLE, customer_id),
                                          timeout=self.timeout_seconds)
        except Exception as e:
            raise SourceFetchError(SourceKind.CUSTOMER.value, customer_id, e) from e
        if not data:
            raise NotFoundError("customer", customer_id)
        return Customer.from_dict(data)

    async def _fetch_snapshot(self, customer: Customer, include_settlements: bool = True,
                              generations: Optional[Dict[SourceKind, int]] = None) -> SourceSnapshot:
        """
        Run the adapters concurrently; settlements and sale-linked payments
        are chained after sales because they are looked up by sale id
        """
        generations = generations or {}

        async def sales_branch() -> Tuple[AdapterResult, AdapterResult, AdapterResult]:
            sales = await self.sale_adapter.fetch(customer.id, generations.get(SourceKind.SALES))
            # Without the sale ids an empty lookup would be mistaken for "none exist"
            if not include_settlements or not sales.ok:
                return sales, AdapterResult(SourceKind.SETTLEMENTS), AdapterResult(SourceKind.SALE_PAYMENTS)
            sale_ids = [sale.id for sale in sales.records]
            settlements, sale_payments = await asyncio.gather(
                self.settlement_adapter.fetch(
                    customer.id, generations.get(SourceKind.SETTLEMENTS), sale_ids=sale_ids
                ),
                self.sale_payment_adapter.fetch(
                    customer.id, generations.get(SourceKind.SALE_PAYMENTS), sale_ids=sale_ids
                )
            )
            return sales, settlements, sale_payments

        (sales, settlements, sale_payments), payments, linked_purchases = await asyncio.gather(
            sales_branch(),
            self.payment_adapter.fetch(customer.id, generations.get(SourceKind.PAYMENTS)),
            self.linked_purchase_adapter.fetch(
                customer.id, generations.get(SourceKind.LINKED_PURCHASES), supplier_id=customer.linked_supplier_id
            )
        )
        return SourceSnapshot(customer, sales, settlements, payments, linked_purchases, sale_payments)

    def _aggregate(self, snapshot: SourceSnapshot) -> BalanceBreakdown:
        return self.aggregator.aggregate(
            snapshot.customer.id,
            snapshot.customer.opening_balance,
            snapshot.sales.records,
            snapshot.payments.records,
            snapshot.linked_purchases.records
        )

    def _check_reconciliation(self, snapshot: SourceSnapshot, final_balance: Decimal) -> Optional[Diagnostic]:
        aggregated = self._aggregate(snapshot).balance
        if within_tolerance(round_money(final_balance, self.precision),
                            round_money(aggregated, self.precision), self.tolerance):
            return None

        diagnostic = Diagnostic(
            code=DiagnosticCode.BALANCE_RECONCILIATION_MISMATCH,
            message=(f"Statement balance {final_balance} disagrees with aggregated balance "
                     f"{aggregated} for customer {snapshot.customer.id}"),
            details={"statement_balance": final_balance, "aggregated_balance": aggregated,
                     "tolerance": self.tolerance}
        )
        log_action(self.logger, "warning", diagnostic.message, customer_id=snapshot.customer.id,
                   action=diagnostic.code.value)
        return diagnostic

    async def get_account_statement(self, customer_id: str,
                                    query: Optional[StatementQuery] = None) -> AccountStatement:
        """
        Build the chronological statement for a customer

        Args:
            customer_id: Customer to reconcile
            query: Optional date window and page; balances are unaffected by it

        Returns:
            AccountStatement with entries, final balance and diagnostics

        Raises:
            NotFoundError: If the customer does not exist
            SourceFetchError: If the customer record itself cannot be loaded
        """
        generations = self._pin_generations(customer_id)
        customer = await self._load_customer(customer_id)
        snapshot = await self._fetch_snapshot(customer, generations=generations)

        classifier = EntryClassifier(
            self.note_classifier,
            PaidAmountResolver(snapshot.settlements.records, snapshot.sale_payments.records),
            customer_id
        )
        merged = merge_entries(
            classifier.classify_opening_balance(customer),
            classifier.classify_sales(snapshot.sales.records),
            classifier.classify_payments(snapshot.payments.records),
            classifier.classify_linked_purchases(snapshot.linked_purchases.records)
        )
        entries = RunningBalanceCalculator(customer.opening_balance).accumulate(merged)
        final_balance = entries[-1].running_balance if entries else customer.opening_balance

        diagnostics = snapshot.fetch_diagnostics() + classifier.diagnostics
        mismatch = self._check_reconciliation(snapshot, final_balance)
        if mismatch:
            diagnostics.append(mismatch)

        statement = self.assembler.assemble(
            customer_id,
            entries,
            opening_balance=customer.opening_balance,
            query=query,
            diagnostics=diagnostics,
            failed_sources=snapshot.failed_sources
        )
        log_action(self.logger, "info", f"Built statement with {len(entries)} entries",
                   customer_id=customer_id, action="statement_built",
                   extra={"final_balance": str(statement.final_balance), "partial": statement.is_partial,
                          "diagnostics": len(statement.diagnostics)})
        return statement

    async def get_balance_breakdown(self, customer_id: str) -> BalanceBreakdown:
        """Per-source totals and the current balance, without building rows"""
        generations = self._pin_generations(customer_id)
        customer = await self._load_customer(customer_id)
        snapshot = await self._fetch_snapshot(customer, include_settlements=False, generations=generations)
        breakdown = self._aggregate(snapshot)
        breakdown.failed_sources = snapshot.failed_sources
        breakdown.is_partial = bool(breakdown.failed_sources)
        breakdown.diagnostics = snapshot.fetch_diagnostics()
        return breakdown

    async def get_current_balance(self, customer_id: str) -> Decimal:
        """
        Current balance of a customer

        Raises:
            NotFoundError: If the customer does not exist
        """
        breakdown = await self.get_balance_breakdown(customer_id)
        return breakdown.balance
