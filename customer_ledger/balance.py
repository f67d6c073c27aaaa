"""
Current Balance Aggregator

Computes a customer's balance directly from the raw records, without
building statement rows or resolving settlements:

    balance = opening balance
              + sales - sale returns
              + loans - payments
              - linked purchases + linked purchase returns

It applies the same sign rules as the statement, so for one data snapshot
its result equals the statement's final running balance.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List

from .classification import NoteClassifier, resolve_payment_kind, sale_effect, payment_effect, purchase_effect
from .errors import Diagnostic
from .models import PaymentKind, PaymentRecord, PurchaseRecord, SaleRecord
from .money import ZERO, to_decimal


@dataclass
class BalanceBreakdown:
    """Per-source totals behind a customer's current balance"""
    customer_id: str
    opening_balance: Decimal = ZERO
    sales_total: Decimal = ZERO
    sale_returns_total: Decimal = ZERO
    payments_total: Decimal = ZERO
    loans_total: Decimal = ZERO
    linked_purchases_total: Decimal = ZERO
    linked_purchase_returns_total: Decimal = ZERO
    balance: Decimal = ZERO
    is_partial: bool = False
    failed_sources: List[str] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customer_id": self.customer_id,
            "opening_balance": str(self.opening_balance),
            "sales_total": str(self.sales_total),
            "sale_returns_total": str(self.sale_returns_total),
            "payments_total": str(self.payments_total),
            "loans_total": str(self.loans_total),
            "linked_purchases_total": str(self.linked_purchases_total),
            "linked_purchase_returns_total": str(self.linked_purchase_returns_total),
            "balance": str(self.balance),
            "is_partial": self.is_partial,
            "failed_sources": list(self.failed_sources),
            "diagnostics": [diagnostic.to_dict() for diagnostic in self.diagnostics],
        }


class CurrentBalanceAggregator:
    """Independent, row-free balance computation"""

    def __init__(self, note_classifier: NoteClassifier):
        self.note_classifier = note_classifier

    def aggregate(
        self,
        customer_id: str,
        opening_balance: Decimal,
        sales: Iterable[SaleRecord],
        payments: Iterable[PaymentRecord],
        linked_purchases: Iterable[PurchaseRecord]
    ) -> BalanceBreakdown:
        breakdown = BalanceBreakdown(customer_id=customer_id, opening_balance=to_decimal(opening_balance))

        for sale in sales:
            effect = sale_effect(sale)
            if effect >= ZERO:
                breakdown.sales_total += effect
            else:
                breakdown.sale_returns_total += -effect

        for payment in payments:
            kind, _ = resolve_payment_kind(payment, self.note_classifier)
            effect = payment_effect(kind, payment.amount)
            if kind is PaymentKind.LOAN:
                breakdown.loans_total += effect
            else:
                breakdown.payments_total += -effect

        for purchase in linked_purchases:
            effect = purchase_effect(purchase)
            if effect >= ZERO:
                breakdown.linked_purchase_returns_total += effect
            else:
                breakdown.linked_purchases_total += -effect

        breakdown.balance = (
            breakdown.opening_balance
            + breakdown.sales_total - breakdown.sale_returns_total
            + breakdown.loans_total - breakdown.payments_total
            - breakdown.linked_purchases_total + breakdown.linked_purchase_returns_total
        )
        return breakdown
