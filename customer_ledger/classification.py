"""
Sign & Classification Module

Turns raw source records into typed LedgerEntry rows. This module owns every
sign decision: sale totals are read as magnitudes and signed by their kind,
payments are split into loans and payments, and purchases made through a
linked supplier net against the customer's balance.

Also resolves the amount actually collected at sale time from the settlement
log (a sale with no settlement was made fully on credit).
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple
import logging

from .errors import Diagnostic, DiagnosticCode
from .models import (
    Customer, EntryKind, LedgerEntry, PaymentKind, PaymentRecord, PurchaseKind,
    PurchaseRecord, SaleKind, SaleRecord, SettlementRecord, SourceKind, SETTLEMENT_KIND_SALE
)
from .money import ZERO, to_decimal


DEFAULT_LOAN_MARKER = "سلفة"

OPENING_BALANCE_ENTRY_ID = "opening-balance"


class NoteMatch(Enum):
    """How a payment note relates to the loan marker"""
    EXACT = "exact"  # note starts with the marker
    NEAR = "near"    # marker present but not as a clean prefix
    NONE = "none"


class NoteClassifier:
    """Recognizes the loan marker in free-text payment notes"""

    def __init__(self, loan_marker: str = DEFAULT_LOAN_MARKER):
        if not loan_marker:
            raise ValueError("Loan marker must not be empty")
        self.loan_marker = loan_marker
        self._variants = self._build_variants(loan_marker)

    @staticmethod
    def _build_variants(marker: str) -> Tuple[str, ...]:
        variants = {marker, marker.casefold()}
        # Taa marbuta is commonly typed as haa
        if marker.endswith("ة"):
            variants.add(marker[:-1] + "ه")
        return tuple(variants)

    def match(self, notes: Optional[str]) -> NoteMatch:
        if not notes:
            return NoteMatch.NONE
        if notes.startswith(self.loan_marker):
            return NoteMatch.EXACT

        # Marker after leading punctuation, inside the text, or as a variant spelling
        folded = notes.casefold()
        if any(variant in folded or variant in notes for variant in self._variants):
            return NoteMatch.NEAR
        return NoteMatch.NONE

    def infer_kind(self, notes: Optional[str]) -> PaymentKind:
        """Kind to store for a new payment; only a clean prefix makes a loan"""
        return PaymentKind.LOAN if self.match(notes) is NoteMatch.EXACT else PaymentKind.PAYMENT


# Sign rules shared by the statement and the balance aggregator

def sale_effect(sale: SaleRecord) -> Decimal:
    """Signed effect of a sale on the customer's balance"""
    magnitude = abs(to_decimal(sale.total_amount))
    return -magnitude if sale.kind is SaleKind.RETURN else magnitude


def resolve_payment_kind(payment: PaymentRecord, note_classifier: NoteClassifier) -> Tuple[PaymentKind, NoteMatch]:
    """Stored kind wins; untagged rows fall back to the note prefix"""
    note_match = note_classifier.match(payment.notes)
    if payment.kind is not None:
        return payment.kind, note_match
    kind = PaymentKind.LOAN if note_match is NoteMatch.EXACT else PaymentKind.PAYMENT
    return kind, note_match


def payment_effect(kind: PaymentKind, amount: Decimal) -> Decimal:
    """Loans increase what the customer owes, payments decrease it"""
    magnitude = abs(to_decimal(amount))
    return magnitude if kind is PaymentKind.LOAN else -magnitude


def purchase_effect(purchase: PurchaseRecord) -> Decimal:
    """A linked purchase acts like a payment; its return reverses that"""
    magnitude = abs(to_decimal(purchase.total_amount))
    return magnitude if purchase.kind is PurchaseKind.PURCHASE_RETURN else -magnitude


@dataclass
class PaidAmountResolution:
    """Outcome of resolving one sale against the settlement log"""
    amount: Decimal
    settlement: Optional[SettlementRecord] = None
    ignored: List[SettlementRecord] = field(default_factory=list)

    @property
    def is_ambiguous(self) -> bool:
        return bool(self.ignored)


class PaidAmountResolver:
    """
    Finds the amount collected for each sale.

    Only settlement rows whose transaction kind is "sale" count; refunds and
    other drawer movements are excluded. Rows are indexed in insertion order
    so that the first matching row is picked when duplicates exist. Payments
    recorded against the sale are added on top of the settlement amount.
    """

    def __init__(self, settlements: Iterable[SettlementRecord],
                 sale_payments: Iterable[PaymentRecord] = ()):
        self._by_sale: Dict[str, List[SettlementRecord]] = {}
        for settlement in settlements:
            if settlement.transaction_kind != SETTLEMENT_KIND_SALE:
                continue
            self._by_sale.setdefault(settlement.sale_id, []).append(settlement)

        self._paid_later: Dict[str, Decimal] = {}
        for payment in sale_payments:
            if payment.sale_id:
                self._paid_later[payment.sale_id] = (
                    self._paid_later.get(payment.sale_id, ZERO) + abs(to_decimal(payment.amount))
                )

    def resolve(self, sale: SaleRecord) -> PaidAmountResolution:
        paid_later = self._paid_later.get(sale.id, ZERO)
        candidates = self._by_sale.get(sale.id, [])
        if not candidates:
            return PaidAmountResolution(amount=paid_later)
        chosen = candidates[0]
        return PaidAmountResolution(
            amount=abs(to_decimal(chosen.amount)) + paid_later,
            settlement=chosen,
            ignored=list(candidates[1:])
        )


class EntryClassifier:
    """
    Maps raw records to LedgerEntry rows for one reconciliation call.

    Non-fatal classification problems are collected in ``diagnostics`` and
    logged; they never raise.
    """

    def __init__(self, note_classifier: NoteClassifier, paid_resolver: Optional[PaidAmountResolver] = None,
                 customer_id: Optional[str] = None):
        self.note_classifier = note_classifier
        self.paid_resolver = paid_resolver or PaidAmountResolver([])
        self.customer_id = customer_id
        self.diagnostics: List[Diagnostic] = []
        self.logger = logging.getLogger("customer_ledger.classification")

    def _warn(self, diagnostic: Diagnostic) -> None:
        self.diagnostics.append(diagnostic)
        self.logger.warning(
            diagnostic.message,
            extra={"customer_id": self.customer_id, "source": diagnostic.source,
                   "action": diagnostic.code.value}
        )

    def classify_opening_balance(self, customer: Customer) -> Optional[LedgerEntry]:
        """Opening balance row, or None when the balance is zero"""
        opening = to_decimal(customer.opening_balance)
        if opening == ZERO:
            return None
        return LedgerEntry(
            id=OPENING_BALANCE_ENTRY_ID,
            timestamp=customer.created_at,
            kind=EntryKind.OPENING_BALANCE,
            description="Opening balance",
            gross_value=opening if opening > ZERO else ZERO,
            paid_value=abs(opening) if opening < ZERO else ZERO,
            signed_amount=opening,
            source_id=customer.id
        )

    def classify_sale(self, sale: SaleRecord) -> LedgerEntry:
        resolution = self.paid_resolver.resolve(sale)
        if resolution.is_ambiguous:
            self._warn(Diagnostic(
                code=DiagnosticCode.AMBIGUOUS_SETTLEMENT,
                message=(f"Sale {sale.invoice_number} has {len(resolution.ignored) + 1} settlement records; "
                         f"using {resolution.settlement.id}"),
                source=SourceKind.SETTLEMENTS.value,
                record_id=sale.id,
                details={"chosen": resolution.settlement.id,
                         "ignored": [s.id for s in resolution.ignored]}
            ))

        settlement = resolution.settlement
        is_return = sale.kind is SaleKind.RETURN
        return LedgerEntry(
            id=f"sale-{sale.id}",
            timestamp=sale.timestamp,
            kind=EntryKind.SALE_RETURN if is_return else EntryKind.SALE_INVOICE,
            description=f"{'Sale return' if is_return else 'Sale invoice'} #{sale.invoice_number}",
            gross_value=abs(to_decimal(sale.total_amount)),
            paid_value=resolution.amount,
            signed_amount=sale_effect(sale),
            source_id=sale.id,
            invoice_number=sale.invoice_number,
            safe_name=sale.safe_name or (settlement.safe_name if settlement else None),
            employee_name=sale.employee_name or (settlement.performed_by if settlement else None)
        )

    def classify_payment(self, payment: PaymentRecord) -> LedgerEntry:
        kind, note_match = resolve_payment_kind(payment, self.note_classifier)
        if payment.kind is None and note_match is NoteMatch.NEAR:
            self._warn(Diagnostic(
                code=DiagnosticCode.UNRECOGNIZED_NOTE_CLASSIFICATION,
                message=f"Payment {payment.id} note resembles the loan marker; classified as payment",
                source=SourceKind.PAYMENTS.value,
                record_id=payment.id,
                details={"notes": payment.notes}
            ))

        amount = abs(to_decimal(payment.amount))
        is_loan = kind is PaymentKind.LOAN
        return LedgerEntry(
            id=f"payment-{payment.id}",
            timestamp=payment.timestamp,
            kind=EntryKind.LOAN if is_loan else EntryKind.PAYMENT,
            description="Loan" if is_loan else "Payment",
            gross_value=amount if is_loan else ZERO,
            paid_value=ZERO if is_loan else amount,
            signed_amount=payment_effect(kind, amount),
            source_id=payment.id,
            notes=payment.notes,
            safe_name=payment.safe_name,
            employee_name=payment.employee_name
        )

    def classify_linked_purchase(self, purchase: PurchaseRecord) -> LedgerEntry:
        amount = abs(to_decimal(purchase.total_amount))
        is_return = purchase.kind is PurchaseKind.PURCHASE_RETURN
        label = "Linked purchase return" if is_return else "Linked purchase"
        return LedgerEntry(
            id=f"linked-purchase-{purchase.id}",
            timestamp=purchase.timestamp,
            kind=EntryKind.LINKED_PURCHASE_RETURN if is_return else EntryKind.LINKED_PURCHASE,
            description=f"{label} #{purchase.invoice_number}",
            gross_value=amount if is_return else ZERO,
            paid_value=ZERO if is_return else amount,
            signed_amount=purchase_effect(purchase),
            source_id=purchase.id,
            invoice_number=purchase.invoice_number
        )

    def classify_sales(self, sales: Iterable[SaleRecord]) -> List[LedgerEntry]:
        return [self.classify_sale(sale) for sale in sales]

    def classify_payments(self, payments: Iterable[PaymentRecord]) -> List[LedgerEntry]:
        return [self.classify_payment(payment) for payment in payments]

    def classify_linked_purchases(self, purchases: Iterable[PurchaseRecord]) -> List[LedgerEntry]:
        return [self.classify_linked_purchase(purchase) for purchase in purchases]
